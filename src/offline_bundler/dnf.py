#!/usr/bin/env python3
"""
RPM adapter backed by dnf.

Uses dnf repoquery for versions, Requires and their providers, and
dnf download for fetching .rpm files.
"""

from pathlib import Path

from .adapters import K8S_REPOSITORY_BASE, PackageInfo, PackageManagerAdapter
from .errors import PackageNotFoundError
from .models import PACKAGE_PATTERNS, Ecosystem, PackageSpec


class DnfAdapter(PackageManagerAdapter):
    """Adapter for the rpm ecosystem (CentOS, Rocky, Fedora)."""

    ecosystem = Ecosystem.RPM
    package_glob = PACKAGE_PATTERNS[ecosystem]
    SUPPORT_PACKAGES = (
        "cri-tools",
        "kubernetes-cni",
        "conntrack-tools",
        "iptables",
        "iproute",
        "ethtool",
    )

    REPO_FILE_PATH = "/etc/yum.repos.d/kubernetes.repo"
    QUERY_FORMAT = "%{name}|%{epoch}|%{version}-%{release}|%{arch}\n"

    def __init__(self, config, session=None):
        super().__init__(config, session=session)
        self._provider_cache: dict[str, list[str]] = {}

    def repository_url(self, kubernetes_minor: str) -> str:
        return f"{K8S_REPOSITORY_BASE}/{kubernetes_minor}/rpm/"

    def key_url(self, kubernetes_minor: str) -> str:
        return self.repository_url(kubernetes_minor) + "repodata/repomd.xml.key"

    def repo_file_content(self, kubernetes_minor: str) -> str:
        """Render the .repo definition for the Kubernetes repository."""
        return (
            "[kubernetes]\n"
            "name=Kubernetes\n"
            f"baseurl={self.repository_url(kubernetes_minor)}\n"
            "enabled=1\n"
            "gpgcheck=1\n"
            f"gpgkey={self.key_url(kubernetes_minor)}\n"
        )

    def _configure_repository(self, kubernetes_minor: str) -> None:
        self._write_host_file(self.REPO_FILE_PATH, self.repo_file_content(kubernetes_minor))
        print(f"Registered dnf repository for Kubernetes {kubernetes_minor}")
        self._run(["dnf", "-y", "makecache"])

    def query_package(self, name: str, version: str | None = None) -> PackageInfo:
        args = ["dnf", "repoquery", "--quiet", "--queryformat", self.QUERY_FORMAT]
        if version is None:
            args.append("--latest-limit=1")
        else:
            args.append("--showduplicates")
        result = self._run(args + [name], check=False)

        if result.returncode != 0:
            raise PackageNotFoundError(name, version, result.stderr.strip())

        pin = PackageSpec(name, version, self.ecosystem)
        candidates = []
        for line in result.stdout.splitlines():
            parts = line.strip().split("|")
            if len(parts) < 4 or parts[3] == "src":
                continue
            pkg_name, _epoch, evr, arch = parts[:4]
            if pin.matches(evr):
                candidates.append((pkg_name, evr, arch))

        if not candidates:
            raise PackageNotFoundError(name, version, "no matching version in repoquery output")

        # repoquery lists ascending; prefer the build arch, then noarch
        preferred = [c for c in candidates if c[2] == self.config.arch] or \
            [c for c in candidates if c[2] == "noarch"] or candidates
        pkg_name, evr, _arch = preferred[-1]

        return PackageInfo(
            name=pkg_name,
            version=evr,
            depends=self._requires(pkg_name, evr),
        )

    def _requires(self, name: str, evr: str) -> list[list[str]]:
        """Requires of name-evr, one group of providing packages per capability."""
        result = self._run(
            ["dnf", "repoquery", "--quiet", "--requires", f"{name}-{evr}"],
            check=False,
        )
        if result.returncode != 0:
            return []

        groups: list[list[str]] = []
        for line in result.stdout.splitlines():
            capability = line.strip()
            if not capability or capability.startswith("rpmlib("):
                continue
            providers = self._providers(capability)
            if name in providers:
                continue
            # an unprovided capability is kept by name so it is reported
            group = providers or [capability.split()[0]]
            if group not in groups:
                groups.append(group)
        return groups

    def _providers(self, capability: str) -> list[str]:
        """Package names providing a capability, in repoquery order."""
        if capability not in self._provider_cache:
            result = self._run(
                [
                    "dnf", "repoquery", "--quiet",
                    "--whatprovides", capability,
                    "--queryformat", "%{name}\n",
                ],
                check=False,
            )
            names: list[str] = []
            if result.returncode == 0:
                for line in result.stdout.splitlines():
                    provider = line.strip()
                    if provider and provider not in names:
                        names.append(provider)
            self._provider_cache[capability] = names
        return self._provider_cache[capability]

    def download_ref(self, name: str, version: str) -> str:
        return f"{name}-{version}" if version else name

    def _fetch(self, spec: PackageSpec, work_dir: Path) -> None:
        self._run([
            "dnf", "download",
            f"--destdir={work_dir}",
            self.download_ref(spec.name, spec.version or ""),
        ])
