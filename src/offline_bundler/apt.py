#!/usr/bin/env python3
"""
Debian/Ubuntu adapter backed by apt.

Resolves hard dependencies (Depends, Pre-Depends) from apt-cache
metadata and fetches .deb files with apt-get download.
"""

from pathlib import Path

from debian.debian_support import Version
from debian.deb822 import Packages

from .adapters import K8S_REPOSITORY_BASE, PackageInfo, PackageManagerAdapter
from .errors import PackageNotFoundError
from .models import PACKAGE_PATTERNS, Ecosystem, PackageSpec

HARD_RELATIONS = ("pre-depends", "depends")


class AptAdapter(PackageManagerAdapter):
    """Adapter for the deb ecosystem."""

    ecosystem = Ecosystem.DEB
    package_glob = PACKAGE_PATTERNS[ecosystem]
    SUPPORT_PACKAGES = (
        "cri-tools",
        "kubernetes-cni",
        "conntrack",
        "iptables",
        "iproute2",
        "ethtool",
    )

    KEYRING_PATH = "/etc/apt/keyrings/kubernetes-apt-keyring.gpg"
    SOURCES_PATH = "/etc/apt/sources.list.d/kubernetes.list"

    def repository_url(self, kubernetes_minor: str) -> str:
        return f"{K8S_REPOSITORY_BASE}/{kubernetes_minor}/deb/"

    def key_url(self, kubernetes_minor: str) -> str:
        return self.repository_url(kubernetes_minor) + "Release.key"

    def _configure_repository(self, kubernetes_minor: str) -> None:
        key = self._fetch_key(self.key_url(kubernetes_minor))

        keyring = self._host_path(self.KEYRING_PATH)
        keyring.parent.mkdir(parents=True, exist_ok=True)
        self._run(
            ["gpg", "--batch", "--yes", "--dearmor", "-o", str(keyring)],
            input=key,
        )

        self._write_host_file(
            self.SOURCES_PATH,
            f"deb [signed-by={keyring}] {self.repository_url(kubernetes_minor)} /\n",
        )
        print(f"Registered apt source for Kubernetes {kubernetes_minor}")

        self._run(["apt-get", "update"])

    def query_package(
        self,
        name: str,
        version: str | None = None,
        follow_provides: bool = True,
    ) -> PackageInfo:
        args = ["apt-cache", "show"]
        if version is None:
            args.append("--no-all-versions")
        result = self._run(args + [name], check=False)

        paragraphs = []
        if result.returncode == 0:
            paragraphs = list(Packages.iter_paragraphs(
                result.stdout.splitlines(keepends=True),
                use_apt_pkg=False,
            ))

        if not paragraphs:
            provider = self._find_provider(name) if follow_provides else None
            if provider is None:
                raise PackageNotFoundError(name, version, result.stderr.strip())
            return self.query_package(provider, version, follow_provides=False)

        pin = PackageSpec(name, version, self.ecosystem)
        matching = [p for p in paragraphs if pin.matches(p["Version"])]
        if not matching:
            published = ", ".join(p["Version"] for p in paragraphs)
            raise PackageNotFoundError(name, version, f"available: {published}")

        chosen = max(matching, key=lambda p: Version(p["Version"]))
        return PackageInfo(
            name=chosen["Package"],
            version=chosen["Version"],
            depends=self._hard_dependencies(chosen),
        )

    def _hard_dependencies(self, paragraph: Packages) -> list[list[str]]:
        groups = []
        for relation in HARD_RELATIONS:
            for alternatives in paragraph.relations[relation]:
                names = [alt["name"] for alt in alternatives]
                if names and names not in groups:
                    groups.append(names)
        return groups

    def _find_provider(self, name: str) -> str | None:
        """Find a real package providing a virtual package name."""
        result = self._run(["apt-cache", "showpkg", name], check=False)
        if result.returncode != 0:
            return None

        in_provides = False
        for line in result.stdout.splitlines():
            if line.startswith("Reverse Provides:"):
                in_provides = True
                continue
            if in_provides:
                parts = line.split()
                if parts and parts[0] != name:
                    return parts[0]
        return None

    def _fetch(self, spec: PackageSpec, work_dir: Path) -> None:
        self._run(
            ["apt-get", "download", self.download_ref(spec.name, spec.version or "")],
            cwd=work_dir,
        )

    def download_ref(self, name: str, version: str) -> str:
        return f"{name}={version}" if version else name
