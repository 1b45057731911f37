#!/usr/bin/env python3
"""
SUSE adapter backed by zypper.

openSUSE consumes the same rpm-md repository as dnf; only the
registration, query and download commands differ.
"""

import xml.etree.ElementTree as ET
from pathlib import Path

from .dnf import DnfAdapter
from .adapters import PackageInfo
from .errors import PackageNotFoundError
from .models import PACKAGE_PATTERNS, Ecosystem, PackageSpec

ZYPPER = ["zypper", "--non-interactive"]


class ZypperAdapter(DnfAdapter):
    """Adapter for the zypper ecosystem (openSUSE)."""

    ecosystem = Ecosystem.ZYPPER
    package_glob = PACKAGE_PATTERNS[ecosystem]
    SUPPORT_PACKAGES = (
        "cri-tools",
        "kubernetes-cni",
        "conntrack-tools",
        "iptables",
        "iproute2",
        "ethtool",
    )

    REPO_FILE_PATH = "/etc/zypp/repos.d/kubernetes.repo"

    def repo_file_content(self, kubernetes_minor: str) -> str:
        return super().repo_file_content(kubernetes_minor) + "type=rpm-md\nautorefresh=1\n"

    def _configure_repository(self, kubernetes_minor: str) -> None:
        self._write_host_file(self.REPO_FILE_PATH, self.repo_file_content(kubernetes_minor))
        print(f"Registered zypper repository for Kubernetes {kubernetes_minor}")
        self._run(ZYPPER + ["--gpg-auto-import-keys", "refresh"])

    def _search(self, term: str, provides: bool = False) -> list[dict[str, str]]:
        args = ZYPPER + ["--xmlout", "search", "--details", "--match-exact", "--type", "package"]
        if provides:
            args.append("--provides")
        result = self._run(args + [term], check=False)

        # Exit code 104 means no matches
        if result.returncode != 0 or not result.stdout.strip():
            return []

        root = ET.fromstring(result.stdout)
        return [dict(s.attrib) for s in root.iter("solvable") if s.get("kind", "package") == "package"]

    def query_package(self, name: str, version: str | None = None) -> PackageInfo:
        solvables = self._search(name)
        if not solvables:
            providers = self._search(name, provides=True)
            if not providers:
                raise PackageNotFoundError(name, version, "no package or provider found")
            name = providers[0]["name"]
            solvables = [s for s in providers if s["name"] == name]

        pin = PackageSpec(name, version, self.ecosystem)
        matching = [s for s in solvables if s.get("arch") != "src" and pin.matches(s.get("edition", ""))]
        if not matching:
            published = ", ".join(s.get("edition", "?") for s in solvables)
            raise PackageNotFoundError(name, version, f"available: {published}")

        # zypper lists the newest edition first
        preferred = [s for s in matching if s.get("arch") == self.config.arch] or matching
        chosen = preferred[0]

        return PackageInfo(
            name=chosen["name"],
            version=chosen["edition"],
            depends=[[cap] for cap in self._requires(chosen["name"], chosen["edition"])],
        )

    def _requires(self, name: str, evr: str | None = None) -> list[str]:
        """Capabilities listed under Requires in zypper info."""
        query = f"{name}={evr}" if evr else name
        result = self._run(ZYPPER + ["info", "--requires", query], check=False)
        if result.returncode != 0:
            return []

        requires: list[str] = []
        in_requires = False
        for line in result.stdout.splitlines():
            if line.startswith("Requires"):
                in_requires = True
                continue
            if in_requires:
                if not line.startswith((" ", "\t")):
                    break
                capability = line.split()[0] if line.split() else ""
                if not capability or capability.startswith(("/", "rpmlib(", "config(")):
                    continue
                if capability != name and capability not in requires:
                    requires.append(capability)
        return requires

    def download_ref(self, name: str, version: str) -> str:
        return f"{name}={version}" if version else name

    def _fetch(self, spec: PackageSpec, work_dir: Path) -> None:
        self._run(ZYPPER + [
            "--pkg-cache-dir", str(work_dir),
            "download",
            self.download_ref(spec.name, spec.version or ""),
        ])
