#!/usr/bin/env python3
"""
Arch Linux adapter backed by pacman.

Kubernetes is packaged in Arch's own repositories, so registration
only refreshes the sync databases after probing the mirror.
"""

import re
from pathlib import Path

from .adapters import PackageInfo, PackageManagerAdapter
from .errors import PackageNotFoundError
from .models import PACKAGE_PATTERNS, Ecosystem, PackageSpec

FIELD_PATTERN = re.compile(r"^(\S[^:]*?)\s*:\s?(.*)$")
CONSTRAINT_PATTERN = re.compile(r"[<>=]")


def parse_pacman_info(text: str) -> dict[str, str]:
    """Parse the first record of ``pacman -Si`` output into fields."""
    fields: dict[str, str] = {}
    last_key = None

    for line in text.splitlines():
        if not line.strip():
            if fields:
                break
            continue
        if line[0].isspace() and last_key:
            fields[last_key] += " " + line.strip()
            continue
        match = FIELD_PATTERN.match(line)
        if match:
            last_key = match.group(1)
            fields[last_key] = match.group(2).strip()

    return fields


class PacmanAdapter(PackageManagerAdapter):
    """Adapter for the pacman ecosystem (Arch Linux)."""

    ecosystem = Ecosystem.PACMAN
    package_glob = PACKAGE_PATTERNS[ecosystem]
    SUPPORT_PACKAGES = (
        "cri-tools",
        "cni-plugins",
        "conntrack-tools",
        "iptables",
        "iproute2",
        "ethtool",
    )

    MIRROR_URL = "https://geo.mirror.pkgbuild.com"

    def repository_url(self, kubernetes_minor: str) -> str:
        return f"{self.MIRROR_URL}/extra/os/{self.config.arch}/"

    def key_url(self, kubernetes_minor: str) -> str:
        return self.repository_url(kubernetes_minor) + "extra.db"

    def _configure_repository(self, kubernetes_minor: str) -> None:
        self._run(["pacman", "-Sy", "--noconfirm"])
        print("Refreshed pacman sync databases")

    def query_package(self, name: str, version: str | None = None) -> PackageInfo:
        result = self._run(["pacman", "-Si", name], check=False)

        if result.returncode != 0:
            provider = self._find_provider(name)
            if provider is None or provider == name:
                raise PackageNotFoundError(name, version, result.stderr.strip())
            result = self._run(["pacman", "-Si", provider], check=False)
            if result.returncode != 0:
                raise PackageNotFoundError(provider, version, result.stderr.strip())

        fields = parse_pacman_info(result.stdout)
        pkg_name = fields.get("Name", name)
        pkg_version = fields.get("Version", "")

        # Arch only publishes the current release of each package
        if not PackageSpec(pkg_name, version, self.ecosystem).matches(pkg_version):
            raise PackageNotFoundError(name, version, f"repository has {pkg_version}")

        return PackageInfo(
            name=pkg_name,
            version=pkg_version,
            depends=[[dep] for dep in self._split_depends(fields.get("Depends On", ""))],
        )

    def _split_depends(self, value: str) -> list[str]:
        if not value or value == "None":
            return []
        names = []
        for token in value.split():
            dep = CONSTRAINT_PATTERN.split(token, maxsplit=1)[0]
            if dep and dep not in names:
                names.append(dep)
        return names

    def _find_provider(self, name: str) -> str | None:
        """Resolve a virtual name (e.g. ``sh``) to the package providing it."""
        result = self._run(
            ["pacman", "-Sddp", "--print-format", "%n", name],
            check=False,
        )
        if result.returncode != 0:
            return None
        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        return lines[0] if lines else None

    def download_ref(self, name: str, version: str) -> str:
        return f"{name}-{version}" if version else name

    def _fetch(self, spec: PackageSpec, work_dir: Path) -> None:
        self._run([
            "pacman", "-Swdd", "--noconfirm",
            "--cachedir", str(work_dir),
            spec.name,
        ])
