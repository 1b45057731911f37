#!/usr/bin/env python3
"""
Build configuration for offline Kubernetes bundles.

The configuration is an immutable value handed through the pipeline.
Nothing below the CLI reads the process environment.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .models import Ecosystem, PackageSpec

VERSION_PATTERN = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)$")

DEFAULT_ROOT_PACKAGES = ("kubeadm", "kubelet", "kubectl")

# OS names from the build matrix and the ecosystem each one uses
OS_ALIASES = {
    "ubuntu": Ecosystem.DEB,
    "debian": Ecosystem.DEB,
    "centos": Ecosystem.RPM,
    "rocky": Ecosystem.RPM,
    "fedora": Ecosystem.RPM,
    "arch": Ecosystem.PACMAN,
    "opensuse": Ecosystem.ZYPPER,
}

MIN_WORKERS = 1
MAX_WORKERS = 8


def resolve_target(name: str) -> tuple[Ecosystem, str]:
    """Map an OS name or ecosystem name to (ecosystem, label).

    Args:
        name: OS name (``ubuntu``, ``arch``...) or ecosystem (``deb``...).

    Returns:
        Tuple of ecosystem and the label used in output file names.
    """
    key = name.strip().lower()
    if key in OS_ALIASES:
        return OS_ALIASES[key], key
    try:
        return Ecosystem(key), key
    except ValueError:
        choices = sorted(set(OS_ALIASES) | {e.value for e in Ecosystem})
        raise ValueError(
            f"Unsupported OS or ecosystem: {name} (expected one of: {', '.join(choices)})"
        ) from None


def normalize_version(version: str) -> str:
    """Validate a MAJOR.MINOR.PATCH version, dropping a leading ``v``."""
    match = VERSION_PATTERN.match(str(version).strip())
    if not match:
        raise ValueError(
            f"Kubernetes version must be MAJOR.MINOR.PATCH, got: {version}"
        )
    return ".".join(match.groups())


def parse_package_arg(value: str, ecosystem: Ecosystem) -> PackageSpec:
    """Parse ``name`` or ``name=version`` into a PackageSpec."""
    name, _, version = value.partition("=")
    name = name.strip()
    if not name:
        raise ValueError(f"Invalid package specification: {value!r}")
    return PackageSpec(name=name, version=version.strip() or None, ecosystem=ecosystem)


def load_version_file(path: str | Path) -> dict[str, Any]:
    """Load a kubeversion.yaml build file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed mapping.
    """
    path = Path(path)
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping, got: {type(data).__name__}")

    return data


@dataclass(frozen=True)
class BuildConfig:
    """Immutable configuration for one (ecosystem, version) build."""
    ecosystem: Ecosystem
    kubernetes_version: str
    output_dir: Path
    os_label: str = ""
    work_dir: Path | None = None
    root_packages: tuple[str, ...] = DEFAULT_ROOT_PACKAGES
    extra_packages: tuple[str, ...] = ()
    verify_packages: tuple[str, ...] = ()
    download_workers: int = 4
    timeout: float = 300.0
    probe_timeout: float = 10.0
    retries: int = 3
    arch: str = "x86_64"
    sysroot: Path = field(default_factory=lambda: Path("/"))
    keep_staging: bool = False
    write_dependency_manifest: bool = True

    def __post_init__(self):
        object.__setattr__(self, "ecosystem", Ecosystem(self.ecosystem))
        object.__setattr__(
            self, "kubernetes_version", normalize_version(self.kubernetes_version)
        )
        object.__setattr__(self, "output_dir", Path(self.output_dir))
        object.__setattr__(self, "sysroot", Path(self.sysroot))
        if self.work_dir is not None:
            object.__setattr__(self, "work_dir", Path(self.work_dir))
        if not self.os_label:
            object.__setattr__(self, "os_label", self.ecosystem.value)

        workers = min(max(int(self.download_workers), MIN_WORKERS), MAX_WORKERS)
        object.__setattr__(self, "download_workers", workers)

        if self.retries < 0:
            raise ValueError(f"retries must be >= 0, got: {self.retries}")
        if self.timeout <= 0 or self.probe_timeout <= 0:
            raise ValueError("timeouts must be positive")
        if not self.root_packages:
            raise ValueError("At least one root package is required")

    @property
    def kubernetes_minor(self) -> str:
        """Repository channel, e.g. ``v1.29``."""
        major, minor, _ = self.kubernetes_version.split(".")
        return f"v{major}.{minor}"

    @property
    def roots(self) -> list[PackageSpec]:
        """Root package specs: Kubernetes packages pinned, extras as given."""
        specs = [
            PackageSpec(name, self.kubernetes_version, self.ecosystem)
            for name in self.root_packages
        ]
        for value in self.extra_packages:
            spec = parse_package_arg(value, self.ecosystem)
            if all(s.name != spec.name for s in specs):
                specs.append(spec)
        return specs

    @property
    def staging_root(self) -> Path:
        if self.work_dir is not None:
            return self.work_dir
        return self.output_dir / ".staging"

    def artifact_name(self, kind: str) -> str:
        """File name for one of the bundle outputs."""
        suffix = f"{self.os_label}_{self.kubernetes_version}"
        names = {
            "archive": f"offline_packages_{suffix}.tar.gz",
            "installer": f"install_{suffix}.sh",
            "dependencies": f"dependencies_{suffix}.json",
            "log": f"build_{suffix}.log",
            "checksums": f"SHA256SUMS_{suffix}",
        }
        return names[kind]

    @classmethod
    def from_version_file(
        cls,
        path: str | Path,
        target: str,
        output_dir: str | Path,
        **overrides: Any,
    ) -> "BuildConfig":
        """Build a configuration from kubeversion.yaml plus overrides.

        Args:
            path: kubeversion.yaml path.
            target: OS or ecosystem name.
            output_dir: Output directory.
            **overrides: Explicit values that take precedence over the file.

        Returns:
            BuildConfig instance.
        """
        from bundle_manifest.validator import ConfigValidator

        data = load_version_file(path)
        validator = ConfigValidator()
        if not validator.validate(data):
            raise ValueError(f"Invalid build file {path}:\n{validator.get_summary()}")

        ecosystem, label = resolve_target(target)
        values: dict[str, Any] = {
            "kubernetes_version": str(data["kubernetes_version"]),
        }
        if "packages" in data:
            values["extra_packages"] = tuple(data["packages"])
        if "verify_packages" in data:
            values["verify_packages"] = tuple(data["verify_packages"])
        for key in ("download_workers", "timeout", "retries", "arch"):
            if key in data:
                values[key] = data[key]

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(ecosystem=ecosystem, os_label=label, output_dir=Path(output_dir), **values)
