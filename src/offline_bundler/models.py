#!/usr/bin/env python3
"""
Data model for offline Kubernetes bundles.

Package specifications, resolved artifacts, the dependency closure
and the finished bundle with its build report.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

from .errors import DependencyResolutionWarning, DownloadError


class Ecosystem(str, Enum):
    """Package-manager family."""
    DEB = "deb"
    RPM = "rpm"
    PACMAN = "pacman"
    ZYPPER = "zypper"


# Package file names per ecosystem, shared by download and install
PACKAGE_PATTERNS = {
    Ecosystem.DEB: "*.deb",
    Ecosystem.RPM: "*.rpm",
    Ecosystem.PACMAN: "*.pkg.tar.*",
    Ecosystem.ZYPPER: "*.rpm",
}


@dataclass(frozen=True)
class PackageSpec:
    """A requested package, optionally pinned to a version."""
    name: str
    version: str | None = None
    ecosystem: Ecosystem = Ecosystem.DEB

    def __str__(self) -> str:
        if self.version:
            return f"{self.name}={self.version}"
        return self.name

    def matches(self, available: str) -> bool:
        """Check whether a repository version satisfies this pin.

        A pin of ``1.29.1`` accepts ``1.29.1`` and any distribution
        release of it such as ``1.29.1-1.1`` or ``1.29.1-150500.1.1``.

        Args:
            available: Version string published by the repository.

        Returns:
            True if the version satisfies the pin (always True if unpinned).
        """
        if not self.version:
            return True
        # Epoch prefixes ("1:") are not part of what callers pin
        bare = available.split(":", 1)[1] if ":" in available else available
        return bare == self.version or bare.startswith(f"{self.version}-")


@dataclass(frozen=True)
class ResolvedArtifact:
    """A concrete package file needed by the bundle."""
    name: str
    version: str
    ecosystem: Ecosystem
    download_ref: str
    is_root: bool = False
    sha256: str | None = None
    filename: str | None = None

    @property
    def identity(self) -> tuple[str, str, Ecosystem]:
        return (self.name, self.version, self.ecosystem)

    @property
    def spec(self) -> PackageSpec:
        return PackageSpec(self.name, self.version, self.ecosystem)

    def with_download(self, filename: str, sha256: str) -> "ResolvedArtifact":
        """Return a copy completed with the downloaded file and its digest."""
        return replace(self, filename=filename, sha256=sha256)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "version": self.version,
            "ecosystem": self.ecosystem.value,
            "download_ref": self.download_ref,
            "root": self.is_root,
            "sha256": self.sha256,
            "filename": self.filename,
        }


class DependencyClosure:
    """Ordered, duplicate-free set of artifacts plus dependency edges.

    Keyed by (name, ecosystem). Iteration yields roots first, then
    dependencies in the order they were discovered.
    """

    def __init__(self):
        self._artifacts: dict[tuple[str, Ecosystem], ResolvedArtifact] = {}
        self.edges: dict[str, list[str]] = {}

    def add(self, artifact: ResolvedArtifact) -> bool:
        """Add an artifact unless one with the same name is present.

        Returns:
            True if the artifact was added.
        """
        key = (artifact.name, artifact.ecosystem)
        if key in self._artifacts:
            return False
        self._artifacts[key] = artifact
        return True

    def replace(self, artifact: ResolvedArtifact) -> None:
        """Replace an artifact in place, keeping its position."""
        self._artifacts[(artifact.name, artifact.ecosystem)] = artifact

    def get(self, name: str, ecosystem: Ecosystem) -> ResolvedArtifact | None:
        return self._artifacts.get((name, ecosystem))

    def add_edges(self, name: str, dependencies: list[str]) -> None:
        known = self.edges.setdefault(name, [])
        for dep in dependencies:
            if dep not in known and dep != name:
                known.append(dep)

    def __iter__(self) -> Iterator[ResolvedArtifact]:
        return iter(list(self._artifacts.values()))

    def __len__(self) -> int:
        return len(self._artifacts)

    def __contains__(self, name: object) -> bool:
        return any(a.name == name for a in self._artifacts.values())

    def roots(self) -> list[ResolvedArtifact]:
        return [a for a in self if a.is_root]

    def identities(self) -> set[tuple[str, str, Ecosystem]]:
        return {a.identity for a in self}

    def install_order(self) -> list[ResolvedArtifact]:
        """Order artifacts so dependencies come before their dependents.

        Depth-first post-order over the recorded edges, starting from
        the closure order. A cycle is broken at the first back edge, so
        the result is stable for a given closure.
        """
        by_name = {a.name: a for a in self}
        ordered: list[ResolvedArtifact] = []
        done: set[str] = set()
        visiting: set[str] = set()

        def visit(name: str) -> None:
            if name in done or name in visiting or name not in by_name:
                return
            visiting.add(name)
            for dep in self.edges.get(name, []):
                visit(dep)
            visiting.discard(name)
            done.add(name)
            ordered.append(by_name[name])

        for artifact in self:
            visit(artifact.name)

        return ordered


@dataclass
class BuildReport:
    """Non-fatal outcomes of a build."""
    total_artifacts: int = 0
    warnings: list[DependencyResolutionWarning] = field(default_factory=list)
    download_errors: list[DownloadError] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.download_errors)

    @property
    def downloaded_count(self) -> int:
        return self.total_artifacts - self.failed_count

    @property
    def complete(self) -> bool:
        return not self.warnings and not self.download_errors

    def summary(self) -> str:
        """Human-readable summary of the report."""
        lines = [
            f"{self.failed_count} of {self.total_artifacts} artifacts failed."
        ]
        for error in self.download_errors:
            lines.append(f"  - {error}")
        if self.warnings:
            lines.append(f"{len(self.warnings)} dependency warnings:")
            for warning in self.warnings:
                lines.append(f"  - {warning}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_artifacts": self.total_artifacts,
            "failed_count": self.failed_count,
            "warnings": [str(w) for w in self.warnings],
            "download_errors": [str(e) for e in self.download_errors],
        }


@dataclass(frozen=True)
class Bundle:
    """Output of one (ecosystem, version) build."""
    ecosystem: Ecosystem
    os_label: str
    kubernetes_version: str
    artifacts: tuple[ResolvedArtifact, ...]
    archive_path: Path
    installer_path: Path
    checksum_manifest_path: Path
    dependency_manifest_path: Path | None = None
    report: BuildReport = field(default_factory=BuildReport)
