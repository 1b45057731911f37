#!/usr/bin/env python3
"""
Dependency resolver for offline Kubernetes bundles.

Computes the closure of root packages and their transitive hard
dependencies through a package manager adapter.
"""

import json
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import DependencyResolutionWarning, PackageNotFoundError, UnresolvedRootError
from .models import DependencyClosure, PackageSpec, ResolvedArtifact

if TYPE_CHECKING:
    from .adapters import PackageManagerAdapter


class DependencyResolver:
    """Resolve root packages into a dependency closure."""

    def __init__(self, adapter: "PackageManagerAdapter", roots: list[PackageSpec]):
        """Initialize the resolver.

        Args:
            adapter: Package manager adapter for the target ecosystem.
            roots: Root package specifications requested by the caller.
        """
        if not roots:
            raise ValueError("At least one root package is required")

        self.adapter = adapter
        self.roots = list(roots)
        self.closure = DependencyClosure()
        self.warnings: list[DependencyResolutionWarning] = []

    def resolve(self) -> DependencyClosure:
        """Resolve the full closure.

        Roots are added first with their pinned versions; dependencies
        follow in discovery order. A dependency that shares a name with
        a root never replaces the root's version.

        Returns:
            The dependency closure.

        Raises:
            UnresolvedRootError: If any root package cannot be found.
        """
        self.closure = DependencyClosure()
        discovered: list[list[PackageSpec]] = []
        # a root reached as a dependency resolves at its own pin
        pins = {root.name: root for root in self.roots}

        for root in self.roots:
            try:
                concrete = self.adapter.candidate(root)
                dependencies = self.adapter.resolve_dependencies(root, pins)
            except PackageNotFoundError as e:
                raise UnresolvedRootError(root, e) from e

            self.closure.add(self._artifact(concrete, is_root=True))
            discovered.append(dependencies)
            print(f"Resolved root {concrete}: {len(dependencies)} dependencies")

        for dependencies in discovered:
            for dep in dependencies:
                self.closure.add(self._artifact(dep, is_root=False))

        for artifact in self.closure:
            edges = self.adapter.dependency_graph.get(artifact.name, [])
            self.closure.add_edges(artifact.name, [e for e in edges if e in self.closure])

        self.warnings = list(self.adapter.warnings)
        return self.closure

    def _artifact(self, spec: PackageSpec, is_root: bool) -> ResolvedArtifact:
        version = spec.version or ""
        return ResolvedArtifact(
            name=spec.name,
            version=version,
            ecosystem=spec.ecosystem,
            download_ref=self.adapter.download_ref(spec.name, version),
            is_root=is_root,
        )

    def export_resolution(self, output_path: str | Path) -> Path:
        """Export resolution results to JSON.

        Args:
            output_path: Output file path.

        Returns:
            Path to output file.
        """
        path = Path(output_path)

        data = {
            "root_count": len(self.roots),
            "resolved_count": len(self.closure),
            "roots": [str(r) for r in self.roots],
            "packages": [a.to_dict() for a in self.closure],
            "edges": self.closure.edges,
            "warnings": [str(w) for w in self.warnings],
        }

        with open(path, "w") as f:
            json.dump(data, f, indent=2)

        return path
