#!/usr/bin/env python3
"""
Dependency manifest for offline bundles.

Records the resolved (name, version) pairs that went into a bundle,
with the digest of each downloaded package file.
"""

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from offline_bundler.models import ResolvedArtifact

SCHEMA_VERSION = "1.0"


class DependencyManifest:
    """Collect resolved artifacts and save them as JSON."""

    def __init__(self, ecosystem: str, os_label: str, kubernetes_version: str):
        """Initialize the manifest.

        Args:
            ecosystem: Ecosystem identifier (deb, rpm, pacman, zypper).
            os_label: OS label used in bundle file names.
            kubernetes_version: Kubernetes version of the bundle.
        """
        self.ecosystem = ecosystem
        self.os_label = os_label
        self.kubernetes_version = kubernetes_version
        self.packages: list[dict[str, Any]] = []
        self.failed: list[str] = []

    def add_artifacts(self, artifacts: list[ResolvedArtifact]) -> int:
        """Add downloaded artifacts.

        Returns:
            Number of artifacts added.
        """
        count = 0
        for artifact in artifacts:
            self.packages.append({
                "name": artifact.name,
                "version": artifact.version,
                "root": artifact.is_root,
                "filename": artifact.filename,
                "sha256": artifact.sha256,
            })
            count += 1
        return count

    def add_failures(self, labels: list[str]) -> None:
        self.failed.extend(labels)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "ecosystem": self.ecosystem,
            "os": self.os_label,
            "kubernetes_version": self.kubernetes_version,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "package_count": len(self.packages),
            "packages": sorted(self.packages, key=lambda p: p["name"]),
            "failed": sorted(self.failed),
        }

    def save(self, output_path: str | Path) -> Path:
        """Write the manifest to a JSON file.

        Args:
            output_path: Output file path.

        Returns:
            Path to the written file.
        """
        path = Path(output_path)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2, sort_keys=True)
        return path

    @classmethod
    def load(cls, path: str | Path) -> "DependencyManifest":
        """Load a manifest previously written by save()."""
        with open(path) as f:
            data = json.load(f)

        manifest = cls(
            ecosystem=data["ecosystem"],
            os_label=data.get("os", data["ecosystem"]),
            kubernetes_version=data["kubernetes_version"],
        )
        manifest.packages = list(data.get("packages", []))
        manifest.failed = list(data.get("failed", []))
        return manifest

    def pairs(self) -> list[tuple[str, str]]:
        """Resolved (name, version) pairs, sorted by name."""
        return sorted((p["name"], p["version"]) for p in self.packages)


def main():
    """CLI entry point to print a dependency manifest."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Show the packages recorded in a dependency manifest"
    )
    parser.add_argument("manifest", help="Path to dependencies_<os>_<version>.json")

    args = parser.parse_args()

    try:
        manifest = DependencyManifest.load(args.manifest)
    except (OSError, KeyError, json.JSONDecodeError) as e:
        print(f"Cannot read manifest: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"{manifest.os_label} ({manifest.ecosystem}) Kubernetes {manifest.kubernetes_version}")
    for name, version in manifest.pairs():
        print(f"  {name} {version}")
    for label in manifest.failed:
        print(f"  [failed] {label}")


if __name__ == "__main__":
    main()
