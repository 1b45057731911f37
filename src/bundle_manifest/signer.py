#!/usr/bin/env python3
"""
Checksum manifest for offline bundles.

Writes and verifies a sha256sum-compatible SHA256SUMS file covering
the bundle archive and its installer.
"""

import hashlib
import sys
from pathlib import Path

from offline_bundler.errors import IntegrityError

MANIFEST_NAME = "SHA256SUMS"


def compute_sha256(filepath: str | Path) -> str:
    """Compute SHA256 hash of a file.

    Args:
        filepath: Path to file.

    Returns:
        Hex-encoded SHA256 hash.
    """
    sha256 = hashlib.sha256()
    with open(filepath, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


class ChecksumSigner:
    """Produce and check two-column (digest, path) manifests."""

    def sign(self, paths: list[str | Path], manifest_path: str | Path) -> dict[str, str]:
        """Write a checksum manifest for the given files.

        Paths are recorded relative to the manifest's directory, in the
        order given.

        Args:
            paths: Files to cover.
            manifest_path: Where to write the manifest.

        Returns:
            Ordered mapping of relative path to digest.
        """
        manifest_path = Path(manifest_path)
        base_dir = manifest_path.parent
        entries: dict[str, str] = {}

        for path in paths:
            path = Path(path)
            relative = path.resolve().relative_to(base_dir.resolve()).as_posix()
            entries[relative] = compute_sha256(path)

        lines = [f"{digest}  {relative}" for relative, digest in entries.items()]
        with open(manifest_path, "w") as f:
            f.write("\n".join(lines) + "\n")

        return entries

    def read(self, manifest_path: str | Path) -> dict[str, str]:
        """Parse a checksum manifest.

        Returns:
            Ordered mapping of relative path to digest.
        """
        entries: dict[str, str] = {}

        with open(manifest_path) as f:
            for line_no, line in enumerate(f, start=1):
                line = line.rstrip("\n")
                if not line.strip():
                    continue
                digest, sep, relative = line.partition("  ")
                if not sep or len(digest) != 64:
                    raise IntegrityError([f"{manifest_path}:{line_no}: malformed line"])
                # sha256sum marks binary mode with a leading '*'
                entries[relative.lstrip("*")] = digest.lower()

        return entries

    def verify(self, manifest_path: str | Path) -> dict[str, str]:
        """Recompute every digest listed in the manifest.

        Args:
            manifest_path: Path to SHA256SUMS.

        Returns:
            The verified entries.

        Raises:
            IntegrityError: If the manifest is missing or empty, or any file
                is missing or does not match its digest.
        """
        manifest_path = Path(manifest_path)
        if not manifest_path.is_file():
            raise IntegrityError([f"checksum manifest not found: {manifest_path}"])

        entries = self.read(manifest_path)
        if not entries:
            raise IntegrityError([f"checksum manifest is empty: {manifest_path}"])

        problems = []
        for relative, expected in entries.items():
            path = manifest_path.parent / relative
            if not path.is_file():
                problems.append(f"{relative}: missing")
                continue
            actual = compute_sha256(path)
            if actual != expected:
                problems.append(f"{relative}: expected {expected}, got {actual}")

        if problems:
            raise IntegrityError(problems)

        return entries


def main():
    """CLI entry point for checksum verification."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Verify an offline bundle checksum manifest"
    )
    parser.add_argument(
        "manifest",
        help="Path to SHA256SUMS",
    )

    args = parser.parse_args()

    try:
        entries = ChecksumSigner().verify(args.manifest)
    except IntegrityError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    for relative in entries:
        print(f"{relative}: OK")


if __name__ == "__main__":
    main()
