#!/usr/bin/env python3
"""
Bundle builder for offline Kubernetes bundles.

Downloads a dependency closure into a staging directory and packs the
results into a reproducible tar.gz archive.
"""

import gzip
import os
import tarfile
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from .downloader import ArtifactDownloader
from .errors import DownloadError
from .models import DependencyClosure, ResolvedArtifact

if TYPE_CHECKING:
    from .adapters import PackageManagerAdapter

ARCHIVE_PACKAGE_DIR = "packages"


def create_archive(files: list[Path], archive_path: str | Path) -> Path:
    """Create a byte-reproducible tar.gz of the given files.

    Members are stored as ``packages/<name>`` sorted by name, with
    owner, mode and timestamps normalized and a zero gzip mtime.

    Args:
        files: Files to add.
        archive_path: Destination archive.

    Returns:
        Path to the created archive.
    """
    archive_path = Path(archive_path)
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    partial_path = archive_path.with_name(archive_path.name + ".part")

    with open(partial_path, "wb") as raw:
        with gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as gz:
            with tarfile.open(fileobj=gz, mode="w", format=tarfile.GNU_FORMAT) as tar:
                for path in sorted(files, key=lambda p: p.name):
                    info = tar.gettarinfo(str(path), arcname=f"{ARCHIVE_PACKAGE_DIR}/{path.name}")
                    info.mtime = 0
                    info.uid = info.gid = 0
                    info.uname = info.gname = ""
                    info.mode = 0o644
                    with open(path, "rb") as f:
                        tar.addfile(info, f)

    os.replace(partial_path, archive_path)
    return archive_path


class BundleBuilder:
    """Stage, download and archive the artifacts of a closure."""

    def __init__(
        self,
        adapter: "PackageManagerAdapter",
        staging_dir: str | Path,
        workers: int = 4,
        cancel_event: threading.Event | None = None,
    ):
        """Initialize the builder.

        Args:
            adapter: Adapter used to download artifacts.
            staging_dir: Directory receiving downloaded packages.
            workers: Parallel downloads.
            cancel_event: Cancellation flag shared with the caller.
        """
        self.adapter = adapter
        self.staging_dir = Path(staging_dir)
        self.packages_dir = self.staging_dir / ARCHIVE_PACKAGE_DIR
        self.workers = workers
        self.cancel_event = cancel_event or threading.Event()
        self.downloaded: list[ResolvedArtifact] = []
        self.total_size = 0

    def build(
        self,
        closure: DependencyClosure,
        archive_path: str | Path,
    ) -> tuple[Path, list[DownloadError]]:
        """Download every artifact of the closure and archive them.

        Downloaded artifacts are replaced in the closure by copies
        carrying their file name and digest.

        Args:
            closure: Resolved dependency closure.
            archive_path: Destination archive path.

        Returns:
            Tuple of (archive path, download errors).

        Raises:
            BuildCancelled: If cancelled; the staging directory is kept.
        """
        self.packages_dir.mkdir(parents=True, exist_ok=True)

        downloader = ArtifactDownloader(
            self.adapter,
            self.packages_dir,
            workers=self.workers,
            cancel_event=self.cancel_event,
        )
        downloader.download_artifacts(list(closure))

        self.downloaded = []
        for result in downloader.get_successful_downloads():
            closure.replace(result.artifact)
            self.downloaded.append(result.artifact)
        failures = [r.error for r in downloader.get_failed_downloads() if r.error]
        self.total_size = downloader.get_total_size()

        files = [self.packages_dir / a.filename for a in self.downloaded if a.filename]
        archive = create_archive(files, archive_path)
        print(f"Archived {len(files)} packages into {archive}")

        return archive, failures
