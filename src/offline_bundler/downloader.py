#!/usr/bin/env python3
"""
Artifact downloader for offline Kubernetes bundles.

Fetches every artifact of a closure with a bounded worker pool.
Failures are recorded per artifact and never abort the batch.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import BuildCancelled, DownloadError
from .models import ResolvedArtifact

if TYPE_CHECKING:
    from .adapters import PackageManagerAdapter


@dataclass
class DownloadResult:
    """Result of one artifact download."""
    artifact: ResolvedArtifact
    success: bool
    local_path: Path | None
    error: DownloadError | None


class ArtifactDownloader:
    """Download closure artifacts concurrently into a staging directory."""

    def __init__(
        self,
        adapter: "PackageManagerAdapter",
        download_dir: str | Path,
        workers: int = 4,
        cancel_event: threading.Event | None = None,
    ):
        """Initialize the downloader.

        Args:
            adapter: Package manager adapter used for each fetch.
            download_dir: Directory to store downloaded packages.
            workers: Maximum parallel downloads.
            cancel_event: Set to stop before the next artifact starts.
        """
        self.adapter = adapter
        self.download_dir = Path(download_dir)
        self.download_dir.mkdir(parents=True, exist_ok=True)
        self.workers = max(1, workers)
        self.cancel_event = cancel_event or threading.Event()
        self.results: list[DownloadResult] = []

    def download_artifacts(self, artifacts: list[ResolvedArtifact]) -> list[DownloadResult]:
        """Download all artifacts, returning once every download finished.

        The same (name, version) is fetched at most once.

        Args:
            artifacts: Artifacts to download, in closure order.

        Returns:
            Download results in closure order.

        Raises:
            BuildCancelled: If cancellation was requested.
        """
        self.results = []

        unique: list[ResolvedArtifact] = []
        seen: set[tuple[str, str]] = set()
        for artifact in artifacts:
            key = (artifact.name, artifact.version)
            if key not in seen:
                seen.add(key)
                unique.append(artifact)

        if not unique:
            print("No artifacts to download.")
            return []

        self._check_cancelled()
        print(f"Downloading {len(unique)} artifacts to {self.download_dir} ({self.workers} workers)")

        completed: dict[tuple[str, str], DownloadResult] = {}
        pool = ThreadPoolExecutor(max_workers=self.workers)
        try:
            futures = [pool.submit(self._download_one, artifact) for artifact in unique]
            for future in as_completed(futures):
                result = future.result()
                if result is not None:
                    completed[(result.artifact.name, result.artifact.version)] = result
        except KeyboardInterrupt:
            self.cancel_event.set()
            raise BuildCancelled("Download interrupted") from None
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

        self._check_cancelled()

        self.results = [
            completed[(a.name, a.version)] for a in unique if (a.name, a.version) in completed
        ]
        return self.results

    def _download_one(self, artifact: ResolvedArtifact) -> DownloadResult | None:
        if self.cancel_event.is_set():
            return None

        try:
            downloaded = self.adapter.download(artifact.spec, self.download_dir)
        except DownloadError as e:
            print(f"  Failed: {artifact.name} {artifact.version}: {e.reason}")
            return DownloadResult(artifact, False, None, e)

        local_path = self.download_dir / downloaded.filename
        print(f"  Downloaded: {downloaded.filename}")
        return DownloadResult(
            artifact=artifact.with_download(downloaded.filename, downloaded.sha256),
            success=True,
            local_path=local_path,
            error=None,
        )

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise BuildCancelled(f"Build cancelled; staging kept at {self.download_dir}")

    def get_successful_downloads(self) -> list[DownloadResult]:
        """Get list of successful downloads."""
        return [r for r in self.results if r.success]

    def get_failed_downloads(self) -> list[DownloadResult]:
        """Get list of failed downloads."""
        return [r for r in self.results if not r.success]

    def get_total_size(self) -> int:
        """Get total size of downloaded packages in bytes."""
        total = 0
        for result in self.results:
            if result.success and result.local_path:
                total += result.local_path.stat().st_size
        return total
