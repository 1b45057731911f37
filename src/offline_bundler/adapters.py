#!/usr/bin/env python3
"""
Package manager adapters for offline bundle building.

One adapter per ecosystem hides repository registration, dependency
queries and artifact download behind a single interface. The shared
transitive walk, download retries and repository probing live here.
"""

import os
import re
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from bundle_manifest.signer import compute_sha256

from .config import BuildConfig
from .errors import (
    DependencyResolutionWarning,
    DownloadError,
    PackageNotFoundError,
    RepositorySetupError,
)
from .models import Ecosystem, PackageSpec, ResolvedArtifact

K8S_REPOSITORY_BASE = "https://pkgs.k8s.io/core:/stable:"


@dataclass
class PackageInfo:
    """Repository metadata for one package version."""
    name: str
    version: str
    # Each entry is a group of alternatives, first one preferred
    depends: list[list[str]] = field(default_factory=list)


def create_session(retries: int) -> requests.Session:
    """Create an HTTP session with bounded retries."""
    session = requests.Session()
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        backoff_factor=0.3,
        status_forcelist=(500, 502, 503, 504),
        allowed_methods=frozenset({"HEAD", "GET"}),
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def _safe_name(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9._+-]", "_", value)


class PackageManagerAdapter(ABC):
    """Common interface over apt, dnf, pacman and zypper."""

    ecosystem: Ecosystem
    package_glob = "*"
    SUPPORT_PACKAGES: tuple[str, ...] = ()
    RETRY_BACKOFF = 2.0

    def __init__(self, config: BuildConfig, session: requests.Session | None = None):
        """Initialize the adapter.

        Args:
            config: Build configuration.
            session: HTTP session for repository probes. Created if omitted.
        """
        self.config = config
        self.sysroot = config.sysroot
        self.timeout = config.timeout
        self.retries = config.retries
        self.session = session or create_session(config.retries)
        self.warnings: list[DependencyResolutionWarning] = []
        self.dependency_graph: dict[str, list[str]] = {}
        self._cache: dict[tuple[str, str | None], PackageInfo] = {}
        self._missing: set[str] = set()

    # Repository

    @abstractmethod
    def repository_url(self, kubernetes_minor: str) -> str:
        """Base URL of the package repository for a minor release."""

    @abstractmethod
    def key_url(self, kubernetes_minor: str) -> str:
        """Signing key or metadata URL probed before registration."""

    @abstractmethod
    def _configure_repository(self, kubernetes_minor: str) -> None:
        """Perform the mutating registration steps."""

    def probe_repository(self, kubernetes_minor: str) -> None:
        """Check that the repository endpoint answers before touching the host.

        Raises:
            RepositorySetupError: If the endpoint is unreachable or not 2xx.
        """
        url = self.key_url(kubernetes_minor)
        print(f"Probing repository endpoint: {url}")

        try:
            response = self.session.head(
                url,
                timeout=self.config.probe_timeout,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            raise RepositorySetupError(f"Repository endpoint unreachable: {url}: {e}") from e

        if not response.ok:
            raise RepositorySetupError(
                f"Repository endpoint {url} returned HTTP {response.status_code}"
            )

    def register_repository(self, kubernetes_minor: str) -> None:
        """Probe, then register the Kubernetes repository on this host.

        Args:
            kubernetes_minor: Release channel such as ``v1.29``.

        Raises:
            RepositorySetupError: On probe or registration failure.
        """
        self.probe_repository(kubernetes_minor)

        try:
            self._configure_repository(kubernetes_minor)
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or "").strip() if isinstance(e.stderr, str) else ""
            raise RepositorySetupError(
                f"Repository registration failed: {' '.join(map(str, e.cmd))}: {detail}"
            ) from e
        except (subprocess.TimeoutExpired, OSError, requests.RequestException) as e:
            raise RepositorySetupError(f"Repository registration failed: {e}") from e

    def _fetch_key(self, url: str) -> bytes:
        response = self.session.get(url, timeout=self.config.probe_timeout)
        response.raise_for_status()
        return response.content

    def _host_path(self, path: str) -> Path:
        return self.sysroot / path.lstrip("/")

    def _write_host_file(self, path: str, content: str) -> Path:
        target = self._host_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
        return target

    # Resolution

    @abstractmethod
    def query_package(self, name: str, version: str | None = None) -> PackageInfo:
        """Look up one package in the repository.

        Args:
            name: Package name or provided capability.
            version: Optional version pin.

        Returns:
            PackageInfo with hard dependencies only.

        Raises:
            PackageNotFoundError: If no matching package exists.
        """

    def _lookup(self, name: str, version: str | None = None) -> PackageInfo:
        key = (name, version)
        if key not in self._cache:
            try:
                self._cache[key] = self.query_package(name, version)
            except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
                raise PackageNotFoundError(name, version, str(e)) from e
        return self._cache[key]

    def candidate(self, spec: PackageSpec) -> PackageSpec:
        """Concrete repository name and version for a spec.

        Raises:
            PackageNotFoundError: If nothing in the repository matches.
        """
        info = self._lookup(spec.name, spec.version)
        return PackageSpec(info.name, info.version, self.ecosystem)

    def resolve_dependencies(
        self,
        spec: PackageSpec,
        pins: dict[str, PackageSpec] | None = None,
    ) -> list[PackageSpec]:
        """Return the transitive hard-dependency set of a package.

        The root itself is not included. Dependencies that cannot be
        looked up are recorded in ``warnings`` and skipped.

        Args:
            spec: Root package specification.
            pins: Specs by name whose version applies wherever that name
                is reached as a dependency (the other roots of a build).

        Returns:
            De-duplicated dependency specs in discovery order.

        Raises:
            PackageNotFoundError: If the root package does not exist.
        """
        pins = pins or {}
        root = self._lookup(spec.name, spec.version)
        seen = {root.name}
        queue = [root]
        dependencies: list[PackageSpec] = []

        while queue:
            info = queue.pop(0)
            edges: list[str] = []

            for group in info.depends:
                dep = self._lookup_group(group, info.name, pins)
                if dep is None:
                    continue
                if dep.name not in edges:
                    edges.append(dep.name)
                if dep.name in seen:
                    continue
                seen.add(dep.name)
                dependencies.append(PackageSpec(dep.name, dep.version, self.ecosystem))
                queue.append(dep)

            self.dependency_graph[info.name] = edges

        return dependencies

    def _lookup_group(
        self,
        group: list[str],
        required_by: str,
        pins: dict[str, PackageSpec],
    ) -> PackageInfo | None:
        reason = ""
        for candidate in group:
            pin = pins.get(candidate)
            try:
                return self._lookup(candidate, pin.version if pin else None)
            except PackageNotFoundError as e:
                reason = str(e)

        label = " | ".join(group)
        if label not in self._missing:
            self._missing.add(label)
            warning = DependencyResolutionWarning(label, required_by, reason)
            self.warnings.append(warning)
            print(f"Warning: {warning}")
        return None

    # Download

    @abstractmethod
    def _fetch(self, spec: PackageSpec, work_dir: Path) -> None:
        """Download one package file into work_dir without installing it."""

    def download_ref(self, name: str, version: str) -> str:
        """Reference the package manager uses to fetch this artifact."""
        return f"{name}={version}"

    def download(self, spec: PackageSpec, dest_dir: str | Path) -> ResolvedArtifact:
        """Download exactly one artifact into dest_dir.

        Each attempt runs in a private work directory so concurrent
        downloads never share files. Attempts are bounded by ``retries``.

        Raises:
            DownloadError: If every attempt failed.
        """
        dest_dir = Path(dest_dir)
        work_dir = dest_dir / ".partial" / _safe_name(f"{spec.name}-{spec.version or 'candidate'}")
        last_error = "no attempt made"

        for attempt in range(self.retries + 1):
            if attempt:
                time.sleep(self.RETRY_BACKOFF * 2 ** (attempt - 1))
            shutil.rmtree(work_dir, ignore_errors=True)
            work_dir.mkdir(parents=True)

            try:
                self._fetch(spec, work_dir)
                artifact_path = self._find_artifact(work_dir, spec)
                break
            except subprocess.CalledProcessError as e:
                stderr = e.stderr if isinstance(e.stderr, str) else ""
                last_error = stderr.strip() or f"exit status {e.returncode}"
            except subprocess.TimeoutExpired:
                last_error = f"timed out after {self.timeout}s"
            except (FileNotFoundError, DownloadError) as e:
                last_error = str(e)
        else:
            shutil.rmtree(work_dir, ignore_errors=True)
            raise DownloadError(spec, last_error)

        target = dest_dir / artifact_path.name
        os.replace(artifact_path, target)
        shutil.rmtree(work_dir, ignore_errors=True)

        return ResolvedArtifact(
            name=spec.name,
            version=spec.version or "",
            ecosystem=self.ecosystem,
            download_ref=self.download_ref(spec.name, spec.version or ""),
            sha256=compute_sha256(target),
            filename=target.name,
        )

    def _find_artifact(self, work_dir: Path, spec: PackageSpec) -> Path:
        candidates = sorted(
            p for p in work_dir.rglob(self.package_glob)
            if p.is_file() and not p.name.endswith(".sig")
        )
        if not candidates:
            raise DownloadError(spec, "package manager produced no package file")

        for path in candidates:
            if path.name.startswith(spec.name) and self.config.arch in path.name:
                return path
        for path in candidates:
            if path.name.startswith(spec.name):
                return path
        return candidates[0]

    # Helpers

    def _run(
        self,
        args: list[str],
        check: bool = True,
        cwd: Path | None = None,
        input: bytes | None = None,
    ) -> subprocess.CompletedProcess:
        """Run a package manager command with the configured timeout."""
        return subprocess.run(
            args,
            capture_output=True,
            text=input is None,
            check=check,
            cwd=cwd,
            input=input,
            timeout=self.timeout,
        )


def get_adapter(
    config: BuildConfig,
    session: requests.Session | None = None,
) -> PackageManagerAdapter:
    """Create the adapter for the configured ecosystem."""
    from .apt import AptAdapter
    from .dnf import DnfAdapter
    from .pacman import PacmanAdapter
    from .zypper import ZypperAdapter

    adapters = {
        Ecosystem.DEB: AptAdapter,
        Ecosystem.RPM: DnfAdapter,
        Ecosystem.PACMAN: PacmanAdapter,
        Ecosystem.ZYPPER: ZypperAdapter,
    }
    return adapters[config.ecosystem](config, session=session)
