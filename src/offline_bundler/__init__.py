"""Offline Kubernetes installer bundle builder."""

from .builder import BundleBuilder
from .config import BuildConfig
from .errors import (
    BuildCancelled,
    BundlerError,
    DependencyResolutionWarning,
    DownloadError,
    IntegrityError,
    RepositorySetupError,
    UnresolvedRootError,
)
from .installer import InstallerEmitter
from .models import Bundle, DependencyClosure, Ecosystem, PackageSpec, ResolvedArtifact
from .resolver import DependencyResolver

__all__ = [
    "BuildCancelled",
    "BuildConfig",
    "Bundle",
    "BundleBuilder",
    "BundlerError",
    "DependencyClosure",
    "DependencyResolutionWarning",
    "DependencyResolver",
    "DownloadError",
    "Ecosystem",
    "InstallerEmitter",
    "IntegrityError",
    "PackageSpec",
    "RepositorySetupError",
    "ResolvedArtifact",
    "UnresolvedRootError",
]
