"""Checksum, dependency manifest and build file tools."""

from .collector import DependencyManifest
from .signer import ChecksumSigner
from .validator import ConfigValidator

__all__ = ["ChecksumSigner", "ConfigValidator", "DependencyManifest"]
