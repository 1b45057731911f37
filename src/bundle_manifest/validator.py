#!/usr/bin/env python3
"""
Build file validator for offline Kubernetes bundles.

Validates kubeversion.yaml build files before a build starts.
"""

import sys
from pathlib import Path
from typing import Any

import yaml

from offline_bundler.config import MAX_WORKERS, MIN_WORKERS, VERSION_PATTERN


class ConfigValidator:
    """Validate build files against the expected layout."""

    REQUIRED_FIELDS = ["kubernetes_version"]
    LIST_FIELDS = ["packages", "verify_packages"]
    KNOWN_FIELDS = REQUIRED_FIELDS + LIST_FIELDS + [
        "download_workers",
        "timeout",
        "retries",
        "arch",
    ]
    VALID_ARCHES = ["x86_64", "aarch64", "amd64", "arm64"]

    def __init__(self):
        """Initialize the validator."""
        self.errors: list[str] = []
        self.warnings: list[str] = []

    def validate(self, config: dict[str, Any]) -> bool:
        """Validate a build file mapping.

        Args:
            config: Parsed build file.

        Returns:
            True if valid, False otherwise.
        """
        self.errors = []
        self.warnings = []

        self._validate_required_fields(config)
        self._validate_version(config)
        self._validate_lists(config)
        self._validate_numbers(config)
        self._validate_arch(config)
        self._validate_unknown_fields(config)

        return len(self.errors) == 0

    def validate_file(self, filepath: str | Path) -> bool:
        """Validate a build YAML file.

        Args:
            filepath: Path to kubeversion.yaml.

        Returns:
            True if valid, False otherwise.
        """
        path = Path(filepath)

        if not path.exists():
            self.errors = [f"File not found: {path}"]
            return False

        try:
            with open(path) as f:
                config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            self.errors = [f"Invalid YAML: {e}"]
            return False

        if not isinstance(config, dict):
            self.errors = ["Build file must contain a mapping"]
            return False

        return self.validate(config)

    def _validate_required_fields(self, config: dict[str, Any]) -> None:
        for field in self.REQUIRED_FIELDS:
            if field not in config:
                self.errors.append(f"Missing required field: {field}")

    def _validate_version(self, config: dict[str, Any]) -> None:
        version = config.get("kubernetes_version")
        if version is None:
            return

        # YAML reads 1.29 as a float
        if not isinstance(version, str):
            self.errors.append(
                f"kubernetes_version must be a string, got: {type(version).__name__}"
            )
            return

        if not VERSION_PATTERN.match(version.strip()):
            self.errors.append(
                f"kubernetes_version must be MAJOR.MINOR.PATCH, got: {version}"
            )

    def _validate_lists(self, config: dict[str, Any]) -> None:
        for field in self.LIST_FIELDS:
            if field not in config:
                continue
            value = config[field]
            if not isinstance(value, list):
                self.errors.append(f"{field} must be a list")
                continue
            for i, item in enumerate(value):
                if not isinstance(item, str) or not item.strip():
                    self.errors.append(f"{field}[{i}] must be a non-empty string")

    def _validate_numbers(self, config: dict[str, Any]) -> None:
        workers = config.get("download_workers")
        if workers is not None:
            if not isinstance(workers, int) or isinstance(workers, bool):
                self.errors.append("download_workers must be an integer")
            elif not MIN_WORKERS <= workers <= MAX_WORKERS:
                self.warnings.append(
                    f"download_workers {workers} outside {MIN_WORKERS}-{MAX_WORKERS}, will be clamped"
                )

        timeout = config.get("timeout")
        if timeout is not None and (
            not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout <= 0
        ):
            self.errors.append("timeout must be a positive number")

        retries = config.get("retries")
        if retries is not None and (
            not isinstance(retries, int) or isinstance(retries, bool) or retries < 0
        ):
            self.errors.append("retries must be a non-negative integer")

    def _validate_arch(self, config: dict[str, Any]) -> None:
        arch = config.get("arch")
        if arch and arch not in self.VALID_ARCHES:
            self.warnings.append(f"Unusual architecture: {arch}")

    def _validate_unknown_fields(self, config: dict[str, Any]) -> None:
        for key in config:
            if key not in self.KNOWN_FIELDS:
                self.warnings.append(f"Unknown field: {key}")

    def get_summary(self) -> str:
        """Get validation summary.

        Returns:
            Human-readable summary string.
        """
        lines = []

        if self.errors:
            lines.append(f"ERRORS ({len(self.errors)}):")
            for error in self.errors:
                lines.append(f"  - {error}")

        if self.warnings:
            lines.append(f"WARNINGS ({len(self.warnings)}):")
            for warning in self.warnings:
                lines.append(f"  - {warning}")

        if not self.errors and not self.warnings:
            lines.append("Build file is valid.")

        return "\n".join(lines)


def main():
    """CLI entry point for build file validation."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Validate kubeversion.yaml build files"
    )
    parser.add_argument(
        "files",
        nargs="+",
        help="Build files to validate",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Only output errors",
    )

    args = parser.parse_args()

    validator = ConfigValidator()
    all_valid = True

    for path in args.files:
        is_valid = validator.validate_file(path)

        if not args.quiet or not is_valid:
            print(f"\n{path}:")
            print(validator.get_summary())

        if not is_valid:
            all_valid = False

    sys.exit(0 if all_valid else 1)


if __name__ == "__main__":
    main()
