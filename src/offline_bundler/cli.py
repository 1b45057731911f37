#!/usr/bin/env python3
"""
Command line front end for offline Kubernetes bundles.

Runs the build pipeline (repository registration, resolution,
download and archive, installer, checksums) and bundle verification.
"""

import shutil
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from bundle_manifest.collector import DependencyManifest
from bundle_manifest.signer import ChecksumSigner

from .adapters import PackageManagerAdapter, get_adapter
from .builder import BundleBuilder
from .config import BuildConfig, resolve_target
from .errors import (
    BuildCancelled,
    BundlerError,
    IntegrityError,
)
from .installer import InstallerEmitter
from .models import Bundle, BuildReport
from .resolver import DependencyResolver

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130


class BundleCLI:
    """Orchestrate bundle builds and verification."""

    def __init__(
        self,
        adapter_factory: Callable[[BuildConfig], PackageManagerAdapter] | None = None,
        cancel_event: threading.Event | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            adapter_factory: Creates the adapter for a configuration.
                Defaults to get_adapter.
            cancel_event: Set from another thread to cancel a running build.
        """
        self.adapter_factory = adapter_factory or get_adapter
        self.cancel_event = cancel_event or threading.Event()
        self.signer = ChecksumSigner()
        self.build_log: list[str] = []

    def build(self, config: BuildConfig) -> Bundle:
        """Execute the full bundle build.

        Args:
            config: Build configuration.

        Returns:
            The finished bundle, with non-fatal problems in its report.

        Raises:
            RepositorySetupError: Repository probe or registration failed.
            UnresolvedRootError: A root package does not exist.
            BuildCancelled: The build was cancelled; staging is kept.
        """
        self.build_log = []
        output_dir = config.output_dir
        output_dir.mkdir(parents=True, exist_ok=True)
        staging_dir = config.staging_root / f"{config.os_label}_{config.kubernetes_version}"

        archive_path = output_dir / config.artifact_name("archive")
        installer_path = output_dir / config.artifact_name("installer")
        checksum_path = output_dir / config.artifact_name("checksums")
        dependency_path = output_dir / config.artifact_name("dependencies")

        self._log(
            f"Starting bundle build: Kubernetes {config.kubernetes_version} "
            f"for {config.os_label} ({config.ecosystem.value})"
        )
        self._remove_outputs(config)
        keep_staging = config.keep_staging

        try:
            adapter = self.adapter_factory(config)

            self._log(f"Step 1: Registering repository {config.kubernetes_minor}")
            self._check_cancelled()
            adapter.register_repository(config.kubernetes_minor)

            self._log("Step 2: Resolving dependencies")
            self._check_cancelled()
            resolver = DependencyResolver(adapter, config.roots)
            closure = resolver.resolve()
            self._log(f"  Resolved {len(closure)} packages ({len(closure.roots())} roots)")
            for warning in resolver.warnings:
                self._log(f"  Warning: {warning}")

            self._log("Step 3: Downloading and archiving packages")
            self._check_cancelled()
            builder = BundleBuilder(
                adapter,
                staging_dir,
                workers=config.download_workers,
                cancel_event=self.cancel_event,
            )
            archive_path, failures = builder.build(closure, archive_path)
            report = BuildReport(
                total_artifacts=len(closure),
                warnings=list(resolver.warnings),
                download_errors=failures,
            )
            self._log(f"  Downloaded: {report.downloaded_count}, Failed: {report.failed_count}")
            for failure in failures:
                self._log(f"  Failed: {failure}")

            self._log("Step 4: Generating installer")
            emitter = InstallerEmitter(config.ecosystem, config.os_label, config.kubernetes_version)
            verify_packages = list(config.verify_packages) or [
                name for name in adapter.SUPPORT_PACKAGES if name in closure
            ]
            plan = emitter.plan(closure, verify_packages)
            emitter.emit(plan, installer_path)
            self._log(f"  Installer written: {installer_path.name}")

            manifest_path = None
            if config.write_dependency_manifest:
                self._log("Step 5: Writing dependency manifest")
                manifest = DependencyManifest(
                    config.ecosystem.value, config.os_label, config.kubernetes_version
                )
                manifest.add_artifacts(builder.downloaded)
                manifest.add_failures([str(f.spec) for f in failures])
                manifest_path = manifest.save(dependency_path)

            self._log("Step 6: Generating checksums")
            entries = self.signer.sign([archive_path, installer_path], checksum_path)
            for relative, digest in entries.items():
                self._log(f"  {digest}  {relative}")

            self._log(report.summary())
            self._write_log(output_dir / config.artifact_name("log"))

            return Bundle(
                ecosystem=config.ecosystem,
                os_label=config.os_label,
                kubernetes_version=config.kubernetes_version,
                artifacts=tuple(closure),
                archive_path=archive_path,
                installer_path=installer_path,
                checksum_manifest_path=checksum_path,
                dependency_manifest_path=manifest_path,
                report=report,
            )

        except (BuildCancelled, KeyboardInterrupt) as e:
            self.cancel_event.set()
            keep_staging = True
            self._remove_outputs(config)
            self._log(f"CANCELLED: staging kept at {staging_dir}")
            if isinstance(e, KeyboardInterrupt):
                raise BuildCancelled("Build interrupted") from None
            raise

        except Exception as e:
            self._log(f"ERROR: {e}")
            self._remove_outputs(config)
            raise

        finally:
            if not keep_staging and staging_dir.exists():
                shutil.rmtree(staging_dir, ignore_errors=True)

    def resolve(self, config: BuildConfig) -> DependencyResolver:
        """Register the repository and resolve the closure without downloading.

        Returns:
            The resolver, holding the closure and its warnings.

        Raises:
            RepositorySetupError: Repository probe or registration failed.
            UnresolvedRootError: A root package does not exist.
        """
        adapter = self.adapter_factory(config)
        adapter.register_repository(config.kubernetes_minor)

        resolver = DependencyResolver(adapter, config.roots)
        resolver.resolve()
        return resolver

    def verify(self, bundle_dir: str | Path) -> bool:
        """Recompute every checksum manifest in a bundle directory.

        Args:
            bundle_dir: Directory holding the bundle outputs.

        Returns:
            True when every listed file matches its digest.

        Raises:
            IntegrityError: On any missing file or digest mismatch, or if
                the directory has no checksum manifest.
        """
        bundle_dir = Path(bundle_dir)
        manifests = sorted(bundle_dir.glob("SHA256SUMS*"))
        if not manifests:
            raise IntegrityError([f"no SHA256SUMS manifest in {bundle_dir}"])

        for manifest in manifests:
            entries = self.signer.verify(manifest)
            for relative in entries:
                print(f"{relative}: OK")

        return True

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise BuildCancelled("Build cancelled")

    def _remove_outputs(self, config: BuildConfig) -> None:
        for kind in ("archive", "installer", "checksums", "dependencies", "log"):
            path = config.output_dir / config.artifact_name(kind)
            if path.exists():
                path.unlink()

    def _log(self, message: str) -> None:
        """Add message to build log.

        Args:
            message: Log message.
        """
        timestamp = datetime.now(timezone.utc).isoformat()
        log_entry = f"[{timestamp}] {message}"
        self.build_log.append(log_entry)
        print(log_entry)

    def _write_log(self, path: Path) -> None:
        with open(path, "w") as f:
            f.write("\n".join(self.build_log) + "\n")


def _build_config(args) -> BuildConfig:
    positional = args.args
    if len(positional) == 3:
        target, version, output_dir = positional
    elif len(positional) == 2 and args.config:
        target, output_dir = positional
        version = None
    else:
        raise ValueError("usage: build <ecosystem|os> <version> <out_dir> (version optional with --config)")

    overrides = {
        "kubernetes_version": version,
        "download_workers": args.workers,
        "timeout": args.timeout,
        "retries": args.retries,
        "work_dir": args.work_dir,
        "keep_staging": args.keep_staging or None,
    }
    if args.package:
        overrides["extra_packages"] = tuple(args.package)

    if args.config:
        return BuildConfig.from_version_file(args.config, target, output_dir, **overrides)

    ecosystem, label = resolve_target(target)
    values = {k: v for k, v in overrides.items() if v is not None}
    return BuildConfig(ecosystem=ecosystem, os_label=label, output_dir=Path(output_dir), **values)


def _resolve(cli: BundleCLI, args) -> int:
    try:
        ecosystem, label = resolve_target(args.target)
        config = BuildConfig(
            ecosystem=ecosystem,
            os_label=label,
            kubernetes_version=args.version,
            output_dir=Path.cwd(),
            extra_packages=tuple(args.package),
        )
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return EXIT_USAGE

    try:
        resolver = cli.resolve(config)
    except BundlerError as e:
        print(str(e), file=sys.stderr)
        return EXIT_FAILED

    print(f"Resolved {len(resolver.closure)} packages.")
    for warning in resolver.warnings:
        print(f"  Warning: {warning}")

    if args.output:
        resolver.export_resolution(args.output)
        print(f"Results written to: {args.output}")
    else:
        for artifact in resolver.closure:
            kind = "root" if artifact.is_root else "dependency"
            print(f"  [{kind}] {artifact.name} {artifact.version}")

    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        prog="k8s-offline-bundler",
        description="Build and verify offline Kubernetes installer bundles",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser("build", help="Build an offline bundle")
    build_parser.add_argument(
        "args",
        nargs="+",
        metavar="ARG",
        help="<ecosystem|os> <version> <out_dir>",
    )
    build_parser.add_argument("--config", help="kubeversion.yaml build file")
    build_parser.add_argument(
        "--package",
        action="append",
        default=[],
        help="Extra root package (name or name=version), repeatable",
    )
    build_parser.add_argument("--workers", type=int, help="Parallel downloads (1-8)")
    build_parser.add_argument("--timeout", type=float, help="Per-command timeout in seconds")
    build_parser.add_argument("--retries", type=int, help="Retries per network operation")
    build_parser.add_argument("--work-dir", help="Staging directory")
    build_parser.add_argument(
        "--keep-staging",
        action="store_true",
        help="Keep the staging directory after the build",
    )

    verify_parser = subparsers.add_parser("verify", help="Verify bundle checksums")
    verify_parser.add_argument("bundle_dir", help="Directory containing the bundle")

    resolve_parser = subparsers.add_parser(
        "resolve", help="Resolve the package closure without downloading"
    )
    resolve_parser.add_argument("target", help="OS or ecosystem (ubuntu, deb, arch, ...)")
    resolve_parser.add_argument("version", help="Kubernetes version (MAJOR.MINOR.PATCH)")
    resolve_parser.add_argument(
        "--package",
        action="append",
        default=[],
        help="Extra root package (name or name=version), repeatable",
    )
    resolve_parser.add_argument("-o", "--output", help="Output file for resolution results")

    args = parser.parse_args(argv)
    cli = BundleCLI()

    if args.command == "verify":
        try:
            cli.verify(args.bundle_dir)
        except IntegrityError as e:
            print(str(e), file=sys.stderr)
            return EXIT_FAILED
        print("Bundle verification passed.")
        return EXIT_OK

    if args.command == "resolve":
        return _resolve(cli, args)

    try:
        config = _build_config(args)
    except (ValueError, OSError) as e:
        print(str(e), file=sys.stderr)
        return EXIT_USAGE

    try:
        bundle = cli.build(config)
    except BuildCancelled as e:
        print(f"\nBundle build cancelled: {e}", file=sys.stderr)
        return EXIT_CANCELLED
    except (BundlerError, OSError) as e:
        print(f"\nBundle build failed: {e}", file=sys.stderr)
        return EXIT_FAILED

    print(f"\nBundle created successfully: {bundle.archive_path}")
    print(f"Installer: {bundle.installer_path}")
    print(f"Checksums: {bundle.checksum_manifest_path}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
