"""
Error taxonomy for offline bundle builds.

Fatal errors derive from BundlerError and stop the pipeline. Non-fatal
outcomes are UserWarning subclasses kept as records in the build report.
"""


class BundlerError(Exception):
    """Base class for all bundler errors."""


class RepositorySetupError(BundlerError):
    """Remote repository unreachable or registration failed."""


class PackageNotFoundError(BundlerError):
    """A package (or the pinned version of it) is not in the repository."""

    def __init__(self, name: str, version: str | None = None, detail: str = ""):
        self.name = name
        self.version = version
        label = f"{name}={version}" if version else name
        message = f"Package not found: {label}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class UnresolvedRootError(BundlerError):
    """A caller-requested root package cannot be resolved."""

    def __init__(self, spec, cause: Exception | None = None):
        self.spec = spec
        self.cause = cause
        message = f"Unresolved root package: {spec}"
        if cause:
            message += f": {cause}"
        super().__init__(message)


class DownloadError(BundlerError):
    """One artifact could not be downloaded."""

    def __init__(self, spec, reason: str):
        self.spec = spec
        self.reason = reason
        super().__init__(f"Failed to download {spec}: {reason}")


class IntegrityError(BundlerError):
    """Checksum mismatch or missing file during verification."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__(
            "Integrity check failed:\n" + "\n".join(f"  - {p}" for p in problems)
        )


class BuildCancelled(BundlerError):
    """The build was cancelled before the archive was produced."""


class DependencyResolutionWarning(UserWarning):
    """A transitive dependency could not be resolved."""

    def __init__(self, name: str, required_by: str, reason: str):
        self.name = name
        self.required_by = required_by
        self.reason = reason
        super().__init__(
            f"Could not resolve dependency {name} (required by {required_by}): {reason}"
        )


class InstallerExecutionWarning(UserWarning):
    """A package failed to install when the generated installer ran."""
