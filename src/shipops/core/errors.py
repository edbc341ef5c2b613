"""Error taxonomy for the build-and-publish pipeline.

Errors are grouped by the stage that raises them. Unit-level errors
(build, registry, manifest) are captured into per-unit results and never
abort sibling units; run-level errors (config, detection, commit) abort
the whole invocation.
"""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for all pipeline failures."""


class ConfigError(PipelineError):
    """Raised when the static pipeline configuration is invalid."""


class DetectionError(PipelineError):
    """Raised when the change set cannot be computed (e.g. unknown revision)."""


class BuildError(PipelineError):
    """Raised when a unit's build fails. Carries the tool diagnostic."""

    def __init__(self, message: str, diagnostic: str = ""):
        super().__init__(message)
        self.diagnostic = diagnostic


class BuildTimeoutError(BuildError):
    """Raised when a build exceeds its wall-clock limit."""


class RegistryError(PipelineError):
    """Base class for remote registry failures."""


class TransientRegistryError(RegistryError):
    """Network or registry hiccup that is worth retrying."""


class RegistryPermissionError(RegistryError):
    """The pipeline credentials are not allowed to perform the operation."""


class RegistryNotFoundError(RegistryError):
    """The registry namespace or artifact does not exist."""


class ManifestError(PipelineError):
    """Raised when a unit's manifest cannot be patched."""

    def __init__(self, unit: str, path: str, message: str, field: str | None = None):
        where = f"{path} ({field})" if field else path
        super().__init__(f"[{unit}] {where}: {message}")
        self.unit = unit
        self.path = path
        self.field = field


class CommitError(PipelineError):
    """Raised when the GitOps commit cannot be produced or pushed."""


class PushConflictError(CommitError):
    """The push was rejected because the branch tip moved (non-fast-forward)."""


class CommitAuthError(CommitError):
    """The push was rejected for authentication or permission reasons."""


class StaleRevisionError(CommitError):
    """The branch has moved past the invocation's source revision."""
