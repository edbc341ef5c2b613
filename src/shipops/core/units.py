"""Core unit domain models.

This module defines the deployable unit (one microservice), the change set
computed per invocation and the per-unit status vocabulary reported at the
end of a run. It is intentionally free of CLI and infrastructure concerns
so the same models can be reused by the pipeline, the CLI and tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class Unit:
    """
    Represents one independently buildable and deployable microservice.

    Attributes:
        name: Unique name of the unit.
        source: Repository-relative directory holding the unit's sources.
        build_file: Repository-relative path of the build definition.
        manifest: Repository-relative path of the deployment manifest.
        repository: Registry namespace the unit's artifacts are pushed to.
        repository_field: Dotted key path of the image repository field.
        tag_field: Dotted key path of the image tag field.
        context: Build context directory. Defaults to `source`.
    """

    name: str
    source: str
    build_file: str
    manifest: str
    repository: str
    repository_field: str = "image.repository"
    tag_field: str = "image.tag"
    context: str | None = None

    @property
    def build_context(self) -> str:
        """Return the directory handed to the build environment."""
        return self.context or self.source

    def owns_path(self, path: str) -> bool:
        """Return True if a repository-relative path lies under the source."""
        root = self.source.strip("/")
        if root in ("", "."):
            return True
        if path.startswith("./"):
            path = path[2:]
        return path == root or path.startswith(f"{root}/")


@dataclass(frozen=True)
class ChangeSet:
    """
    Units whose source subtree differs between two revisions.

    Attributes:
        base: Revision the diff was taken from (None when every unit is
              selected because no usable base exists).
        head: Revision the diff was taken to.
        units: Changed units, in configuration order.
        paths: Changed repository-relative paths.
    """

    base: str | None
    head: str
    units: tuple[Unit, ...] = ()
    paths: tuple[str, ...] = field(default=(), repr=False)

    @property
    def names(self) -> list[str]:
        return [u.name for u in self.units]

    def __bool__(self) -> bool:
        return bool(self.units)


class UnitStatus(str, Enum):
    """
    Final state of a unit within one invocation.

    Values:
        SKIPPED: The unit had no changes (or the run was filtered).
        BUILT: The build succeeded; nothing further happened.
        BUILD_FAILED: The build failed or timed out.
        PUBLISHED: The artifact was pushed and confirmed in the registry.
        PUBLISH_FAILED: The artifact could not be published.
        MANIFEST_UPDATED: The manifest was patched with the new image.
        MANIFEST_FAILED: The manifest could not be patched.
    """

    SKIPPED = "skipped"
    BUILT = "built"
    BUILD_FAILED = "build-failed"
    PUBLISHED = "published"
    PUBLISH_FAILED = "publish-failed"
    MANIFEST_UPDATED = "manifest-updated"
    MANIFEST_FAILED = "manifest-failed"

    @property
    def failed(self) -> bool:
        return self in _FAILED_STATUSES


_FAILED_STATUSES = {
    UnitStatus.BUILD_FAILED,
    UnitStatus.PUBLISH_FAILED,
    UnitStatus.MANIFEST_FAILED,
}
