"""Change detection: which units does a revision range touch?

The change detector compares two revisions and returns the units whose
configured source path contains at least one changed file. It is the only
stage allowed to abort a run before any build starts.
"""

from __future__ import annotations

from typing import Iterable, Protocol

import structlog

from shipops.core.errors import DetectionError
from shipops.core.triggers import (
    ZERO_REVISION,
    CommitInfo,
    EventKind,
    Trigger,
    TriggerFilter,
)
from shipops.core.units import ChangeSet, Unit

logger = structlog.get_logger(__name__)


class DiffAdapter(Protocol):
    """Interface for the read-only version-control queries used here."""

    def revision_exists(self, revision: str) -> bool:
        """Return True if the revision resolves to a commit."""
        ...

    def first_parent(self, revision: str) -> str | None:
        """Return the first parent of a commit, or None for a root commit."""
        ...

    def merge_base(self, left: str, right: str) -> str | None:
        """Return the best common ancestor of two revisions."""
        ...

    def changed_paths(self, base: str, head: str) -> list[str]:
        """Return repository-relative paths that differ between two revisions."""
        ...

    def commit_info(self, revision: str) -> CommitInfo:
        """Return message and author of a commit."""
        ...


def is_filtered(adapter: DiffAdapter, trigger: Trigger, trigger_filter: TriggerFilter) -> bool:
    """Return True if the head commit must not trigger the pipeline."""
    _require_revision(adapter, trigger.head, "head")
    return trigger_filter.matches(adapter.commit_info(trigger.head))


def resolve_base(adapter: DiffAdapter, trigger: Trigger) -> str | None:
    """
    Determine the revision to diff against.

    - Pull request: the merge base of the target branch tip and the head,
      so every commit of the request is included.
    - Push / manual: the given previous tip, or the head's first parent.

    Returns None when no base exists (new branch or root commit), meaning
    every unit is considered changed.

    Raises:
        DetectionError: If a given revision does not exist in the history.
    """
    _require_revision(adapter, trigger.head, "head")

    if trigger.event == EventKind.PULL_REQUEST:
        if not trigger.base:
            raise DetectionError("Pull request triggers require a base revision.")
        _require_revision(adapter, trigger.base, "base")
        base = adapter.merge_base(trigger.base, trigger.head)
        if base is None:
            raise DetectionError(
                f"No common history between {trigger.base} and {trigger.head}."
            )
        return base

    if trigger.base and trigger.base != ZERO_REVISION:
        _require_revision(adapter, trigger.base, "base")
        return trigger.base
    if trigger.base == ZERO_REVISION:
        return None
    return adapter.first_parent(trigger.head)


def units_for_paths(units: Iterable[Unit], paths: Iterable[str]) -> tuple[Unit, ...]:
    """Return the units (in configuration order) owning at least one path."""
    paths = list(paths)
    return tuple(u for u in units if any(u.owns_path(p) for p in paths))


def detect_changes(
    adapter: DiffAdapter,
    units: Iterable[Unit],
    trigger: Trigger,
) -> ChangeSet:
    """
    Compute the change set of an invocation.

    Args:
        adapter: Version-control adapter used to diff revisions.
        units: Configured units.
        trigger: Trigger inputs carrying head and base revisions.

    Returns:
        A ChangeSet. It is empty when nothing under any unit's source changed.

    Raises:
        DetectionError: If a revision is unknown or histories are unrelated.
    """
    units = tuple(units)
    base = resolve_base(adapter, trigger)

    if base is None:
        logger.info("change_detection_full", head=trigger.head, units=len(units))
        return ChangeSet(base=None, head=trigger.head, units=units)

    paths = tuple(adapter.changed_paths(base, trigger.head))
    changed = units_for_paths(units, paths)
    logger.info(
        "change_detection_done",
        base=base,
        head=trigger.head,
        paths=len(paths),
        units=[u.name for u in changed],
    )
    return ChangeSet(base=base, head=trigger.head, units=changed, paths=paths)


def _require_revision(adapter: DiffAdapter, revision: str, label: str) -> None:
    if not adapter.revision_exists(revision):
        raise DetectionError(f"Unknown {label} revision: {revision}")
