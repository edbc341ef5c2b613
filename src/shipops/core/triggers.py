"""Trigger inputs and trigger-filter predicates.

A Trigger describes the repository-change event that started an
invocation. Trigger filters decide whether a commit should be ignored by
the pipeline altogether, e.g. the manifest commits the pipeline pushes
itself. Filters encapsulate matching logic and can be composed using
logical operators (AND / OR), the same way job selectors are.

Filters are pure, side-effect-free objects.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

ZERO_REVISION = "0" * 40


class EventKind(str, Enum):
    """Kind of event that triggered an invocation."""

    PUSH = "push"
    PULL_REQUEST = "pull_request"
    MANUAL = "manual"

    @classmethod
    def parse(cls, value: str) -> EventKind:
        """Parse an event name, accepting GitHub Actions event names."""
        normalized = value.strip().lower().replace("-", "_")
        aliases = {
            "pull_request_target": cls.PULL_REQUEST,
            "workflow_dispatch": cls.MANUAL,
        }
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValueError(f"Unsupported event kind: {value}") from exc


class InfraOperation(str, Enum):
    """Operation selector of a manual infrastructure trigger."""

    PLAN = "plan"
    APPLY = "apply"
    DESTROY = "destroy"


@dataclass(frozen=True)
class Trigger:
    """
    Inputs of one pipeline invocation.

    Attributes:
        event: Event kind (push, pull request or manual).
        head: Revision the invocation builds.
        branch: Branch the invocation was triggered on (and pushes to).
        base: Base revision. For pushes, the previous tip of the branch;
              for pull requests, the target branch tip or ref.
        operation: Infra operation for manual infrastructure triggers.
    """

    event: EventKind
    head: str
    branch: str
    base: str | None = None
    operation: InfraOperation | None = None

    @property
    def is_infra(self) -> bool:
        return self.event == EventKind.MANUAL and self.operation is not None


@dataclass(frozen=True)
class CommitInfo:
    """Metadata of a single commit evaluated by trigger filters."""

    sha: str
    message: str
    author_email: str | None = None


class TriggerFilter(ABC):
    """
    Abstract base class for all trigger filters.

    A TriggerFilter returns True for commits the pipeline must not act on.
    """

    @abstractmethod
    def matches(self, commit: CommitInfo) -> bool:
        """
        Determine whether the given commit matches this filter.

        Args:
            commit: CommitInfo instance to evaluate.

        Returns:
            True if the commit should be ignored, False otherwise.
        """
        ...


class SkipMarkerFilter(TriggerFilter):
    """
    Filter that matches commits whose message carries a skip marker,
    such as `[skip ci]`.
    """

    def __init__(self, marker: str):
        if not marker.strip():
            raise ValueError("Skip marker must not be empty")
        self.marker = marker.lower()

    def matches(self, commit: CommitInfo) -> bool:
        return self.marker in commit.message.lower()


class AuthorFilter(TriggerFilter):
    """
    Filter that matches commits authored by a given identity (case-insensitive).
    """

    def __init__(self, email: str):
        self.email = email.lower()

    def matches(self, commit: CommitInfo) -> bool:
        return (commit.author_email or "").lower() == self.email


class AllFilter(TriggerFilter):
    """
    Composite filter that matches only if all child filters match.
    """

    def __init__(self, filters: list[TriggerFilter]):
        self.filters = filters

    def matches(self, commit: CommitInfo) -> bool:
        return all(f.matches(commit) for f in self.filters)


class AnyFilter(TriggerFilter):
    """
    Composite filter that matches if any child filter matches.
    """

    def __init__(self, filters: list[TriggerFilter]):
        self.filters = filters

    def matches(self, commit: CommitInfo) -> bool:
        return any(f.matches(commit) for f in self.filters)


def build_trigger_filter(*, skip_marker: str, author_email: str | None = None) -> TriggerFilter:
    """
    Build the filter that recognizes commits the pipeline should ignore.

    The skip marker alone is enough to ignore a commit; the pipeline's own
    author identity is matched too so manifest commits are recognized even
    if a marker was edited out of the message.
    """
    filters: list[TriggerFilter] = [SkipMarkerFilter(skip_marker)]
    if author_email:
        filters.append(AuthorFilter(author_email))
    if len(filters) == 1:
        return filters[0]
    return AnyFilter(filters)
