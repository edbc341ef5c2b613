"""GitOps commit of updated manifests.

All manifest patches of one invocation are committed together, in a
single commit on the triggering branch. The branch tip is treated as an
optimistically versioned resource: fetch the tip, apply the patches on top
of it, commit and push; a non-fast-forward rejection means another writer
won the race, so the cycle is repeated against the new tip a bounded
number of times.

Before every attempt the invocation checks it is not stale: if the branch
moved past its source revision with anything other than pipeline manifest
commits, a newer invocation owns the deployment and the commit is aborted.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Protocol

import structlog

from shipops.core.config import GitOpsSettings, RetryPolicy
from shipops.core.errors import (
    CommitError,
    ManifestError,
    PushConflictError,
    StaleRevisionError,
)
from shipops.core.manifests import ManifestPatch
from shipops.core.retry import retrying
from shipops.core.triggers import CommitInfo, Trigger, TriggerFilter

logger = structlog.get_logger(__name__)


class GitOpsAdapter(Protocol):
    """Interface for the version-control writes used by the committer."""

    def fetch_branch(self, remote: str, branch: str) -> str:
        """Fetch a remote branch and return its tip revision."""
        ...

    def head(self) -> str:
        """Return the revision currently checked out."""
        ...

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Return True if `ancestor` is reachable from `descendant`."""
        ...

    def commits_between(self, old: str, new: str) -> list[CommitInfo]:
        """Return the commits reachable from `new` but not from `old`."""
        ...

    def reset_to(self, revision: str) -> None:
        """Move the working tree and HEAD to a revision, discarding edits."""
        ...

    def stage(self, paths: list[str]) -> None:
        """Stage the given repository-relative paths."""
        ...

    def has_staged_changes(self) -> bool:
        """Return True if the index differs from HEAD."""
        ...

    def commit(self, message: str, *, author_name: str, author_email: str) -> str:
        """Create a commit from the index and return its revision."""
        ...

    def push(self, remote: str, branch: str) -> None:
        """Push HEAD to a remote branch."""
        ...


class CommitOutcome(str, Enum):
    """Outcome of the GitOps commit step."""

    COMMITTED = "committed"
    NO_CHANGES = "no-changes"
    SUPERSEDED = "superseded"
    FAILED = "failed"


@dataclass(frozen=True)
class CommitResult:
    """
    Result of the GitOps commit step.

    Attributes:
        outcome: What happened to the commit.
        revision: Revision of the pushed commit, when one was pushed.
        units: Units whose manifests were part of the commit.
        attempts: Push attempts made.
        error: Failure or supersession detail.
    """

    outcome: CommitOutcome
    revision: str | None = None
    units: tuple[str, ...] = ()
    attempts: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome != CommitOutcome.FAILED


def commit_message(revision: str, units: list[str], settings: GitOpsSettings) -> str:
    """Return the commit message for a manifest update."""
    subject = f"{settings.message_prefix}: deploy {revision} {settings.skip_marker}"
    body = "\n".join(
        [
            f"Source revision: {revision}",
            f"Units: {', '.join(sorted(units))}",
        ]
    )
    return f"{subject}\n\n{body}\n"


def check_staleness(
    adapter: GitOpsAdapter,
    source_revision: str,
    tip: str,
    trigger_filter: TriggerFilter,
) -> None:
    """
    Verify the branch tip only moved by pipeline commits since `source_revision`.

    Raises:
        StaleRevisionError: If the source revision was rewritten away or a
            non-pipeline commit landed on top of it.
    """
    if tip == source_revision:
        return
    if not adapter.is_ancestor(source_revision, tip):
        raise StaleRevisionError(
            f"Branch tip {tip} no longer contains source revision {source_revision}"
        )
    newer = [c for c in adapter.commits_between(source_revision, tip) if not trigger_filter.matches(c)]
    if newer:
        raise StaleRevisionError(
            f"Branch advanced past {source_revision} with newer source commit {newer[0].sha}"
        )


def commit_manifests(
    adapter: GitOpsAdapter,
    patches: Mapping[str, ManifestPatch | None],
    trigger: Trigger,
    settings: GitOpsSettings,
    policy: RetryPolicy,
    *,
    repo_dir: Path,
    trigger_filter: TriggerFilter,
    sleep: Callable[[float], None] = time.sleep,
) -> CommitResult:
    """
    Commit and push the collected manifest patches in one commit.

    Args:
        adapter: Version-control adapter operating on the repository checkout.
        patches: Patch per unit. Every entry must be present; a None value
            means the collection is incomplete and nothing is committed.
        trigger: Trigger of the invocation (source revision and branch).
        settings: GitOps settings (remote, author, marker).
        policy: Retry policy for non-fast-forward rejections.
        repo_dir: Repository checkout the patches are applied to.
        trigger_filter: Recognizes pipeline commits during the staleness check.
        sleep: Sleep function used between attempts.

    Returns:
        A CommitResult with outcome COMMITTED, NO_CHANGES or SUPERSEDED.

    Raises:
        CommitError: If the collection is incomplete, patches cannot be
            re-applied, authentication fails or every attempt was rejected.
    """
    missing = sorted(name for name, patch in patches.items() if patch is None)
    if missing:
        raise CommitError(
            f"Manifest patches missing for {', '.join(missing)}; nothing was committed."
        )
    current: list[ManifestPatch] = [p for p in patches.values() if p is not None]
    units = tuple(sorted(p.unit for p in current))
    if not current:
        return CommitResult(outcome=CommitOutcome.NO_CHANGES)

    message = commit_message(trigger.head, list(units), settings)
    attempts = 0

    def _attempt() -> CommitResult:
        nonlocal attempts, current
        attempts += 1

        tip = adapter.fetch_branch(settings.remote, trigger.branch)
        check_staleness(adapter, trigger.head, tip, trigger_filter)

        if adapter.head() != tip:
            logger.info("gitops_rebasing", tip=tip, attempt=attempts)
            adapter.reset_to(tip)
            try:
                current = [p.reapply(repo_dir) for p in current]
            except ManifestError as exc:
                raise CommitError(f"Cannot re-apply manifest patch on {tip}: {exc}") from exc

        adapter.stage([p.path for p in current])
        if not adapter.has_staged_changes():
            logger.info("gitops_no_changes", revision=trigger.head)
            return CommitResult(
                outcome=CommitOutcome.NO_CHANGES, units=units, attempts=attempts
            )

        revision = adapter.commit(
            message,
            author_name=settings.author_name,
            author_email=settings.author_email,
        )
        adapter.push(settings.remote, trigger.branch)
        logger.info("gitops_pushed", revision=revision, branch=trigger.branch)
        return CommitResult(
            outcome=CommitOutcome.COMMITTED,
            revision=revision,
            units=units,
            attempts=attempts,
        )

    try:
        return retrying(
            policy,
            PushConflictError,
            operation="push",
            sleep=sleep,
            branch=trigger.branch,
        )(_attempt)
    except StaleRevisionError as exc:
        logger.warning("gitops_superseded", revision=trigger.head, reason=str(exc))
        return CommitResult(
            outcome=CommitOutcome.SUPERSEDED,
            units=units,
            attempts=attempts,
            error=str(exc),
        )
    except PushConflictError as exc:
        raise CommitError(
            f"Push to '{trigger.branch}' was rejected {attempts} times ({exc}). "
            f"Merge manually: fetch '{trigger.branch}', set "
            f"{', '.join(f'{p.unit}={trigger.head}' for p in current)} in the "
            f"manifests and push."
        ) from exc
