"""End-to-end build-and-publish pipeline.

One invocation runs the stages strictly in order: detect changes, build,
publish, update manifests, commit. Per-unit work inside the build, publish
and manifest stages is independent; the commit step is the single
serialization point and only runs once every unit's manifest result has
been collected.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

import structlog

from shipops.core.auth import AuthError
from shipops.core.builds import BuildEnvironment, build_units
from shipops.core.changes import DiffAdapter, detect_changes, is_filtered
from shipops.core.config import PipelineConfig
from shipops.core.errors import (
    CommitError,
    DetectionError,
    RegistryError,
    TransientRegistryError,
)
from shipops.core.gitops import (
    CommitOutcome,
    CommitResult,
    GitOpsAdapter,
    commit_manifests,
)
from shipops.core.manifests import update_manifests
from shipops.core.publish import ArtifactRegistry, publish_artifacts
from shipops.core.retry import retrying
from shipops.core.triggers import EventKind, Trigger, TriggerFilter, build_trigger_filter
from shipops.core.units import ChangeSet, Unit, UnitStatus

logger = structlog.get_logger(__name__)


class VersionControl(DiffAdapter, GitOpsAdapter, Protocol):
    """Full version-control interface used by a pipeline run."""


@dataclass(frozen=True)
class UnitReport:
    """Final status of one unit in a run."""

    unit: str
    status: UnitStatus
    detail: str | None = None
    image: str | None = None
    digest: str | None = None


@dataclass(frozen=True)
class RunReport:
    """
    Summary of one pipeline invocation.

    Attributes:
        trigger: Trigger inputs of the run.
        units: Per-unit final status, in configuration order.
        changes: Computed change set (None if detection did not run).
        commit: Result of the commit step (None if it did not run).
        note: Why the run ended early without work, if it did.
        error: Run-level failure, if any.
    """

    trigger: Trigger
    units: tuple[UnitReport, ...]
    changes: ChangeSet | None = None
    commit: CommitResult | None = None
    note: str | None = None
    error: str | None = None

    @property
    def failed_units(self) -> list[UnitReport]:
        return [u for u in self.units if u.status.failed]

    @property
    def ok(self) -> bool:
        if self.error or self.failed_units:
            return False
        return self.commit is None or self.commit.ok


def pipeline_filter(config: PipelineConfig) -> TriggerFilter:
    """Return the filter recognizing commits produced by the pipeline itself."""
    return build_trigger_filter(
        skip_marker=config.gitops.skip_marker,
        author_email=config.gitops.author_email,
    )


def run_pipeline(
    config: PipelineConfig,
    trigger: Trigger,
    *,
    vcs: VersionControl,
    builder: BuildEnvironment,
    registry: ArtifactRegistry,
    repo_dir: Path,
    sleep: Callable[[float], None] = time.sleep,
) -> RunReport:
    """
    Run the pipeline for one trigger.

    Unit-level failures are reported per unit and never stop other units.
    Detection failures, an unreachable registry and commit failures are
    reported as run-level errors.

    Raises:
        ValueError: If the trigger belongs to the manual infrastructure flow.
    """
    if trigger.is_infra:
        raise ValueError("Manual infrastructure triggers are handled by the infra flow.")

    skipped = tuple(UnitReport(u.name, UnitStatus.SKIPPED) for u in config.units)
    trigger_filter = pipeline_filter(config)
    log = logger.bind(head=trigger.head, branch=trigger.branch, event=trigger.event.value)

    try:
        if is_filtered(vcs, trigger, trigger_filter):
            log.info("pipeline_filtered")
            return RunReport(
                trigger=trigger,
                units=skipped,
                note=f"Head commit is a pipeline commit ({config.gitops.skip_marker}).",
            )
        changes = detect_changes(vcs, config.units, trigger)
        if changes and trigger.event == EventKind.PULL_REQUEST:
            _require_on_branch(vcs, trigger, config.gitops.remote)
    except (DetectionError, CommitError) as exc:
        log.error("pipeline_detection_failed", error=str(exc))
        return RunReport(trigger=trigger, units=skipped, error=str(exc))

    if not changes:
        log.info("pipeline_no_changes")
        return RunReport(
            trigger=trigger,
            units=skipped,
            changes=changes,
            note="No unit changed.",
        )

    try:
        uris = _repository_uris(registry, changes.units, config, sleep)
    except (RegistryError, AuthError) as exc:
        log.error("pipeline_registry_unavailable", error=str(exc))
        return RunReport(
            trigger=trigger,
            units=skipped,
            changes=changes,
            error=f"Registry unavailable: {exc}",
        )

    builds = build_units(
        builder,
        changes.units,
        trigger.head,
        lambda unit: uris[unit.name],
        max_parallel=config.build.parallel,
        timeout=config.build.timeout_seconds,
    )
    published = publish_artifacts(
        registry,
        builds.values(),
        trigger.head,
        policy=config.retry,
        max_parallel=config.build.parallel,
        sleep=sleep,
    )
    manifests = update_manifests(repo_dir, published.values())

    commit: CommitResult | None = None
    error: str | None = None
    patches = {name: m.patch for name, m in manifests.items() if m.ok}
    if patches:
        try:
            commit = commit_manifests(
                vcs,
                patches,
                trigger,
                config.gitops,
                config.retry,
                repo_dir=repo_dir,
                trigger_filter=trigger_filter,
                sleep=sleep,
            )
        except CommitError as exc:
            log.error("pipeline_commit_failed", error=str(exc))
            commit = CommitResult(outcome=CommitOutcome.FAILED, error=str(exc))
            error = str(exc)

    reports: list[UnitReport] = []
    for unit in config.units:
        name = unit.name
        build = builds.get(name)
        if build is None:
            reports.append(UnitReport(name, UnitStatus.SKIPPED))
            continue
        if not build.ok:
            reports.append(UnitReport(name, build.status, detail=build.error))
            continue
        pub = published.get(name)
        if pub is None:
            reports.append(UnitReport(name, UnitStatus.BUILT, digest=build.artifact_id))
            continue
        if not pub.ok:
            reports.append(UnitReport(name, pub.status, detail=pub.error))
            continue
        image = f"{pub.repository_uri}:{pub.tag}"
        manifest = manifests.get(name)
        if manifest is None:
            reports.append(UnitReport(name, pub.status, image=image, digest=pub.digest))
            continue
        if not manifest.ok:
            reports.append(
                UnitReport(name, manifest.status, detail=manifest.error, image=image, digest=pub.digest)
            )
            continue
        reports.append(
            UnitReport(
                name,
                manifest.status,
                detail=_manifest_detail(manifest.patch.changed, commit),
                image=image,
                digest=pub.digest,
            )
        )

    report = RunReport(
        trigger=trigger,
        units=tuple(reports),
        changes=changes,
        commit=commit,
        error=error,
    )
    log.info(
        "pipeline_finished",
        ok=report.ok,
        failed=[u.unit for u in report.failed_units],
        commit=commit.outcome.value if commit else None,
    )
    return report


def _require_on_branch(vcs: VersionControl, trigger: Trigger, remote: str) -> None:
    """Reject a pull request head that is not on the branch manifests are committed to."""
    tip = vcs.fetch_branch(remote, trigger.branch)
    if not vcs.is_ancestor(trigger.head, tip):
        raise DetectionError(
            f"Head {trigger.head} is not on branch '{trigger.branch}'. "
            "Pass the pull request head commit, not the merge commit."
        )


def _repository_uris(
    registry: ArtifactRegistry,
    units: tuple[Unit, ...],
    config: PipelineConfig,
    sleep: Callable[[float], None],
) -> dict[str, str]:
    """Resolve every unit's repository URI before any build starts."""
    return retrying(
        config.retry,
        TransientRegistryError,
        operation="registry_lookup",
        sleep=sleep,
    )(lambda: {u.name: registry.repository_uri(u.repository) for u in units})


def _manifest_detail(changed: bool, commit: CommitResult | None) -> str | None:
    if not changed:
        return "manifest already up to date"
    if commit is None:
        return None
    if commit.outcome == CommitOutcome.COMMITTED:
        return f"committed in {commit.revision}"
    if commit.outcome == CommitOutcome.SUPERSEDED:
        return "not committed: superseded by a newer revision"
    if commit.outcome == CommitOutcome.FAILED:
        return "not committed: commit failed"
    return None
