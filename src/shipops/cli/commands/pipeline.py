"""Commands for running the build-and-publish pipeline."""

from __future__ import annotations

import dataclasses
import json

import typer
from rich.markup import escape

from shipops.cli.common.context import (
    PipelineAppContext,
    build_pipeline_context,
    build_registry,
    build_trigger,
)
from shipops.cli.common.exits import (
    EXIT_USAGE,
    exit_for_result,
    exit_from_exc,
    ok_exit,
    warn_exit,
)
from shipops.cli.common.logs import configure_logging
from shipops.cli.common.options import (
    BaseOpt,
    BranchOpt,
    ConfigOpt,
    EventOpt,
    HeadOpt,
    JsonOpt,
    LogFormatOpt,
    ParallelOpt,
    RepoOpt,
)
from shipops.cli.common.output import out
from shipops.core.auth import AuthError
from shipops.core.changes import detect_changes, is_filtered
from shipops.core.errors import DetectionError, RegistryError
from shipops.core.gitops import CommitOutcome
from shipops.core.pipeline import RunReport, pipeline_filter, run_pipeline

app = typer.Typer(
    help="Detect changed units, build, publish and commit manifests",
    no_args_is_help=False,
    invoke_without_command=True,
)


@app.callback()
def _init(
    ctx: typer.Context,
    config: str | None = ConfigOpt,
    repo: str = RepoOpt,
    log_format: str | None = LogFormatOpt,
):
    """Initialize pipeline context (configuration + repository)."""
    configure_logging(log_format)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)
    ctx.obj = build_pipeline_context(config, repo)


@app.command()
def detect(
    ctx: typer.Context,
    event: str = EventOpt,
    head: str | None = HeadOpt,
    base: str | None = BaseOpt,
    as_json: bool = JsonOpt,
):
    """
    Show which units changed between two revisions.
    """
    appctx: PipelineAppContext = ctx.obj
    trigger = build_trigger(appctx, event=event, head=head, branch="", base=base)

    try:
        filtered = is_filtered(appctx.vcs, trigger, pipeline_filter(appctx.config))
        changes = None if filtered else detect_changes(appctx.vcs, appctx.config.units, trigger)
    except DetectionError as exc:
        exit_from_exc(exc, message=str(exc))

    if as_json:
        typer.echo(
            json.dumps(
                {
                    "head": trigger.head,
                    "base": changes.base if changes else None,
                    "filtered": filtered,
                    "units": changes.names if changes else [],
                }
            )
        )
        return

    if filtered:
        ok_exit("Head commit is a pipeline commit; nothing to do.")
    if not changes:
        warn_exit("No unit changed")

    out.kv({"base": changes.base or "(none, all units)", "head": changes.head})
    out.units_table(changes.units, title="Changed units")


@app.command()
def run(
    ctx: typer.Context,
    event: str = EventOpt,
    head: str | None = HeadOpt,
    branch: str = BranchOpt,
    base: str | None = BaseOpt,
    parallel: int | None = ParallelOpt,
):
    """
    Run the pipeline for one repository-change event.
    """
    appctx: PipelineAppContext = ctx.obj
    trigger = build_trigger(appctx, event=event, head=head, branch=branch, base=base)
    if trigger.is_infra:
        warn_exit("Manual infrastructure triggers are run with `shipops infra`.", code=EXIT_USAGE)

    config = appctx.config
    if parallel is not None:
        if parallel < 1:
            warn_exit("--parallel must be >= 1", code=EXIT_USAGE)
        config = dataclasses.replace(
            config, build=dataclasses.replace(config.build, parallel=parallel)
        )

    out.header("Pipeline run")
    out.kv(
        {
            "event": trigger.event.value,
            "branch": trigger.branch,
            "head": trigger.head,
            "base": trigger.base or "(auto)",
        }
    )

    builder, registry = build_registry(appctx)
    try:
        report = run_pipeline(
            config,
            trigger,
            vcs=appctx.vcs,
            builder=builder,
            registry=registry,
            repo_dir=appctx.repo_dir,
        )
    except (AuthError, RegistryError) as exc:
        exit_from_exc(exc, message=f"Registry unavailable: {exc}")

    print_report(report)
    exit_for_result(report.ok)


def print_report(report: RunReport) -> None:
    """Render the per-unit summary and the overall result of a run."""
    out.unit_status_table(report.units, title="Unit status")

    if report.note:
        out.info(escape(report.note))

    commit = report.commit
    if commit is not None:
        if commit.outcome == CommitOutcome.COMMITTED:
            out.success(f"Manifests committed: {commit.revision} ({', '.join(commit.units)})")
        elif commit.outcome == CommitOutcome.NO_CHANGES:
            out.info("Manifests already up to date; nothing committed.")
        elif commit.outcome == CommitOutcome.SUPERSEDED:
            out.warn(escape(f"Commit skipped: {commit.error}"))

    if report.error:
        out.error(escape(report.error))
    for failed in report.failed_units:
        out.error(escape(f"{failed.unit}: {failed.status.value}: {failed.detail or ''}"))

    if report.ok:
        out.success("Pipeline succeeded")
    else:
        out.error("Pipeline failed")
