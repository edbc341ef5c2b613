"""Commands for the manual infrastructure flow."""

import typer
from rich.markup import escape

from shipops.cli.common.context import InfraAppContext, build_infra_context
from shipops.cli.common.exits import exit_for_result
from shipops.cli.common.logs import configure_logging
from shipops.cli.common.options import ConfigOpt, LogFormatOpt, RepoOpt
from shipops.cli.common.output import out
from shipops.core.infra import run_infra
from shipops.core.triggers import InfraOperation

infra_app = typer.Typer(
    help="Manual infrastructure operations (plan / apply / destroy).",
    no_args_is_help=False,
    invoke_without_command=True,
)


@infra_app.callback()
def _init(
    ctx: typer.Context,
    config: str | None = ConfigOpt,
    repo: str = RepoOpt,
    log_format: str | None = LogFormatOpt,
):
    """Initialize infrastructure context."""
    configure_logging(log_format)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)
    ctx.obj = build_infra_context(config, repo)


def _run(ctx: typer.Context, operation: InfraOperation) -> None:
    appctx: InfraAppContext = ctx.obj
    out.header(f"Infrastructure {operation.value}")
    out.kv({"directory": appctx.config.infra.directory})

    with out.status(f"Running {operation.value}..."):
        result = run_infra(appctx.adapter, appctx.config.infra, operation)

    out.infra_output(result.output)
    if result.ok:
        out.success(f"{operation.value} finished")
    else:
        out.error(escape(f"{operation.value} failed: {result.error}"))
    exit_for_result(result.ok)


@infra_app.command()
def plan(ctx: typer.Context):
    """Show the changes an apply would make."""
    _run(ctx, InfraOperation.PLAN)


@infra_app.command()
def apply(ctx: typer.Context):
    """Apply the infrastructure configuration."""
    _run(ctx, InfraOperation.APPLY)


@infra_app.command()
def destroy(ctx: typer.Context):
    """Destroy the managed infrastructure."""
    _run(ctx, InfraOperation.DESTROY)
