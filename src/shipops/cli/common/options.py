"""Common CLI options for the CLI.

Trigger inputs default to the variables GitHub Actions exports, so a
workflow step can simply call `shipops pipeline run`.
"""

import typer

ConfigOpt = typer.Option(
    None,
    "--config",
    "-c",
    envvar="SHIPOPS_CONFIG",
    help="Pipeline configuration file (default: shipops.yaml in the repository)",
)

RepoOpt = typer.Option(
    ".",
    "--repo",
    help="Repository checkout the pipeline operates on",
)

HeadOpt = typer.Option(
    None,
    "--head",
    envvar="SHIPOPS_HEAD",
    help="Revision to build (default: the pull request head, else GITHUB_SHA)",
)

BaseOpt = typer.Option(
    None,
    "--base",
    envvar="SHIPOPS_BASE",
    help="Base revision (push: previous tip; pull request: target branch ref)",
)

BranchOpt = typer.Option(
    ...,
    "--branch",
    envvar=["SHIPOPS_BRANCH", "GITHUB_HEAD_REF", "GITHUB_REF_NAME"],
    help="Branch that triggered the run; manifest commits are pushed here",
)

EventOpt = typer.Option(
    "push",
    "--event",
    envvar=["SHIPOPS_EVENT", "GITHUB_EVENT_NAME"],
    help="Event kind: push, pull_request or manual",
)

ParallelOpt = typer.Option(
    None,
    "--parallel",
    "-n",
    help="Number of units to build and publish in parallel",
)

JsonOpt = typer.Option(
    False,
    "--json",
    help="Print machine-readable JSON instead of a table",
)

LogFormatOpt = typer.Option(
    None,
    "--log-format",
    envvar="SHIPOPS_LOG_FORMAT",
    help="Diagnostic log format: console or json",
)
