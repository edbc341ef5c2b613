"""CLI application for the build-and-publish pipeline."""

import typer

from shipops.cli.commands.infra import infra_app
from shipops.cli.commands.pipeline import app as pipeline_app

app = typer.Typer(
    help="shipops - build, publish and deploy changed services",
    no_args_is_help=True,
)

app.add_typer(
    pipeline_app,
    name="pipeline",
    help="Detect changes, build, publish and commit manifests.",
)
app.add_typer(infra_app, name="infra")


if __name__ == "__main__":
    app()
