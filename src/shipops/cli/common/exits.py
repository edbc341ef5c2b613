"""Exit codes and exit helpers for the CLI.

CI reads the process status only: 0 when the run succeeded (including
runs with nothing to do), 1 when a unit or the run failed, 2 when the
invocation itself was invalid (bad config, unknown event, bad option).
"""

from typing import NoReturn

import typer
from rich.markup import escape

from shipops.cli.common.output import out

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def ok_exit(msg: str | None = None) -> NoReturn:
    """Exit successfully with an optional informational message."""
    if msg:
        out.info(escape(msg))
    raise typer.Exit(EXIT_OK)


def die(msg: str, code: int = EXIT_FAILED) -> NoReturn:
    """Exit with an error message."""
    out.error(escape(msg))
    raise typer.Exit(code)


def warn_exit(msg: str, code: int = EXIT_OK) -> NoReturn:
    """Exit with a warning message."""
    out.warn(escape(msg))
    raise typer.Exit(code)


def exit_from_exc(exc: Exception, *, message: str, code: int = EXIT_FAILED) -> NoReturn:
    """Print an error message and exit, chaining the exception as the cause."""
    out.error(escape(message))
    raise typer.Exit(code) from exc


def exit_for_result(ok: bool) -> None:
    """Exit with EXIT_FAILED unless the run succeeded; return otherwise."""
    if not ok:
        raise typer.Exit(EXIT_FAILED)
