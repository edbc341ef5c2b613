"""Output formatting utilities for the CLI."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.theme import Theme

_THEME = Theme(
    {
        "ok": "bold green",
        "warn": "yellow",
        "err": "bold red",
        "title": "bold cyan",
        "meta": "dim",
    }
)

console = Console(theme=_THEME)

_STATUS_STYLES = {
    "skipped": "meta",
    "built": "warn",
    "published": "warn",
    "manifest-updated": "ok",
}


def status_style(status: str) -> str:
    """Return the theme style used to render a unit status."""
    return _STATUS_STYLES.get(status, "err")


@dataclass(frozen=True)
class Out:
    """Output formatter for CLI messages and tables."""

    def info(self, msg: str) -> None:
        """Print an info message."""
        console.print(f"[title]›[/] {msg}")

    @contextmanager
    def status(self, msg: str):
        """Show a transient status spinner while work is in progress."""
        with console.status(msg, spinner="dots"):
            yield

    def success(self, msg: str) -> None:
        """Print a success message."""
        console.print(f"[ok]✓[/] {msg}")

    def warn(self, msg: str) -> None:
        """Print a warning message."""
        console.print(f"[warn]⚠[/] {msg}")

    def error(self, msg: str) -> None:
        """Print an error message."""
        console.print(f"[err]✗[/] {msg}")

    def header(self, title: str) -> None:
        """Print a header message."""
        console.print(f"[title]{title}[/]")

    def kv(self, items: Mapping[str, Any]) -> None:
        """Print key-value pairs. Values are printed literally."""
        for k, v in items.items():
            console.print(f"[meta]{escape(str(k))}[/]: {escape(str(v))}")

    def units_table(self, units: Iterable[Any], title: str = "Units") -> None:
        """
        Expects objects with .name .source .manifest (like shipops.core.units.Unit)
        """
        t = Table(title=title, show_lines=False)
        t.add_column("Unit", style="ok", no_wrap=True)
        t.add_column("Source")
        t.add_column("Manifest", style="meta")

        for u in units:
            t.add_row(escape(u.name), escape(u.source), escape(u.manifest))

        console.print(t)

    def unit_status_table(self, reports: Iterable[Any], title: str = "Unit status") -> None:
        """
        Expects objects with .unit .status .image .detail
        (e.g. shipops.core.pipeline.UnitReport)
        """
        t = Table(title=title, show_lines=False)
        t.add_column("Unit", style="ok", no_wrap=True)
        t.add_column("Status")
        t.add_column("Image", style="meta")
        t.add_column("Detail")

        for r in reports:
            status_value = r.status.value if hasattr(r.status, "value") else str(r.status)
            style = status_style(status_value)
            t.add_row(
                escape(r.unit),
                f"[{style}]{status_value}[/{style}]",
                escape(r.image or ""),
                escape(r.detail or ""),
            )

        console.print(t)

    def infra_output(self, output: str, title: str = "Output") -> None:
        """Print the captured output of an infrastructure tool run."""
        if not output:
            return
        self.header(title)
        console.print(output, markup=False, highlight=False)


out = Out()
