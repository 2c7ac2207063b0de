"""Terminal output for the mediaproxy CLI.

stderr carries status and diagnostics, stdout carries data (tables, bodies).
"""

from __future__ import annotations

from collections.abc import Mapping

from rich.console import Console
from rich.table import Table

err_console = Console(stderr=True)
out_console = Console()


def success(message: str, *, console: Console | None = None) -> None:
    """Print a green checkmark line to stderr."""
    (console or err_console).print(f"[green]  ✓ {message}[/green]")


def error(message: str, *, console: Console | None = None) -> None:
    """Print a red cross line to stderr."""
    (console or err_console).print(f"[red]  ✗ {message}[/red]")


def status_line(status: int, *, console: Console | None = None) -> None:
    """Print an HTTP status, coloured by class."""
    color = "green" if status < 300 else "yellow" if status < 400 else "red"
    (console or err_console).print(f"[{color}]HTTP {status}[/{color}]")


def headers_table(headers: Mapping[str, str], title: str = "Headers") -> Table:
    """Render a header mapping as a two-column table."""
    table = Table(title=title, title_style="bold", header_style="bold cyan", border_style="dim")
    table.add_column("Header", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")
    for key, value in headers.items():
        table.add_row(key, value)
    return table
