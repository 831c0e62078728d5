"""Rich console shared by the CLI commands."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

console = Console()
err_console = Console(stderr=True)


def print_success(message: str) -> None:
    """Print a green success line."""
    console.print(f"[green]✓[/green] {escape(message)}")


def print_warning(message: str) -> None:
    """Print a yellow warning line."""
    console.print(f"[yellow]Warning:[/yellow] {escape(message)}")


def print_error(message: str) -> None:
    """Print a red error line to stderr."""
    err_console.print(f"[red]Error:[/red] {escape(message)}")
