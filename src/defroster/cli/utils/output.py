"""
CLI Output Utilities

Rich console formatting utilities for CLI output.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from rich.console import Console
from rich.table import Table

from defroster.api.core.enums import SightingCategory
from defroster.api.core.types import Event


console = Console()

# Badge colors per sighting category
CATEGORY_STYLES: dict[SightingCategory, str] = {
    SightingCategory.ICE: "bold red",
    SightingCategory.ARMY: "bold green",
    SightingCategory.POLICE: "bold blue",
}


def print_success(message: str) -> None:
    """Print success message in green."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print error message in red."""
    console.print(f"[red]✗[/red] {message}", style="red")


def print_warning(message: str) -> None:
    """Print warning message in yellow."""
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_info(message: str) -> None:
    """Print info message in blue."""
    console.print(f"[blue]i[/blue] {message}")


def print_json(data: dict[str, Any] | list[Any]) -> None:
    """Print data as JSON."""
    console.print_json(json.dumps(data))


def format_timestamp(epoch_ms: int) -> str:
    """Format epoch milliseconds as a UTC time."""
    return datetime.fromtimestamp(epoch_ms / 1000, tz=UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_age(epoch_ms: int, now_ms: int) -> str:
    """Format how long ago a timestamp was, e.g. '12m ago'."""
    minutes = max(0, now_ms - epoch_ms) // 60_000
    if minutes < 60:
        return f"{minutes}m ago"
    return f"{minutes // 60}h {minutes % 60}m ago"


def events_table(events: list[Event], now_ms: int, title: str = "Nearby Sightings") -> Table:
    """Build a table of events, newest first."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Category")
    table.add_column("Reported", style="cyan")
    table.add_column("Age", justify="right")
    table.add_column("Location", style="dim")
    table.add_column("Cell", style="dim")
    table.add_column("ID", style="dim")

    for event in events:
        style = CATEGORY_STYLES.get(event.category, "bold")
        table.add_row(
            f"[{style}]{event.category}[/{style}]",
            format_timestamp(event.created_at),
            format_age(event.created_at, now_ms),
            f"{event.location.latitude:.5f}, {event.location.longitude:.5f}",
            event.cell_code,
            event.id or "",
        )
    return table
