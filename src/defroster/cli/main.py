"""
Defroster CLI - Main Application

This is the main entry point for the Defroster command-line interface.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict

import typer
from click import Context
from dotenv import load_dotenv
from rich.logging import RichHandler
from rich.table import Table
from typer.core import TyperGroup

from defroster.api.core.clock import SystemClock
from defroster.api.core.config import DefrosterConfig, get_config_path, load_config
from defroster.api.core.constants import DEFAULT_RADIUS_MILES, NOTIFICATION_LOOKBACK_MS, ONE_MINUTE_MS
from defroster.api.core.contracts import AdmissionGate, AllowAllGate, PushTransport
from defroster.api.core.enums import StoreTier
from defroster.api.core.exceptions import DefrosterError
from defroster.api.core.types import Event, GeoLocation
from defroster.api.database.store import SqlRecordStore
from defroster.api.notifications.dispatcher import NotificationDispatcher
from defroster.api.notifications.transports import HttpPushTransport, NullPushTransport
from defroster.api.retention.sweeper import RetentionSweeper, SweepReport
from defroster.api.sightings import SightingService
from defroster.api.sync.sync_manager import SyncManager
from defroster.cli.utils.output import (
    console,
    events_table,
    print_error,
    print_info,
    print_json,
    print_success,
    print_warning,
)


class SortedCommandsGroup(TyperGroup):
    """Custom Typer group that sorts commands alphabetically within each help panel."""

    def list_commands(self, ctx: Context) -> list[str]:
        """Return commands sorted alphabetically."""
        commands = super().list_commands(ctx)
        return sorted(commands)


# Create main app
app = typer.Typer(
    name="defroster",
    help="Defroster sighting engine CLI",
    add_completion=True,
    rich_markup_mode="rich",
    cls=SortedCommandsGroup,
)

# Global state for CLI
state: dict[str, str | bool | AdmissionGate] = {
    "client_id": "cli",
    "verbose": False,
    "gate": AllowAllGate(),
}


@app.callback()
def main(
    client_id: str = typer.Option(
        "cli",
        "--client-id",
        help="Caller identity passed to the admission gate",
        envvar="DEFROSTER_CLIENT_ID",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output",
    ),
) -> None:
    """
    Defroster sighting engine CLI

    Report sightings, register devices, and query nearby reports.

    [bold green]Examples:[/bold green]

        defroster init-db
        defroster report ICE --lat 37.7749 --lon -122.4194
        defroster query --lat 37.7749 --lon -122.4194 --radius 5

    [bold blue]Environment Variables:[/bold blue]

        DEFROSTER_SERVER_DB_URL          - Server tier database URL
        DEFROSTER_CLIENT_DB_URL          - Client cache database URL
        DEFROSTER_PUSH_RELAY_URL         - Push relay endpoint (pushes are only logged when unset)
        DEFROSTER_FETCH_TIMEOUT_SECONDS  - Server fetch timeout for queries
    """
    load_dotenv()

    state["client_id"] = client_id
    state["verbose"] = verbose

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    if verbose:
        console.print("[dim]Verbose mode enabled[/dim]")


def _config() -> DefrosterConfig:
    try:
        return load_config()
    except DefrosterError as e:
        print_error(f"Invalid configuration: {e}")
        raise typer.Exit(code=1) from e


def _admit(operation: str) -> None:
    gate = state["gate"]
    client_id = str(state["client_id"])
    if isinstance(gate, str | bool) or not gate.admit(operation, client_id):
        print_error(f"Request '{operation}' was not admitted for client '{client_id}'")
        raise typer.Exit(code=1)


def _transport(config: DefrosterConfig) -> PushTransport:
    if config.push_relay_url:
        return HttpPushTransport(config.push_relay_url)
    return NullPushTransport()


@asynccontextmanager
async def _open_store(url: str, tier: StoreTier) -> AsyncIterator[SqlRecordStore]:
    store = SqlRecordStore(url, tier=tier)
    try:
        await store.init_schema()
        yield store
    finally:
        await store.close()


def _location(lat: float, lon: float) -> GeoLocation:
    return GeoLocation(latitude=lat, longitude=lon)


def _print_sweep(report: SweepReport) -> None:
    table = Table(title=f"Retention sweep: {report.tier} tier", show_header=True, header_style="bold magenta")
    table.add_column("Collection", style="cyan")
    table.add_column("Deleted", justify="right")
    for collection, deleted in report.deleted.items():
        table.add_row(str(collection), str(deleted))
    console.print(table)
    for error in report.errors:
        print_warning(f"Stopped early: {error}")


@app.command("init-db", rich_help_panel="Utilities")
def init_db() -> None:
    """Create the server and client database tables."""
    config = _config()

    async def _init() -> None:
        async with (
            _open_store(config.server_db_url, StoreTier.SERVER),
            _open_store(config.client_db_url, StoreTier.CLIENT),
        ):
            pass

    try:
        asyncio.run(_init())
    except DefrosterError as e:
        print_error(f"Failed to initialize databases: {e}")
        raise typer.Exit(code=1) from e
    print_success("Databases ready")
    print_info(f"Server: {config.server_db_url}")
    print_info(f"Client: {config.client_db_url}")


@app.command(rich_help_panel="Sightings")
def report(
    category: str = typer.Argument(..., help="Sighting category: ICE, Army or Police"),
    lat: float = typer.Option(..., "--lat", help="Latitude in degrees"),
    lon: float = typer.Option(..., "--lon", help="Longitude in degrees"),
    client_timestamp: int | None = typer.Option(
        None, "--client-timestamp", help="Reporter clock in epoch ms (rejected if skewed)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Report a sighting and notify nearby devices."""
    _admit("report")
    config = _config()

    async def _report() -> tuple[dict[str, object], int, list[str]]:
        async with _open_store(config.server_db_url, StoreTier.SERVER) as server:
            dispatcher = NotificationDispatcher(
                server, _transport(config), radius_miles=config.notification_radius_miles
            )
            service = SightingService(server, dispatcher)
            result = await service.report_sighting(category, _location(lat, lon), client_timestamp)
            return result.event.to_document(), result.notified_devices, result.errors

    try:
        document, notified, errors = asyncio.run(_report())
    except DefrosterError as e:
        print_error(f"Failed to report sighting: {e}")
        raise typer.Exit(code=1) from e

    if json_output:
        print_json({"event": document, "notifiedDevices": notified})
        return
    print_success(f"Reported {document['category']} sighting {document['id']} (cell {document['cell_code']})")
    print_info(f"Notified {notified} nearby device(s)")
    for error in errors:
        print_warning(f"Notification problem: {error}")


@app.command(rich_help_panel="Devices")
def register(
    device_id: str = typer.Argument(..., help="Device UUID (v4)"),
    push_token: str = typer.Argument(..., help="Push token for the device"),
    lat: float = typer.Option(..., "--lat", help="Latitude in degrees"),
    lon: float = typer.Option(..., "--lon", help="Longitude in degrees"),
) -> None:
    """Register a device (or refresh its registration) for nearby notifications."""
    _admit("register")
    config = _config()

    async def _register() -> str:
        async with _open_store(config.server_db_url, StoreTier.SERVER) as server:
            subscription = await SightingService(server).register_device(device_id, push_token, _location(lat, lon))
            return subscription.cell_code

    try:
        cell_code = asyncio.run(_register())
    except DefrosterError as e:
        print_error(f"Failed to register device: {e}")
        raise typer.Exit(code=1) from e
    print_success(f"Registered device {device_id} in cell {cell_code}")


@app.command(rich_help_panel="Devices")
def relocate(
    device_id: str = typer.Argument(..., help="Registered device UUID"),
    lat: float = typer.Option(..., "--lat", help="Latitude in degrees"),
    lon: float = typer.Option(..., "--lon", help="Longitude in degrees"),
) -> None:
    """Move a registered device to a new location."""
    _admit("relocate")
    config = _config()

    async def _relocate() -> str:
        async with _open_store(config.server_db_url, StoreTier.SERVER) as server:
            subscription = await SightingService(server).update_device_location(device_id, _location(lat, lon))
            return subscription.cell_code

    try:
        cell_code = asyncio.run(_relocate())
    except DefrosterError as e:
        print_error(f"Failed to relocate device: {e}")
        raise typer.Exit(code=1) from e
    print_success(f"Device {device_id} moved to cell {cell_code}")


@app.command(rich_help_panel="Sightings")
def query(
    lat: float = typer.Option(..., "--lat", help="Latitude in degrees"),
    lon: float = typer.Option(..., "--lon", help="Longitude in degrees"),
    radius: float = typer.Option(DEFAULT_RADIUS_MILES, "--radius", "-r", help="Radius in miles (max 100)"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List live sightings near a location, syncing the local cache from the server."""
    _admit("query")
    config = _config()
    clock = SystemClock()
    center = _location(lat, lon)

    async def _query() -> tuple[list[Event], str]:
        async with (
            _open_store(config.server_db_url, StoreTier.SERVER) as server,
            _open_store(config.client_db_url, StoreTier.CLIENT) as client,
        ):
            sync = SyncManager(server, client, clock, fetch_timeout_seconds=config.fetch_timeout_seconds)
            events = await sync.query(center, radius)
            return events, str(sync.state_for(center))

    try:
        events, sync_state = asyncio.run(_query())
    except DefrosterError as e:
        print_error(f"Query failed: {e}")
        raise typer.Exit(code=1) from e

    if json_output:
        print_json({"state": sync_state, "events": [event.to_document() for event in events]})
        return
    if sync_state == "offline":
        print_warning("Server unreachable, showing cached sightings only")
    if not events:
        print_info(f"No sightings within {radius:g} miles")
        return
    console.print(events_table(events, clock.now()))


@app.command(rich_help_panel="Maintenance")
def sweep(
    tier: str = typer.Option("all", "--tier", "-t", help="Tier to sweep: server, client or all"),
) -> None:
    """Delete expired records according to each tier's retention policy."""
    _admit("sweep")
    config = _config()
    if tier not in ("server", "client", "all"):
        print_error(f"Unknown tier '{tier}' (expected server, client or all)")
        raise typer.Exit(code=1)
    targets = [StoreTier(tier)] if tier != "all" else [StoreTier.SERVER, StoreTier.CLIENT]
    urls = {StoreTier.SERVER: config.server_db_url, StoreTier.CLIENT: config.client_db_url}

    async def _sweep() -> list[SweepReport]:
        reports = []
        for target in targets:
            async with _open_store(urls[target], target) as store:
                reports.append(await RetentionSweeper(store).sweep())
        return reports

    try:
        reports = asyncio.run(_sweep())
    except DefrosterError as e:
        print_error(f"Sweep failed: {e}")
        raise typer.Exit(code=1) from e
    for sweep_report in reports:
        _print_sweep(sweep_report)
    if any(sweep_report.partial for sweep_report in reports):
        raise typer.Exit(code=1)


@app.command("notify-sweep", rich_help_panel="Maintenance")
def notify_sweep(
    lookback_minutes: int = typer.Option(
        NOTIFICATION_LOOKBACK_MS // ONE_MINUTE_MS, "--lookback", help="Re-check sightings from the last N minutes"
    ),
) -> None:
    """Notify devices about recent sightings they have not received yet."""
    _admit("notify-sweep")
    config = _config()
    if lookback_minutes <= 0:
        print_error("--lookback must be positive")
        raise typer.Exit(code=1)

    async def _notify() -> tuple[int, int, int]:
        async with _open_store(config.server_db_url, StoreTier.SERVER) as server:
            dispatcher = NotificationDispatcher(
                server, _transport(config), radius_miles=config.notification_radius_miles
            )
            reports = await dispatcher.sweep_recent(lookback_minutes * ONE_MINUTE_MS)
            return len(reports), sum(r.recorded for r in reports), sum(1 for r in reports if r.partial)

    try:
        examined, notified, partial = asyncio.run(_notify())
    except DefrosterError as e:
        print_error(f"Notification sweep failed: {e}")
        raise typer.Exit(code=1) from e
    print_success(f"Examined {examined} recent sighting(s), notified {notified} device(s)")
    if partial:
        print_warning(f"{partial} sighting(s) had delivery problems; they will be retried on the next sweep")


@app.command("config", rich_help_panel="Utilities")
def show_config(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show the effective configuration (file plus environment overrides)."""
    config = _config()
    if json_output:
        print_json(asdict(config))
        return

    table = Table(title="Configuration", show_header=True, header_style="bold magenta")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in asdict(config).items():
        table.add_row(key, "[dim]not set[/dim]" if value is None else str(value))
    console.print(table)
    print_info(f"Config file: {get_config_path()}")


@app.command(rich_help_panel="Utilities")
def version() -> None:
    """Show the CLI version."""
    from defroster import __version__

    console.print(f"[bold]Defroster[/bold] version [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
