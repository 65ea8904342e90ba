#!/usr/bin/env python3
"""
Marketplace Sync - command line entry point.

Runs order ingestion without the API server.

Usage:
    python3 run_sync.py init-db                         # Create tables
    python3 run_sync.py generate-key                    # New ENCRYPTION_KEY
    python3 run_sync.py authorize-url --tenant T1       # Start OAuth for a tenant
    python3 run_sync.py sync INTEGRATION_ID --tenant T1 # One retried sync
    python3 run_sync.py status --tenant T1              # Integration health
    python3 run_sync.py schedule                        # Run the scheduler until Ctrl+C
"""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from marketplace_sync.core.config import settings
from marketplace_sync.core.encryption import TokenCipher
from marketplace_sync.core.logging import get_logger, setup_logging
from marketplace_sync.core.time import format_datetime
from marketplace_sync.db.base import create_db_engine, init_db
from marketplace_sync.sync.factory import Runtime
from marketplace_sync.sync.models import SyncResult

app = typer.Typer(help="Marketplace Sync - CLI Tool")
console = Console()
logger = get_logger(__name__)


@app.callback()
def main() -> None:
    setup_logging()


def ensure_sqlite_directory(db_url: str) -> None:
    """Create the parent directory of a SQLite database file."""
    if db_url.startswith("sqlite:///") and ":memory:" not in db_url:
        Path(db_url.replace("sqlite:///", "")).parent.mkdir(parents=True, exist_ok=True)


def print_result(result: SyncResult) -> None:
    table = Table(title="Sync results")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Success", "yes" if result.success else "[red]no[/red]")
    table.add_row("Orders processed", str(result.orders_processed))
    table.add_row("Invoices created", str(result.invoices_created))
    table.add_row("Errors", str(len(result.errors)))
    console.print(table)

    for error in result.errors:
        console.print(f"  [red]•[/red] {error}")


@app.command("init-db")
def init_database() -> None:
    """Create the database tables."""
    ensure_sqlite_directory(settings.database_url)
    init_db(create_db_engine())
    console.print("[green]✓[/green] Database ready")


@app.command("generate-key")
def generate_key() -> None:
    """Print a fresh ENCRYPTION_KEY value."""
    console.print(TokenCipher.generate_key())


@app.command("authorize-url")
def authorize_url(tenant: str = typer.Option(..., "--tenant", help="Tenant id")) -> None:
    """Print the marketplace consent URL for a tenant."""

    async def _run() -> str:
        runtime = Runtime()
        try:
            with runtime.session() as session:
                return runtime.services(session).oauth.authorization_url(tenant)
        finally:
            await runtime.close()

    console.print(asyncio.run(_run()))


@app.command()
def sync(
    integration_id: str = typer.Argument(..., help="Integration id"),
    tenant: str = typer.Option(..., "--tenant", help="Tenant id"),
    company: Optional[str] = typer.Option(
        None, "--company", help="Company to issue invoices for (defaults to the integration's)"
    ),
) -> None:
    """Run one sync pass with retries."""
    console.print()
    console.print(Panel.fit("[bold cyan]Marketplace Sync[/bold cyan]", border_style="cyan"))
    console.print()

    async def _run() -> SyncResult:
        runtime = Runtime()
        try:
            with runtime.session() as session:
                services = runtime.services(session)
                return await services.retry.sync_with_retry(integration_id, company, tenant)
        finally:
            await runtime.close()

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task("Syncing orders...", total=None)
            result = asyncio.run(_run())

    except KeyboardInterrupt:
        console.print("[yellow]Sync cancelled by user[/yellow]")
        raise typer.Exit(0)

    except Exception as e:
        console.print(f"[red]ERROR: {e}[/red]")
        logger.exception("Sync failed")
        raise typer.Exit(1)

    console.print()
    print_result(result)
    console.print()
    if not result.success:
        raise typer.Exit(1)


@app.command()
def status(tenant: str = typer.Option(..., "--tenant", help="Tenant id")) -> None:
    """Show health of a tenant's integrations."""

    async def _run() -> list:
        runtime = Runtime()
        try:
            with runtime.session() as session:
                return runtime.services(session).management.list_by_tenant(tenant)
        finally:
            await runtime.close()

    try:
        statuses = asyncio.run(_run())
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if not statuses:
        console.print("[yellow]No integrations for this tenant[/yellow]")
        return

    table = Table(title="Integrations")
    table.add_column("Id", style="cyan")
    table.add_column("Account")
    table.add_column("Active")
    table.add_column("Last sync")
    table.add_column("Errors")
    table.add_column("Last error", style="red")

    for item in statuses:
        table.add_row(
            item.id,
            item.external_account_id,
            "[green]yes[/green]" if item.is_active else "[red]no[/red]",
            format_datetime(item.last_sync_at, format="short") or "never",
            str(item.sync_error_count),
            item.last_sync_error or "",
        )
    console.print(table)


@app.command()
def schedule() -> None:
    """Run scheduled syncs until interrupted."""

    async def _run() -> None:
        runtime = Runtime()
        try:
            await runtime.scheduler().run_forever()
        finally:
            await runtime.close()

    console.print(
        f"[dim]Polling every {settings.scheduler_poll_seconds}s, Ctrl+C to stop[/dim]"
    )
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[yellow]Scheduler stopped[/yellow]")


if __name__ == "__main__":
    app()
