"""finsync CLI.

Commands:
- init: Initialize database schema
- sync: Run a Qonto (or ClickUp project) sync and classify new supplier invoices
- sync-status: Show recent sync runs and local totals
- classify: Classify one supplier invoice now
- check: Validate database and credentials
- web serve: Run the FastAPI app
"""

from __future__ import annotations

import asyncio
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from finsync.config import get_config
from finsync.core.logging import configure_logging
from finsync.core.services import build_services
from finsync.db.connection import close_db, get_engine, get_session
from finsync.db.models import Base
from finsync.errors import ConfigurationError
from finsync.models import SyncRunStatus, SyncScope

app = typer.Typer(
    name="finsync",
    help="finsync - Qonto sync with AI project assignment of supplier invoices",
    no_args_is_help=True,
)

web_cli = typer.Typer(help="Web API")
app.add_typer(web_cli, name="web")

console = Console()


@app.callback()
def main_callback(
    log_level: str | None = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
):
    configure_logging(level=log_level)


@app.command()
def init(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables"),
):
    """Initialize database schema."""
    config = get_config()
    console.print(f"[bold]Initializing database:[/bold] {config.db.url}")

    async def _init():
        engine = get_engine()
        async with engine.begin() as conn:
            if drop:
                console.print("[yellow]Dropping existing tables...[/yellow]")
                await conn.run_sync(Base.metadata.drop_all)
            console.print("[green]Creating tables...[/green]")
            await conn.run_sync(Base.metadata.create_all)
        await close_db()

    asyncio.run(_init())
    console.print("[bold green]✓[/bold green] Database initialized")


@app.command()
def sync(
    scope: SyncScope = typer.Option(SyncScope.ALL, "--scope", help="Entity types to sync"),
    force_full_sync: bool = typer.Option(False, "--full", help="Force a full sync"),
    wait: bool = typer.Option(
        True,
        "--wait/--no-wait",
        help="Wait for in-process classifications to finish (otherwise they are cancelled)",
    ),
):
    """Run a Qonto sync, or a ClickUp project sync with --scope projects.

    New supplier invoices with a document are classified after the sync,
    one model call every VISION_MIN_DELAY_SECONDS.
    """
    console.print(f"[bold]Starting sync[/bold] (scope={scope.value})")

    async def _sync() -> bool:
        from finsync.pipeline.orchestrator import run_sync

        services = build_services()
        try:
            summary = await run_sync(services, scope, force_full_sync)

            table = Table(title=f"Sync run {summary.sync_id}")
            table.add_column("Metric", style="cyan")
            table.add_column("Value", justify="right")
            table.add_row("Processed", str(summary.records_processed))
            table.add_row("Created", str(summary.records_created))
            table.add_row("Updated", str(summary.records_updated))
            table.add_row("Skipped", str(summary.records_skipped))
            table.add_row("Classifications scheduled", str(summary.classifications_scheduled))
            console.print(table)

            if summary.status is SyncRunStatus.FAILED:
                console.print(f"[red]✗ Sync failed:[/red] {summary.error_message}")
                return False
            console.print("[bold green]✓[/bold green] Sync completed")

            pending = services.scheduler.pending()
            if wait and pending:
                console.print(f"Waiting for {len(pending)} classification(s)...")
                await services.scheduler.drain()
                failed = [job for job in pending if job.error]
                console.print(
                    f"[green]✓[/green] {len(pending) - len(failed)} classified, "
                    f"{len(failed)} failed"
                )
            return True
        finally:
            await services.close()
            await close_db()

    try:
        ok = asyncio.run(_sync())
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(2)
    if not ok:
        raise typer.Exit(1)


@app.command(name="sync-status")
def sync_status_cmd(
    last_n: int = typer.Option(10, "--last", "-n", help="Show last N sync runs"),
):
    """Show recent sync runs and local totals per entity."""
    from finsync.pipeline.orchestrator import sync_status

    async def _status():
        async with get_session() as session:
            status = await sync_status(session, limit=last_n)
        await close_db()
        return status

    status = asyncio.run(_status())

    if not status["recent_runs"]:
        console.print("[yellow]No sync runs found[/yellow]")
    else:
        table = Table(title=f"Last {last_n} Sync Runs")
        table.add_column("Started", style="cyan")
        table.add_column("Scope")
        table.add_column("Status", style="bold")
        table.add_column("Processed", justify="right")
        table.add_column("Created", justify="right")
        table.add_column("Updated", justify="right")
        table.add_column("Skipped", justify="right")
        table.add_column("Error")

        for run in status["recent_runs"]:
            style = {"completed": "green", "failed": "red"}.get(run["status"], "yellow")
            table.add_row(
                run["started_at"] or "",
                run["entity_scope"],
                f"[{style}]{run['status']}[/{style}]",
                str(run["records_processed"]),
                str(run["records_created"]),
                str(run["records_updated"]),
                str(run["records_skipped"]),
                run["error_message"] or "",
            )
        console.print(table)

    console.print(f"Last successful sync: {status['last_successful_sync'] or 'never'}")
    for entity, count in status["totals"].items():
        console.print(f"  • {entity}: {count}")


@app.command()
def classify(
    invoice_id: UUID = typer.Argument(..., help="Supplier invoice id"),
):
    """Classify one supplier invoice immediately and apply the assignment policy."""
    from finsync.pipeline.classification_task import classify_supplier_invoice

    async def _classify():
        services = build_services()
        try:
            return await classify_supplier_invoice(services, invoice_id)
        finally:
            await services.close()
            await close_db()

    try:
        result = asyncio.run(_classify())
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(2)

    if result is None:
        console.print("[yellow]Invoice not found or has no document attachment[/yellow]")
        raise typer.Exit(1)

    console.print(f"Status: [bold]{result.processing_status.value}[/bold]")
    console.print(f"Confidence: {result.confidence_score}")
    if result.error_message:
        console.print(f"[red]Error:[/red] {result.error_message}")
    for match in result.project_matches:
        console.print(f"  • {match.project_name}: {match.confidence} ({match.reasoning})")


@app.command()
def check():
    """Validate database connectivity and credentials."""
    from finsync.startup_validation import StartupValidationError, run_all_validations

    async def _check():
        try:
            async with get_session() as session:
                await run_all_validations(session)
        finally:
            await close_db()

    try:
        asyncio.run(_check())
    except StartupValidationError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1)
    console.print("[bold green]✓[/bold green] All checks passed")


@web_cli.command("serve")
def web_serve(
    host: str = typer.Option("0.0.0.0", help="Host to bind"),
    port: int = typer.Option(8001, help="Port to bind"),
    reload: bool = typer.Option(False, help="Enable autoreload (dev only)"),
):
    """Run the FastAPI app."""
    import uvicorn

    typer.echo(f"Starting finsync API on http://{host}:{port}")
    # One worker: the process owns the model call queue
    uvicorn.run("finsync.web.app:app", host=host, port=port, reload=reload, workers=1)


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
