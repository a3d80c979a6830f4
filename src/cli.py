#!/usr/bin/env python3
"""Command Line Interface for the property confirmation service.

Usage:
    cd src
    python cli.py server                      # Start API server
    python cli.py scheduler                   # Start cron jobs
    python cli.py schedule acme --dry-run     # Preview a scheduling pass
    python cli.py process acme                # Dispatch due confirmations
    python cli.py sweep acme                  # Fail overdue pending confirmations
    python cli.py info                        # Show configuration
"""
from __future__ import annotations

import json
from datetime import date
from typing import Any, Dict, Optional

import typer
import uvicorn

from core.config import get_settings
from core.logging_config import get_logger, setup_logging
from core.utils import parse_date

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

app = typer.Typer(help="Property confirmation service CLI")


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Owner availability and price confirmation workflow."""
    log_level = "DEBUG" if verbose else SETTINGS.log_level
    setup_logging(level=log_level, json_format=SETTINGS.log_format == "json")


def _parse_optional_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return parse_date(value)
    except ValueError:
        raise typer.BadParameter(f"Invalid date: {value} (use YYYY-MM-DD)")


def _report(job: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps(job, indent=2, default=str))
    if not job["success"]:
        typer.secho(f"✗ {job['job_type']} failed for {job['tenant_id']}: {job['error']}", fg="red")
        raise typer.Exit(1)


# =============================================================================
# Confirmation Commands
# =============================================================================


@app.command("schedule")
def schedule_cmd(
    tenant_id: str = typer.Argument(..., help="Tenant to schedule"),
    scheduled_for: Optional[str] = typer.Option(
        None, "--date", help="Reminder date (default: 1st of next month)"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without creating records"),
    as_json: bool = typer.Option(False, "--json", help="Print the full result as JSON"),
) -> None:
    """Create pending owner confirmations for a tenant."""
    from scheduler.jobs import run_schedule_job

    target = _parse_optional_date(scheduled_for)
    typer.echo(f"Scheduling confirmations for {tenant_id}" + (" (dry run)" if dry_run else ""))
    job = run_schedule_job(tenant_id, target_date=target, dry_run=dry_run)
    _report(job, as_json)

    summary = job["result"]
    typer.secho(
        f"✓ {summary['scheduled_count']} scheduled, {summary['skipped_count']} skipped "
        f"of {summary['total_properties']} for {summary['scheduled_for']}",
        fg="green",
    )
    for reason in summary["skipped_reasons"]:
        typer.echo(f"  - {reason}")


@app.command("process")
def process_cmd(
    tenant_id: str = typer.Argument(..., help="Tenant to process"),
    today: Optional[str] = typer.Option(None, "--today", help="Cut-off date (default: today)"),
    as_json: bool = typer.Option(False, "--json", help="Print the full result as JSON"),
) -> None:
    """Dispatch pending confirmations that are due."""
    from scheduler.jobs import run_process_job

    typer.echo(f"Processing due confirmations for {tenant_id}...")
    typer.echo(f"Dry Run Mode: {SETTINGS.dry_run}")
    job = run_process_job(tenant_id, today=_parse_optional_date(today))
    _report(job, as_json)

    summary = job["result"]
    typer.secho(f"✓ Sent {summary['sent']}/{summary['processed']} confirmations", fg="green")
    if summary["failed"]:
        typer.secho(f"  ✗ {summary['failed']} failures", fg="yellow")
    if summary["skipped"]:
        typer.echo(f"  {summary['skipped']} changed concurrently and were skipped")


@app.command("sweep")
def sweep_cmd(
    tenant_id: str = typer.Argument(..., help="Tenant to sweep"),
    today: Optional[str] = typer.Option(None, "--today", help="Reference date (default: today)"),
) -> None:
    """Fail pending confirmations that were never dispatched in time."""
    from scheduler.jobs import run_sweep_job

    job = run_sweep_job(tenant_id, today=_parse_optional_date(today))
    _report(job, as_json=False)
    typer.secho(f"✓ Swept {job['result']['swept_count']} overdue confirmations", fg="green")


# =============================================================================
# Service Commands
# =============================================================================


@app.command("server")
def run_server(
    host: str = typer.Option("0.0.0.0", help="Host to bind to"),
    port: int = typer.Option(8000, help="Port to bind to"),
    reload: bool = typer.Option(False, help="Enable auto-reload for development"),
) -> None:
    """Start the API server."""
    typer.echo(f"Starting API server on {host}:{port}...")
    uvicorn.run("api.app:app", host=host, port=port, reload=reload)


@app.command("scheduler")
def run_scheduler_cmd() -> None:
    """Start the background scheduler."""
    from scheduler.runner import run_scheduler_blocking

    typer.echo("Starting scheduler...")
    run_scheduler_blocking()


# =============================================================================
# Utility Commands
# =============================================================================


@app.command("init-db")
def init_db_cmd() -> None:
    """Create missing tables (development; use alembic in production)."""
    from core.db import init_db

    result = init_db()
    if result["tables_created"]:
        typer.secho(f"✓ Created tables: {', '.join(result['tables_created'])}", fg="green")
    else:
        typer.echo("All tables already exist")
    for warning in result["warnings"]:
        typer.secho(f"  ! {warning}", fg="yellow")


@app.command("token")
def create_token_cmd(
    user_id: str = typer.Argument(..., help="Staff user id"),
    tenant_id: Optional[str] = typer.Option(None, help="Tenant the token is scoped to"),
    role: str = typer.Option("admin", help="Staff role"),
) -> None:
    """Mint a staff bearer token for local testing."""
    from core.auth import create_access_token

    if SETTINGS.environment == "production":
        typer.secho("✗ Refusing to mint tokens in production", fg="red")
        raise typer.Exit(1)
    typer.echo(create_access_token(user_id, tenant_id, role=role))


@app.command("info")
def show_info() -> None:
    """Show application configuration info."""
    typer.echo("Property Confirmation Service Configuration:")
    typer.echo(f"  Environment: {SETTINGS.environment}")
    typer.echo(f"  Dry Run: {SETTINGS.dry_run}")
    typer.echo(f"  Log Level: {SETTINGS.log_level}")
    typer.echo(f"  Public Base URL: {SETTINGS.public_base_url}")
    typer.echo(f"  Token TTL (days): {SETTINGS.confirmation_token_ttl_days}")
    typer.echo(f"  Staleness Threshold (days): {SETTINGS.staleness_threshold_days}")
    typer.echo(f"  Overdue Grace (days): {SETTINGS.pending_overdue_grace_days}")
    typer.echo(f"  Delivery Method: {SETTINGS.default_delivery_method}")
    typer.echo(f"  Twilio Configured: {SETTINGS.is_twilio_enabled()}")
    typer.echo(f"  Scheduler Tenants: {', '.join(SETTINGS.get_scheduler_tenants()) or '(none)'}")


if __name__ == "__main__":
    app()
