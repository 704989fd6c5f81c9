"""
Root Typer application for the txoutbox CLI.

Operator commands against an outbox database: run migrations, flush due
entries, inspect and unblock entries, purge processed ones.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime

import typer
from typer import Typer

from txoutbox.cli.utils import (
    console,
    err_console,
    fail,
    import_handlers,
    load_settings,
    make_outbox,
    output_data,
)
from txoutbox.core.errors import OutboxError

app = Typer(
    name="txoutbox",
    help="txoutbox — transactional outbox operations.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

DatabaseOpt = typer.Option(None, "--database", "-d", help="Database URL or SQLite path")
DialectOpt = typer.Option(None, "--dialect", help="Engine override (sqlite, postgresql, mysql8, ...)")


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("txoutbox")
        except PackageNotFoundError:
            v = "unknown"
        typer.echo(f"txoutbox {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(
        None, "--log-level", help="Log level. Defaults to TXOUTBOX_LOG_LEVEL."
    ),
    log_json: bool | None = typer.Option(
        None,
        "--log-json/--log-console",
        help="Log format. Defaults to TXOUTBOX_LOG_FORMAT.",
    ),
) -> None:
    """txoutbox CLI — migrate, flush and inspect the outbox."""
    from txoutbox.core.logging import configure_logging

    settings = load_settings()
    if log_json is None:
        log_json = settings.log_format == "json"
    configure_logging(level=log_level or settings.log_level, json_format=log_json)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command()
def migrate(
    database: str | None = DatabaseOpt,
    dialect: str | None = DialectOpt,
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Bring the outbox schema up to the latest version."""
    from txoutbox.core.migrations import MigrationManager

    outbox = make_outbox(database, dialect)
    persistor = outbox.persistor
    manager = MigrationManager(
        outbox.transaction_manager, persistor.dialect, table_name=persistor.table_name
    )
    try:
        result = manager.migrate()
    except OutboxError as e:
        raise fail(e) from e
    if json_out:
        output_data(result, as_json=True)
    elif result.changed:
        console.print(
            f"[green]Migrated[/green] {result.from_version} → {result.to_version} "
            f"({len(result.applied)} applied, {len(result.skipped)} skipped)"
        )
    else:
        console.print(f"Schema already at version {result.to_version}")


@app.command()
def flush(
    database: str | None = DatabaseOpt,
    dialect: str | None = DialectOpt,
    handlers: list[str] | None = typer.Option(
        None, "--handlers", "-H", help="Module to import for @handler registrations (repeatable)"
    ),
    loop: bool = typer.Option(False, "--loop", help="Keep flushing on an interval"),
    interval: float | None = typer.Option(None, "--interval", help="Seconds between flushes"),
) -> None:
    """Process due entries once, or continuously with --loop."""
    from txoutbox.dispatch.scheduler import FlushScheduler

    import_handlers(handlers)
    outbox = make_outbox(database, dialect)
    try:
        outbox.initialize()
        if not loop:
            found = outbox.flush()
            console.print("Flushed due entries" if found else "[dim]Nothing due.[/dim]")
            return
    except OutboxError as e:
        raise fail(e) from e

    settings = load_settings(database, dialect)
    scheduler = FlushScheduler(outbox, interval or settings.flush_interval_seconds)
    console.print(f"Flushing every {scheduler.interval}s — Ctrl+C to stop")
    scheduler.start()
    try:
        while scheduler.is_running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()


@app.command()
def unblock(
    entry_id: str = typer.Argument(..., help="Entry id"),
    database: str | None = DatabaseOpt,
    dialect: str | None = DialectOpt,
) -> None:
    """Clear the blocked flag of an entry and reset its attempts."""
    outbox = make_outbox(database, dialect)
    try:
        unblocked = outbox.unblock(entry_id)
    except OutboxError as e:
        raise fail(e) from e
    if not unblocked:
        err_console.print(f"[yellow]Entry {entry_id} not found or not blocked[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]Unblocked[/green] {entry_id}")


@app.command()
def show(
    entry_id: str = typer.Argument(..., help="Entry id"),
    database: str | None = DatabaseOpt,
    dialect: str | None = DialectOpt,
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Show one entry."""
    outbox = make_outbox(database, dialect)
    try:
        entry = outbox.get(entry_id)
    except OutboxError as e:
        raise fail(e) from e
    if entry is None:
        err_console.print(f"[yellow]Entry {entry_id} not found[/yellow]")
        raise typer.Exit(code=1)
    output_data(entry, as_json=json_out, title=f"Entry {entry_id}")


@app.command()
def status(
    database: str | None = DatabaseOpt,
    dialect: str | None = DialectOpt,
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Entry counts by status and the schema version."""
    from txoutbox.core.migrations import MigrationManager

    outbox = make_outbox(database, dialect)
    persistor = outbox.persistor
    try:
        if not outbox.transaction_manager.in_transaction(persistor.table_exists):
            err_console.print(
                f"[yellow]Table {persistor.table_name} does not exist; run 'txoutbox migrate'[/yellow]"
            )
            raise typer.Exit(code=1)
        counts = outbox.stats()
        version = MigrationManager(outbox.transaction_manager, persistor.dialect).current_version()
    except OutboxError as e:
        raise fail(e) from e
    data = {
        "pending": counts.pending,
        "blocked": counts.blocked,
        "processed": counts.processed,
        "total": counts.total,
        "schema_version": version,
    }
    output_data(data, as_json=json_out, title="Outbox Status")


@app.command()
def purge(
    database: str | None = DatabaseOpt,
    dialect: str | None = DialectOpt,
) -> None:
    """Delete processed entries whose retention has elapsed."""
    outbox = make_outbox(database, dialect)
    try:
        deleted = outbox.purge_processed(datetime.now(UTC))
    except OutboxError as e:
        raise fail(e) from e
    console.print(f"Purged {deleted} processed entries")
