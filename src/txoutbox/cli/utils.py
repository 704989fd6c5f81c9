"""
CLI utility helpers — outbox construction and output formatting.
"""

from __future__ import annotations

import importlib
import json
from dataclasses import asdict
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from txoutbox.core.dialect import get_dialect
from txoutbox.core.errors import OutboxError
from txoutbox.core.settings import OutboxSettings, get_settings
from txoutbox.dispatch.outbox import TransactionOutbox

console = Console()
err_console = Console(stderr=True)


# ── Outbox helper ────────────────────────────────────────────────────────


def load_settings(database: str | None = None, dialect: str | None = None) -> OutboxSettings:
    """Environment settings with ``--database`` / ``--dialect`` applied on top."""
    settings = get_settings()
    update: dict[str, Any] = {}
    if database:
        update["database_url"] = database
    if dialect:
        try:
            update["dialect"] = get_dialect(dialect).name
        except ValueError as e:
            err_console.print(f"[bold red]Error[/bold red]: {e}")
            raise typer.Exit(code=2) from e
    return settings.model_copy(update=update) if update else settings


def make_outbox(database: str | None = None, dialect: str | None = None) -> TransactionOutbox:
    """Build a ``TransactionOutbox`` for CLI commands."""
    return TransactionOutbox.from_settings(load_settings(database, dialect))


def import_handlers(modules: list[str] | None) -> None:
    """Import modules whose ``@handler`` registrations the flush needs."""
    for name in modules or []:
        try:
            importlib.import_module(name)
        except ImportError as e:
            err_console.print(f"[bold red]Error[/bold red]: cannot import handlers from {name}: {e}")
            raise typer.Exit(code=2) from e


def fail(error: OutboxError) -> typer.Exit:
    """Print an outbox error and return the ``Exit`` to raise."""
    err_console.print(f"[bold red]Error[/bold red] ({error.category.value}): {error.message}")
    if error.cause is not None:
        err_console.print(f"  [dim]caused by: {error.cause}[/dim]")
    return typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output_data(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render a result object to the terminal."""
    if as_json:
        payload = [_to_dict(d) for d in data] if isinstance(data, list | tuple) else _to_dict(data)
        console.print_json(json.dumps(payload, default=str))
        return

    if isinstance(data, list):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(data, title=title)
    else:
        _print_dict(_to_dict(data), title=title)


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list, *, title: str = "") -> None:
    """Render a list of dataclasses/dicts as a Rich table."""
    first = _to_dict(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in first:
        table.add_column(col, overflow="fold")
    for item in items:
        d = _to_dict(item)
        table.add_row(*(str(v) for v in d.values()))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
