"""
CLI utility helpers: output formatting and connection management.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import date, datetime
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ledgersync.core.connection import create_connection
from ledgersync.core.settings import LedgerSyncSettings
from ledgersync.ops.context import OperationContext
from ledgersync.ops.result import OperationResult, PagedResult

console = Console()
err_console = Console(stderr=True)

# Shared option definitions
DatabaseOption = typer.Option(None, "--database", "-d", help="Database URL or path (default: LEDGERSYNC_DATABASE_URL)")
ActorOption = typer.Option("system", "--actor", envvar="LEDGERSYNC_ACTOR", help="Identity recorded in audit trails")
JsonOption = typer.Option(False, "--json", help="JSON output")


# ── Connection helper ────────────────────────────────────────────────────


def get_connection(database: str | None = None, *, init_schema: bool = True) -> Any:
    """Open a database connection.  Defaults to ``LEDGERSYNC_DATABASE_URL``."""
    url = database or LedgerSyncSettings().database_url
    conn, _info = create_connection(url, init_schema=init_schema)
    return conn


def make_context(
    database: str | None = None,
    *,
    dry_run: bool = False,
    actor: str | None = None,
    init_schema: bool = True,
) -> tuple[OperationContext, Any]:
    """Create an ``OperationContext`` + connection pair for CLI commands."""
    settings = LedgerSyncSettings()
    if database:
        settings = settings.model_copy(update={"database_url": database})
    conn = get_connection(settings.database_url, init_schema=init_schema)
    ctx = OperationContext(conn=conn, caller="cli", user=actor, dry_run=dry_run, settings=settings)
    return ctx, conn


def parse_date(value: str | None, name: str) -> date | None:
    """``YYYY-MM-DD`` → date, or a usage error."""
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise typer.BadParameter(f"expected YYYY-MM-DD, got {value!r}", param_hint=name) from exc


def parse_datetime(value: str | None, name: str) -> datetime | None:
    """ISO 8601 (``2026-04-01`` or ``2026-04-01T17:00:00Z``) → datetime; naive means UTC."""
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise typer.BadParameter(f"expected an ISO 8601 date or datetime, got {value!r}", param_hint=name) from exc


def parse_json_object(value: str | None, name: str) -> dict[str, Any] | None:
    if value is None:
        return None
    try:
        data = json.loads(value)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"invalid JSON: {exc.msg}", param_hint=name) from exc
    if not isinstance(data, dict):
        raise typer.BadParameter("expected a JSON object", param_hint=name)
    return data


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def _fail(result: OperationResult) -> None:
    err = result.error
    msg = err.message if err else "Unknown error"
    code = err.code if err else "ERROR"
    err_console.print(f"[bold red]Error[/bold red] ({code}): {escape(msg)}")
    if err is not None:
        for issue in err.details.get("issues", []):
            err_console.print(f"  [red]-[/red] {escape(str(issue))}")
    raise typer.Exit(code=1)


def output_result(
    result: OperationResult,
    *,
    as_json: bool = False,
    title: str = "",
) -> None:
    """Render an ``OperationResult`` to the terminal."""
    if not result.success:
        _fail(result)

    data = result.data

    if as_json:
        payload = _to_dict(data) if not isinstance(data, list | tuple) else [_to_dict(d) for d in data]
        console.print_json(json.dumps(payload, default=_json_default))
        return

    if isinstance(data, list):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(data, title=title)
    else:
        _print_dict(_to_dict(data), title=title)
    for warning in result.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")


def output_paged(
    result: PagedResult,
    *,
    as_json: bool = False,
    title: str = "",
    columns: list[str] | None = None,
) -> None:
    """Render a ``PagedResult`` to the terminal with pagination info."""
    if not result.success:
        _fail(result)

    items = result.data or []

    if as_json:
        payload = {
            "items": [_to_dict(d) for d in items],
            "total": result.total,
            "limit": result.limit,
            "offset": result.offset,
            "has_more": result.has_more,
        }
        console.print_json(json.dumps(payload, default=_json_default))
        return

    if not items:
        console.print("[dim]No items.[/dim]")
        return

    _print_table(items, title=title, columns=columns)
    console.print(
        f"\n[dim]Showing {len(items)} of {result.total}"
        f" (offset {result.offset})[/dim]"
    )


# ── Private helpers ──────────────────────────────────────────────────────


def _json_default(value: Any) -> Any:
    if isinstance(value, date | datetime):
        return value.isoformat()
    return str(value)


def _print_table(items: list, *, title: str = "", columns: list[str] | None = None) -> None:
    """Render a list of dataclasses/dicts as a Rich table."""
    first = _to_dict(items[0])
    cols = columns or list(first)
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in cols:
        table.add_column(col, overflow="fold")
    for item in items:
        d = _to_dict(item)
        table.add_row(*(_cell(d.get(c)) for c in cols))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {_cell(v)}")


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, dict | list):
        return escape(json.dumps(value, default=_json_default))
    return escape(str(value))
