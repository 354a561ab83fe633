"""
CLI: ``ledgersync db``: database management commands.
"""

from __future__ import annotations

import typer

from ledgersync.cli.utils import DatabaseOption, JsonOption, make_context, output_result

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = DatabaseOption,
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without changes"),
    json_out: bool = JsonOption,
) -> None:
    """Create the pipeline tables (idempotent)."""
    from ledgersync.ops.database import initialize_database
    from ledgersync.ops.requests import DatabaseInitRequest

    ctx, _conn = make_context(database, dry_run=dry_run, init_schema=False)
    result = initialize_database(ctx, DatabaseInitRequest())
    output_result(result, as_json=json_out, title="Database Init")


@app.command()
def health(
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Check database connectivity and row counts."""
    from ledgersync.ops.database import check_database_health

    ctx, _conn = make_context(database, init_schema=False)
    result = check_database_health(ctx)
    output_result(result, as_json=json_out, title="Database Health")
