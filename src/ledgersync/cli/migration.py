"""
CLI: ``ledgersync migration``: supervised batch replays.

``start`` freezes the dataset; ``run`` drives the waves in the foreground
(and resumes a migration whose runner died).  Workers must be running to
process the jobs each wave enqueues.
"""

from __future__ import annotations

import typer

from ledgersync.cli.utils import (
    ActorOption,
    DatabaseOption,
    JsonOption,
    console,
    make_context,
    output_paged,
    output_result,
    parse_date,
)

app = typer.Typer(no_args_is_help=True)


@app.command("analyze")
def analyze(
    date_from: str | None = typer.Option(None, "--from", help="First work date (YYYY-MM-DD)"),
    date_to: str | None = typer.Option(None, "--to", help="Last work date (YYYY-MM-DD)"),
    batch_size: int = typer.Option(50, "--batch-size", "-b"),
    delay: float = typer.Option(0.0, "--delay", help="Seconds between waves"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Estimate item count and duration.  No writes."""
    from ledgersync.ops.migrations import analyze_migration
    from ledgersync.ops.requests import AnalyzeMigrationRequest

    ctx, _ = make_context(database)
    request = AnalyzeMigrationRequest(
        date_from=parse_date(date_from, "--from"),
        date_to=parse_date(date_to, "--to"),
        batch_size=batch_size,
        delay_between_batches=delay,
    )
    output_result(analyze_migration(ctx, request), as_json=json_out, title="Migration Analysis")


@app.command("validate")
def validate(
    date_from: str | None = typer.Option(None, "--from"),
    date_to: str | None = typer.Option(None, "--to"),
    include_rejected: bool = typer.Option(False, "--include-rejected"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Validate the records a migration would replay."""
    from ledgersync.cli.utils import _print_table
    from ledgersync.ops.migrations import validate_migration
    from ledgersync.ops.requests import ValidateMigrationRequest

    ctx, _ = make_context(database)
    request = ValidateMigrationRequest(
        date_from=parse_date(date_from, "--from"),
        date_to=parse_date(date_to, "--to"),
        include_rejected=include_rejected,
    )
    result = validate_migration(ctx, request)
    if json_out or not result.success:
        output_result(result, as_json=json_out)
        return
    report = result.data
    console.print(
        f"[bold]Validation[/bold]  total={report['total_records']}  "
        f"valid=[green]{report['valid_records']}[/green]  invalid=[red]{report['invalid_records']}[/red]"
    )
    if report["issues"]:
        _print_table(report["issues"], title="Issues")


@app.command("start")
def start(
    batch_size: int = typer.Option(50, "--batch-size", "-b"),
    delay: float = typer.Option(0.0, "--delay", help="Seconds between waves"),
    max_retries: int = typer.Option(3, "--max-retries"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate items without calling the ledger"),
    date_from: str | None = typer.Option(None, "--from"),
    date_to: str | None = typer.Option(None, "--to"),
    include_rejected: bool = typer.Option(False, "--include-rejected"),
    run: bool = typer.Option(False, "--run", help="Drive the waves in the foreground after starting"),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Freeze the dataset and start a migration."""
    from ledgersync.ops.migrations import start_migration
    from ledgersync.ops.requests import StartMigrationRequest

    ctx, _ = make_context(database, actor=actor)
    request = StartMigrationRequest(
        batch_size=batch_size,
        delay_between_batches=delay,
        max_retries=max_retries,
        dry_run=dry_run,
        date_from=parse_date(date_from, "--from"),
        date_to=parse_date(date_to, "--to"),
        include_rejected=include_rejected,
    )
    result = start_migration(ctx, request)
    output_result(result, as_json=json_out, title="Migration Started")
    if run:
        _run(ctx, result.data.id, json_out)
    elif not json_out:
        console.print(f"[dim]Drive it with: ledgersync migration run {result.data.id}[/dim]")


@app.command("run")
def run(
    migration_id: str = typer.Argument(..., help="Migration ID"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Drive a migration until it is terminal (resumes after a crash)."""
    ctx, _ = make_context(database)
    _run(ctx, migration_id, json_out)


def _run(ctx, migration_id: str, json_out: bool) -> None:
    from ledgersync.ops.migrations import run_migration
    from ledgersync.ops.requests import GetMigrationRequest

    if not json_out:
        console.print(f"[bold green]Running migration[/bold green] {migration_id} (Ctrl+C to detach)")
    try:
        result = run_migration(ctx, GetMigrationRequest(migration_id=migration_id))
    except KeyboardInterrupt:
        console.print("\n[yellow]Detached; the migration stays open and can be resumed with 'run'[/yellow]")
        raise typer.Exit(code=130) from None
    output_result(result, as_json=json_out, title="Migration Progress")


@app.command("progress")
def progress(
    migration_id: str = typer.Argument(..., help="Migration ID"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Counters, current wave, estimated completion, latest errors."""
    from ledgersync.ops.migrations import get_migration_progress
    from ledgersync.ops.requests import GetMigrationRequest

    ctx, _ = make_context(database)
    result = get_migration_progress(ctx, GetMigrationRequest(migration_id=migration_id))
    output_result(result, as_json=json_out, title="Migration Progress")


@app.command("list")
def list_migrations(
    limit: int = typer.Option(20, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """List migrations, newest first."""
    from ledgersync.ops.migrations import list_migrations as _list

    ctx, _ = make_context(database)
    output_paged(_list(ctx, limit=limit, offset=offset), as_json=json_out, title="Migrations")


def _control(migration_id: str, action: str, database: str | None, actor: str, json_out: bool) -> None:
    from ledgersync.ops.migrations import control_migration
    from ledgersync.ops.requests import MigrationControlRequest

    ctx, _ = make_context(database, actor=actor)
    result = control_migration(ctx, MigrationControlRequest(migration_id=migration_id, action=action))
    output_result(result, as_json=json_out, title=f"Migration {action}")


@app.command("pause")
def pause(
    migration_id: str = typer.Argument(...),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Stop generating new waves.  Dispatched jobs finish."""
    _control(migration_id, "pause", database, actor, json_out)


@app.command("resume")
def resume(
    migration_id: str = typer.Argument(...),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Resume wave generation."""
    _control(migration_id, "resume", database, actor, json_out)


@app.command("cancel")
def cancel(
    migration_id: str = typer.Argument(...),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Cancel the migration.  Dispatched jobs finish."""
    _control(migration_id, "cancel", database, actor, json_out)
