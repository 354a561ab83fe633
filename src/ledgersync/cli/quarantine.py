"""
CLI: ``ledgersync quarantine``: the reviewer worklist.
"""

from __future__ import annotations

import typer

from ledgersync.cli.utils import (
    ActorOption,
    DatabaseOption,
    JsonOption,
    make_context,
    output_paged,
    output_result,
    parse_json_object,
)

app = typer.Typer(no_args_is_help=True)

_LIST_COLUMNS = ["id", "entity_type", "entity_id", "status", "priority", "reason", "occurrence_count", "created_at"]


@app.command("list")
def list_records(
    status: list[str] = typer.Option([], "--status", "-s", help="Repeatable"),
    priority: list[str] = typer.Option([], "--priority", "-p", help="Repeatable"),
    reason: str | None = typer.Option(None, "--reason", "-r"),
    entity_type: str | None = typer.Option(None, "--entity-type"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Worklist, highest priority first and oldest first within a tier."""
    from ledgersync.ops.quarantine import list_quarantine
    from ledgersync.ops.requests import ListQuarantineRequest

    ctx, _ = make_context(database)
    request = ListQuarantineRequest(
        entity_type=entity_type,
        statuses=status,
        priorities=priority,
        reason=reason,
        limit=limit,
        offset=offset,
    )
    output_paged(list_quarantine(ctx, request), as_json=json_out, title="Quarantine", columns=_LIST_COLUMNS)


@app.command("show")
def show(
    record_id: str = typer.Argument(..., help="Quarantine record ID"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """One record with its audit trail."""
    from ledgersync.ops.quarantine import get_quarantine_record
    from ledgersync.ops.requests import GetQuarantineRequest

    ctx, _ = make_context(database)
    output_result(
        get_quarantine_record(ctx, GetQuarantineRequest(record_id=record_id)),
        as_json=json_out,
        title="Quarantine Record",
    )


@app.command("stats")
def stats(
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Counts by status, priority, reason; average resolution time."""
    from ledgersync.ops.quarantine import get_quarantine_stats

    ctx, _ = make_context(database)
    output_result(get_quarantine_stats(ctx), as_json=json_out, title="Quarantine Stats")


@app.command("review")
def review(
    record_id: str = typer.Argument(..., help="Quarantine record ID"),
    status: str = typer.Option(..., "--status", help="resolved | rejected"),
    notes: str | None = typer.Option(None, "--notes"),
    corrected_data: str | None = typer.Option(
        None, "--corrected-data", help='JSON object merged into the entity, e.g. \'{"amount": 42}\''
    ),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Resolve (and re-enqueue) or reject one record."""
    from ledgersync.ops.quarantine import review_quarantine
    from ledgersync.ops.requests import ReviewQuarantineRequest

    ctx, _ = make_context(database, actor=actor)
    request = ReviewQuarantineRequest(
        record_id=record_id,
        decision=status,
        notes=notes,
        corrected_data=parse_json_object(corrected_data, "--corrected-data"),
    )
    output_result(review_quarantine(ctx, request), as_json=json_out, title="Review")


@app.command("bulk")
def bulk(
    record_ids: list[str] = typer.Argument(..., help="Quarantine record IDs"),
    status: str = typer.Option(..., "--status", help="in_review | resolved | rejected"),
    notes: str | None = typer.Option(None, "--notes"),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Apply one status to many records; each succeeds or fails on its own."""
    from ledgersync.ops.quarantine import bulk_update_quarantine
    from ledgersync.ops.requests import BulkUpdateQuarantineRequest

    ctx, _ = make_context(database, actor=actor)
    request = BulkUpdateQuarantineRequest(record_ids=record_ids, status=status, notes=notes)
    output_result(bulk_update_quarantine(ctx, request), as_json=json_out, title="Bulk Update")


@app.command("recover")
def recover(
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would be recovered"),
    max_records: int = typer.Option(100, "--max-records", "-n"),
    priority_only: bool = typer.Option(False, "--priority-only", help="Only high-priority records"),
    entity_type: str | None = typer.Option(None, "--entity-type"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Resolve and re-enqueue records whose cause has cleared."""
    from ledgersync.ops.quarantine import recover_quarantine
    from ledgersync.ops.requests import RecoverQuarantineRequest

    ctx, _ = make_context(database)
    request = RecoverQuarantineRequest(
        dry_run=dry_run,
        max_records=max_records,
        priority_only=priority_only,
        entity_type=entity_type,
    )
    output_result(recover_quarantine(ctx, request), as_json=json_out, title="Recovery")


@app.command("add")
def add(
    entity_id: str = typer.Argument(..., help="Entity to hold back"),
    entity_type: str = typer.Option("submission", "--entity-type"),
    detail: str = typer.Option("", "--detail", help="Why the entity is held"),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Quarantine an entity by hand (reason=manual)."""
    from ledgersync.ops.quarantine import quarantine_entity
    from ledgersync.ops.requests import ManualQuarantineRequest

    ctx, _ = make_context(database, actor=actor)
    request = ManualQuarantineRequest(entity_type=entity_type, entity_id=entity_id, detail=detail)
    output_result(quarantine_entity(ctx, request), as_json=json_out, title="Quarantined")
