"""
CLI: ``ledgersync sync``: enqueue syncs and inspect jobs.
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
    parse_date,
    parse_json_object,
)

app = typer.Typer(no_args_is_help=True)

_JOB_COLUMNS = ["id", "entity_id", "operation", "priority", "state", "queue_name", "attempts", "last_error"]


@app.command("enqueue")
def enqueue(
    entity_id: str = typer.Argument(..., help="Entity to sync, e.g. TS-100"),
    operation: str = typer.Option("update", "--operation", "-o", help="create | update | reconcile"),
    priority: str = typer.Option("medium", "--priority", "-p", help="high | medium | low"),
    trigger: str = typer.Option("manual", "--trigger", help="manual | scheduled | event"),
    entity_type: str = typer.Option("submission", "--entity-type"),
    metadata: str | None = typer.Option(None, "--metadata", help="JSON object stored on the job"),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Enqueue a sync for one entity (coalesces into a live job)."""
    from ledgersync.ops.requests import EnqueueSyncRequest
    from ledgersync.ops.sync import enqueue_sync

    ctx, _ = make_context(database, actor=actor)
    request = EnqueueSyncRequest(
        entity_id=entity_id,
        operation=operation,
        priority=priority,
        trigger=trigger,
        entity_type=entity_type,
        metadata=parse_json_object(metadata, "--metadata") or {},
    )
    output_result(enqueue_sync(ctx, request), as_json=json_out, title="Enqueued")


@app.command("batch")
def batch(
    from_date: str = typer.Option(..., "--from", help="First work date (YYYY-MM-DD)"),
    to_date: str = typer.Option(..., "--to", help="Last work date (YYYY-MM-DD)"),
    entity_ids: list[str] = typer.Option([], "--entity-id", "-e", help="Restrict to these submissions"),
    force: bool = typer.Option(False, "--force", help="Include already-synced submissions"),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Enqueue a batch sync over approved submissions in a date range."""
    from ledgersync.ops.requests import EnqueueBatchSyncRequest
    from ledgersync.ops.sync import enqueue_batch_sync

    ctx, _ = make_context(database, actor=actor)
    request = EnqueueBatchSyncRequest(
        date_from=parse_date(from_date, "--from"),
        date_to=parse_date(to_date, "--to"),
        entity_ids=entity_ids,
        force=force,
    )
    output_result(enqueue_batch_sync(ctx, request), as_json=json_out, title="Batch Sync")


@app.command("status")
def status(
    job_id: str = typer.Argument(..., help="Sync job ID"),
    events: bool = typer.Option(False, "--events", help="Also print the event trail"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Show one job (and optionally its event trail)."""
    from ledgersync.cli.utils import console
    from ledgersync.ops.requests import GetJobRequest
    from ledgersync.ops.result import OperationResult
    from ledgersync.ops.sync import get_job

    ctx, _ = make_context(database)
    result = get_job(ctx, GetJobRequest(job_id=job_id))
    if json_out or not result.success:
        output_result(result, as_json=json_out, title="Job")
        return
    output_result(
        OperationResult.ok(result.data.job, elapsed_ms=result.elapsed_ms),
        title=f"Job {job_id}",
    )
    if events:
        output_result(OperationResult.ok(result.data.events), title="Events")
    elif result.data.events:
        console.print(f"[dim]{len(result.data.events)} event(s); use --events to list them[/dim]")


@app.command("list")
def list_jobs(
    state: str | None = typer.Option(None, "--state", "-s"),
    queue: str | None = typer.Option(None, "--queue", "-q"),
    entity_id: str | None = typer.Option(None, "--entity-id", "-e"),
    migration_id: str | None = typer.Option(None, "--migration"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """List sync jobs, newest first."""
    from ledgersync.ops.requests import ListJobsRequest
    from ledgersync.ops.sync import list_jobs as _list

    ctx, _ = make_context(database)
    request = ListJobsRequest(
        state=state,
        queue_name=queue,
        entity_id=entity_id,
        migration_id=migration_id,
        limit=limit,
        offset=offset,
    )
    output_paged(_list(ctx, request), as_json=json_out, title="Sync Jobs", columns=_JOB_COLUMNS)


@app.command("cancel")
def cancel(
    job_id: str = typer.Argument(..., help="Sync job ID"),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Cancel a waiting or delayed job."""
    from ledgersync.ops.requests import CancelJobRequest
    from ledgersync.ops.sync import cancel_job

    ctx, _ = make_context(database, actor=actor)
    output_result(cancel_job(ctx, CancelJobRequest(job_id=job_id)), as_json=json_out, title="Cancelled")
