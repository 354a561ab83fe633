"""
CLI: ``ledgersync queue``: queue status and control.
"""

from __future__ import annotations

import typer

from ledgersync.cli.utils import ActorOption, DatabaseOption, JsonOption, console, make_context, output_result

app = typer.Typer(no_args_is_help=True)

_STATUS_COLUMNS = ["queue", "total", "error_rate", "average_latency_ms", "paused", "held"]


@app.command("status")
def status(
    name: str | None = typer.Argument(None, help="Queue name (high, normal, batch); all when omitted"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Per-state counts, error rate, latency, and paused/held flags."""
    from ledgersync.cli.utils import _print_table
    from ledgersync.ops.queues import get_queue_status
    from ledgersync.ops.requests import QueueStatusRequest

    ctx, _ = make_context(database)
    result = get_queue_status(ctx, QueueStatusRequest(queue_name=name))
    if json_out or not result.success or name:
        output_result(result, as_json=json_out, title=f"Queue {name}" if name else "Queues")
        return
    rows = result.data["queues"] + [{**result.data["totals"], "queue": "(all)"}]
    _print_table(rows, title="Queues", columns=_STATUS_COLUMNS)
    totals = result.data["totals"]["counts"]
    console.print("  ".join(f"[cyan]{state}[/cyan]={n}" for state, n in totals.items()))


def _control(name: str | None, action: str, database: str | None, actor: str, json_out: bool) -> None:
    from ledgersync.ops.queues import control_queue
    from ledgersync.ops.requests import QueueControlRequest

    ctx, _ = make_context(database, actor=actor)
    result = control_queue(ctx, QueueControlRequest(queue_name=name, action=action))
    output_result(result, as_json=json_out, title="Queue Control")


@app.command("pause")
def pause(
    name: str = typer.Argument(..., help="Queue name"),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Stop dispatch from a queue.  Active jobs run to completion."""
    _control(name, "pause", database, actor, json_out)


@app.command("resume")
def resume(
    name: str = typer.Argument(..., help="Queue name"),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Resume dispatch (also lifts an authorization hold)."""
    _control(name, "resume", database, actor, json_out)


@app.command("retry-failed")
def retry_failed(
    name: str | None = typer.Option(None, "--queue", "-q", help="Limit to one queue"),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Re-arm failed jobs with a fresh attempt budget."""
    _control(name, "retryFailed", database, actor, json_out)


@app.command("clear-failed")
def clear_failed(
    name: str | None = typer.Option(None, "--queue", "-q", help="Limit to one queue"),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Delete failed jobs."""
    _control(name, "clearFailed", database, actor, json_out)


@app.command("requeue-stalled")
def requeue_stalled(
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Requeue active jobs whose worker stopped heartbeating."""
    _control(None, "requeueStalled", database, actor, json_out)
