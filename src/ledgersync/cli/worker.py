"""
CLI: ``ledgersync worker``: run a sync worker.
"""

from __future__ import annotations

import typer

from ledgersync.cli.utils import DatabaseOption, JsonOption, console, make_context

app = typer.Typer(no_args_is_help=True)


def _build_worker(database: str | None, stub: bool, pool_size: int | None,
                  poll_interval: float | None, worker_id: str | None):
    from ledgersync.execution.ledger_client import HttpLedgerClient, StubLedgerClient
    from ledgersync.execution.worker import SyncWorker
    from ledgersync.ops.components import queue_manager

    ctx, conn = make_context(database)
    settings = ctx.settings
    if stub:
        ledger = StubLedgerClient()
    else:
        token = settings.ledger_api_token.get_secret_value() if settings.ledger_api_token else None
        ledger = HttpLedgerClient(
            settings.ledger_base_url,
            token=token,
            timeout=settings.ledger_timeout_seconds,
        )
    worker = SyncWorker(
        queue_manager(ctx),
        ledger,
        pool_size=pool_size or settings.worker_pool_size,
        poll_interval=poll_interval or settings.poll_interval_seconds,
        heartbeat_interval=settings.heartbeat_interval_seconds,
        worker_id=worker_id,
    )
    return worker, ledger


@app.command("start")
def start(
    pool_size: int | None = typer.Option(None, "--pool-size", "-w", help="Concurrent ledger calls"),
    poll_interval: float | None = typer.Option(None, "--poll-interval", help="Seconds between polls"),
    worker_id: str | None = typer.Option(None, "--id", help="Custom worker identifier"),
    stub: bool = typer.Option(False, "--stub", help="Use the in-memory ledger (no HTTP)"),
    database: str | None = DatabaseOption,
) -> None:
    """Start a worker that pulls jobs and pushes them to the ledger.

    Example::

        ledgersync worker start --pool-size 4 --poll-interval 1
    """
    worker, ledger = _build_worker(database, stub, pool_size, poll_interval, worker_id)
    console.print(
        f"[bold green]Starting ledgersync worker[/bold green] {worker.worker_id} "
        f"(pool={pool_size or 'default'}, ledger={'stub' if stub else 'http'})"
    )
    try:
        worker.start()
    except KeyboardInterrupt:
        console.print("\n[yellow]Worker stopped by user[/yellow]")
    finally:
        if hasattr(ledger, "close"):
            ledger.close()
    console.print(f"[dim]{worker.stats.to_dict()}[/dim]")


@app.command("drain")
def drain(
    max_jobs: int = typer.Option(10_000, "--max-jobs", "-n"),
    stub: bool = typer.Option(False, "--stub", help="Use the in-memory ledger (no HTTP)"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Process eligible jobs inline until none are left, then exit."""
    import json

    worker, ledger = _build_worker(database, stub, 1, None, None)
    try:
        processed = worker.drain(max_jobs=max_jobs)
    finally:
        if hasattr(ledger, "close"):
            ledger.close()
    stats = {**worker.stats.to_dict(), "drained": processed}
    if json_out:
        console.print_json(json.dumps(stats, default=str))
    else:
        console.print(f"[bold]Drained[/bold] {processed} job(s): "
                      f"completed={stats['completed']} retried={stats['retried']} failed={stats['failed']}")
