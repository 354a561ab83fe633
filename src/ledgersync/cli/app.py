"""
Root Typer application for the ledgersync CLI.

Sub-command modules import the pipeline lazily inside each command, so
``ledgersync --help`` stays fast.
"""

from __future__ import annotations

import sys

import typer
from typer import Typer

app = Typer(
    name="ledgersync",
    help="ledgersync: sync local records to the ledger, replay history, review quarantine.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from ledgersync import __version__

        typer.echo(f"ledgersync {__version__}")
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
    log_level: str = typer.Option(
        "WARNING", "--log-level", envvar="LEDGERSYNC_LOG_LEVEL", help="Log level (written to stderr)."
    ),
) -> None:
    """ledgersync CLI: sync jobs, queues, migrations, and the quarantine worklist."""
    from ledgersync.core.logging import configure_logging

    # stdout carries command output (and --json payloads)
    configure_logging(level=log_level.upper(), stream=sys.stderr)


# ── Sub-command registration ─────────────────────────────────────────────

from ledgersync.cli.db import app as db_app  # noqa: E402
from ledgersync.cli.migration import app as migration_app  # noqa: E402
from ledgersync.cli.overrides import app as override_app  # noqa: E402
from ledgersync.cli.quarantine import app as quarantine_app  # noqa: E402
from ledgersync.cli.queue import app as queue_app  # noqa: E402
from ledgersync.cli.serve import app as serve_app  # noqa: E402
from ledgersync.cli.sync import app as sync_app  # noqa: E402
from ledgersync.cli.worker import app as worker_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(sync_app, name="sync", help="Enqueue and inspect sync jobs.")
app.add_typer(queue_app, name="queue", help="Queue status and control.")
app.add_typer(migration_app, name="migration", help="Batch migrations.")
app.add_typer(quarantine_app, name="quarantine", help="Quarantine review.")
app.add_typer(override_app, name="override", help="Validation overrides.")
app.add_typer(worker_app, name="worker", help="Sync workers.")
app.add_typer(serve_app, name="serve", help="API server.")


if __name__ == "__main__":
    app()
