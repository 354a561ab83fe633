"""
Batch migration operations.

Analyze and validate are read-only.  ``start_migration`` freezes the
dataset and returns immediately; the waves are driven by
:func:`run_migration`, which the API schedules on a background thread and
the CLI calls in the foreground.
"""

from __future__ import annotations

from typing import Any

from ledgersync.core.errors import LedgerSyncError
from ledgersync.core.logging import get_logger
from ledgersync.core.timestamps import to_iso8601
from ledgersync.migration.models import BatchMigration, BatchMigrationConfig, MigrationAction
from ledgersync.ops.components import migration_controller
from ledgersync.ops.context import OperationContext
from ledgersync.ops.requests import (
    AnalyzeMigrationRequest,
    GetMigrationRequest,
    MigrationControlRequest,
    StartMigrationRequest,
    ValidateMigrationRequest,
)
from ledgersync.ops.responses import MigrationSummary
from ledgersync.ops.result import OperationResult, PagedResult, fail_from_error, start_timer

logger = get_logger(__name__)


def analyze_migration(
    ctx: OperationContext,
    request: AnalyzeMigrationRequest,
) -> OperationResult[dict[str, Any]]:
    """Counts, date span and duration estimate for a prospective migration."""
    timer = start_timer()
    try:
        report = migration_controller(ctx).analyze(
            date_from=request.date_from,
            date_to=request.date_to,
            batch_size=request.batch_size,
            delay_between_batches=request.delay_between_batches,
        )
        return OperationResult.ok(report, elapsed_ms=timer.elapsed_ms)
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to analyze migration: {exc}", elapsed_ms=timer.elapsed_ms
        )


def validate_migration(
    ctx: OperationContext,
    request: ValidateMigrationRequest,
) -> OperationResult[dict[str, Any]]:
    """Run submission validation over the records a migration would replay."""
    timer = start_timer()
    try:
        report = migration_controller(ctx).validate(
            date_from=request.date_from,
            date_to=request.date_to,
            include_rejected=request.include_rejected,
        )
        warnings = []
        if report["invalid_records"]:
            warnings.append(f"{report['invalid_records']} record(s) will fail validation")
        return OperationResult.ok(report, warnings=warnings, elapsed_ms=timer.elapsed_ms)
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to validate migration: {exc}", elapsed_ms=timer.elapsed_ms
        )


def start_migration(
    ctx: OperationContext,
    request: StartMigrationRequest,
) -> OperationResult[MigrationSummary]:
    """Create a migration and move it to ``running``.

    Fails with ``CONFLICT`` while another migration is open.
    """
    timer = start_timer()
    try:
        config = BatchMigrationConfig(
            batch_size=request.batch_size,
            delay_between_batches=request.delay_between_batches,
            max_retries=request.max_retries,
            dry_run=request.dry_run,
            date_from=request.date_from,
            date_to=request.date_to,
            include_rejected=request.include_rejected,
        )
        if ctx.dry_run:
            report = migration_controller(ctx).analyze(
                date_from=config.date_from,
                date_to=config.date_to,
                batch_size=config.batch_size,
                delay_between_batches=config.delay_between_batches,
            )
            return OperationResult.ok(
                MigrationSummary(
                    id="",
                    state="dry_run",
                    dry_run=True,
                    items_total=report["pending_migration"],
                    total_waves=report["estimated_waves"],
                    batch_size=config.batch_size,
                ),
                elapsed_ms=timer.elapsed_ms,
            )
        migration = migration_controller(ctx).start(config, actor=ctx.actor)
        return OperationResult.ok(_summary(migration), elapsed_ms=timer.elapsed_ms)
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to start migration: {exc}", elapsed_ms=timer.elapsed_ms
        )


def run_migration(
    ctx: OperationContext,
    request: GetMigrationRequest,
    *,
    wait_while_paused: bool = True,
) -> OperationResult[dict[str, Any]]:
    """Drive a migration wave by wave until it is terminal (blocking)."""
    timer = start_timer()

    if not request.migration_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "migration_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        controller = migration_controller(ctx)
        controller.run(request.migration_id, wait_while_paused=wait_while_paused)
        return OperationResult.ok(
            controller.progress(request.migration_id), elapsed_ms=timer.elapsed_ms
        )
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc), migration_id=request.migration_id)
        return OperationResult.fail(
            "INTERNAL", f"Failed to run migration: {exc}", elapsed_ms=timer.elapsed_ms
        )


def get_migration_progress(
    ctx: OperationContext,
    request: GetMigrationRequest,
) -> OperationResult[dict[str, Any]]:
    timer = start_timer()

    if not request.migration_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "migration_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        progress = migration_controller(ctx).progress(request.migration_id)
        return OperationResult.ok(progress, elapsed_ms=timer.elapsed_ms)
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to read migration progress: {exc}", elapsed_ms=timer.elapsed_ms
        )


def control_migration(
    ctx: OperationContext,
    request: MigrationControlRequest,
) -> OperationResult[dict[str, Any]]:
    """Pause, resume or cancel a migration.  Returns its progress."""
    timer = start_timer()

    try:
        action = MigrationAction(request.action.lower())
    except ValueError:
        return OperationResult.fail(
            "VALIDATION_FAILED",
            f"Unknown migration action: {request.action!r}",
            details={"allowed": [a.value for a in MigrationAction]},
            elapsed_ms=timer.elapsed_ms,
        )
    if not request.migration_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "migration_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        controller = migration_controller(ctx)
        if action is MigrationAction.PAUSE:
            controller.pause(request.migration_id, actor=ctx.actor)
        elif action is MigrationAction.RESUME:
            controller.resume(request.migration_id, actor=ctx.actor)
        else:
            controller.cancel(request.migration_id, actor=ctx.actor)
        return OperationResult.ok(
            controller.progress(request.migration_id), elapsed_ms=timer.elapsed_ms
        )
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to {action.value} migration: {exc}", elapsed_ms=timer.elapsed_ms
        )


def list_migrations(
    ctx: OperationContext,
    *,
    limit: int = 50,
    offset: int = 0,
) -> PagedResult[MigrationSummary]:
    timer = start_timer()
    try:
        migrations, total = migration_controller(ctx).store.list(limit=limit, offset=offset)
        return PagedResult.from_items(
            [_summary(m) for m in migrations],
            total=total,
            limit=limit,
            offset=offset,
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return PagedResult(
            success=False,
            error=OperationResult.fail("INTERNAL", f"Failed to list migrations: {exc}").error,
            elapsed_ms=timer.elapsed_ms,
        )


def _summary(migration: BatchMigration) -> MigrationSummary:
    return MigrationSummary(
        id=migration.id,
        state=migration.state.value,
        dry_run=migration.config.dry_run,
        items_total=migration.items_total,
        total_waves=migration.total_waves,
        batch_size=migration.config.batch_size,
        created_by=migration.created_by,
        created_at=to_iso8601(migration.created_at),
    )
