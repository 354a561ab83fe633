"""
Database operations.

Thin wrappers around ``ledgersync.core.schema`` for table creation and
health checks.
"""

from __future__ import annotations

from ledgersync.core.logging import get_logger
from ledgersync.core.schema import CORE_TABLES, create_core_tables, table_counts
from ledgersync.ops.context import OperationContext
from ledgersync.ops.requests import DatabaseInitRequest
from ledgersync.ops.responses import DatabaseHealth, DatabaseInitResult
from ledgersync.ops.result import OperationResult, start_timer

logger = get_logger(__name__)


def initialize_database(
    ctx: OperationContext,
    request: DatabaseInitRequest | None = None,
) -> OperationResult[DatabaseInitResult]:
    """Create all pipeline tables (idempotent)."""
    timer = start_timer()
    table_names = sorted(CORE_TABLES.values())

    if ctx.dry_run:
        return OperationResult.ok(
            DatabaseInitResult(tables_created=table_names, dry_run=True),
            elapsed_ms=timer.elapsed_ms,
        )

    try:
        create_core_tables(ctx.conn)
        logger.info("database_initialized", tables=len(table_names))
        return OperationResult.ok(
            DatabaseInitResult(tables_created=table_names),
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL",
            f"Failed to create tables: {exc}",
            elapsed_ms=timer.elapsed_ms,
        )


def check_database_health(ctx: OperationContext) -> OperationResult[DatabaseHealth]:
    """Connectivity check plus row counts per pipeline table."""
    timer = start_timer()
    try:
        counts = table_counts(ctx.conn)
        return OperationResult.ok(
            DatabaseHealth(connected=True, table_counts=counts),
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.warning("database_health_failed", error=str(exc))
        return OperationResult.ok(
            DatabaseHealth(connected=False, error=str(exc)),
            warnings=[f"Database check failed: {exc}"],
            elapsed_ms=timer.elapsed_ms,
        )
