"""
Health operations.

``degraded`` means the database is reachable but dispatch is held after an
authorization failure.
"""

from __future__ import annotations

from ledgersync import __version__
from ledgersync.core.logging import get_logger
from ledgersync.ops.components import queue_manager
from ledgersync.ops.context import OperationContext
from ledgersync.ops.database import check_database_health
from ledgersync.ops.responses import HealthStatus
from ledgersync.ops.result import OperationResult, start_timer

logger = get_logger(__name__)


def get_health(ctx: OperationContext) -> OperationResult[HealthStatus]:
    """Aggregate health status across subsystems."""
    timer = start_timer()

    db_result = check_database_health(ctx)
    db_health = db_result.data
    warnings = list(db_result.warnings)

    checks: dict[str, str] = {}
    status = "healthy"

    if db_health and db_health.connected:
        checks["database"] = "ok"
        try:
            totals = queue_manager(ctx).metrics(None)
        except Exception as exc:
            logger.warning("queue_health_failed", error=str(exc))
            checks["dispatch"] = "fail"
            status = "unhealthy"
        else:
            if totals["held"]:
                checks["dispatch"] = "held"
                status = "degraded"
                warnings.append(f"Dispatch held: {totals['hold_reason']}")
            else:
                checks["dispatch"] = "ok"
    else:
        checks["database"] = "fail"
        status = "unhealthy"

    return OperationResult.ok(
        HealthStatus(
            status=status,
            database=db_health,
            checks=checks,
            version=__version__,
        ),
        warnings=warnings,
        elapsed_ms=timer.elapsed_ms,
    )
