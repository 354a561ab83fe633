"""
Quarantine operations: the reviewer worklist.

Wraps :class:`~ledgersync.quarantine.store.QuarantineStore` and
:class:`~ledgersync.quarantine.reviewer.QuarantineReviewer`.  The reviewer
identity is ``ctx.actor``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from ledgersync.core.enums import Priority
from ledgersync.core.errors import InvalidConfigError, LedgerSyncError
from ledgersync.core.logging import get_logger
from ledgersync.core.timestamps import to_iso8601
from ledgersync.ops.components import quarantine_reviewer
from ledgersync.ops.context import OperationContext
from ledgersync.ops.requests import (
    BulkUpdateQuarantineRequest,
    GetQuarantineRequest,
    ListQuarantineRequest,
    ManualQuarantineRequest,
    RecoverQuarantineRequest,
    ReviewQuarantineRequest,
)
from ledgersync.ops.responses import BulkUpdateResult, QuarantineSummary, ReviewOutcome
from ledgersync.ops.result import OperationResult, PagedResult, fail_from_error, start_timer
from ledgersync.quarantine.models import (
    QuarantineFilter,
    QuarantineReason,
    QuarantineRecord,
    QuarantineStatus,
)

logger = get_logger(__name__)


def list_quarantine(
    ctx: OperationContext,
    request: ListQuarantineRequest,
) -> PagedResult[QuarantineSummary]:
    """Filtered worklist, highest priority first, oldest first within a tier."""
    timer = start_timer()
    try:
        filters = QuarantineFilter(
            entity_type=request.entity_type,
            statuses=tuple(_coerce("status", s, QuarantineStatus) for s in request.statuses),
            priorities=tuple(_coerce("priority", p, Priority) for p in request.priorities),
            reason=_coerce("reason", request.reason, QuarantineReason) if request.reason else None,
            created_from=request.created_from,
            created_to=request.created_to,
        )
        records, total = quarantine_reviewer(ctx).store.list(
            filters, limit=request.limit, offset=request.offset
        )
        return PagedResult.from_items(
            [_summary(r) for r in records],
            total=total,
            limit=request.limit,
            offset=request.offset,
            elapsed_ms=timer.elapsed_ms,
        )
    except LedgerSyncError as exc:
        failed = fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
        return PagedResult(success=False, error=failed.error, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return PagedResult(
            success=False,
            error=OperationResult.fail("INTERNAL", f"Failed to list quarantine: {exc}").error,
            elapsed_ms=timer.elapsed_ms,
        )


def get_quarantine_record(
    ctx: OperationContext,
    request: GetQuarantineRequest,
) -> OperationResult[dict[str, Any]]:
    """One record with its entity snapshot and audit trail."""
    timer = start_timer()

    if not request.record_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "record_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        store = quarantine_reviewer(ctx).store
        record = store.require(request.record_id)
        return OperationResult.ok(
            {"record": record.to_dict(), "audit": store.audit(record.id)},
            elapsed_ms=timer.elapsed_ms,
        )
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to get quarantine record: {exc}", elapsed_ms=timer.elapsed_ms
        )


def get_quarantine_stats(ctx: OperationContext) -> OperationResult[dict[str, Any]]:
    timer = start_timer()
    try:
        return OperationResult.ok(quarantine_reviewer(ctx).store.stats(), elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to read quarantine stats: {exc}", elapsed_ms=timer.elapsed_ms
        )


def review_quarantine(
    ctx: OperationContext,
    request: ReviewQuarantineRequest,
) -> OperationResult[ReviewOutcome]:
    """Resolve (optionally with corrected data) or reject one record.

    A resolved record's entity is re-enqueued with the record's priority.
    Reviewing a closed record fails with ``ALREADY_RESOLVED``.
    """
    timer = start_timer()

    if not request.record_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "record_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        result = quarantine_reviewer(ctx).review(
            request.record_id,
            ctx.actor,
            request.decision,
            notes=request.notes,
            corrected_data=request.corrected_data,
        )
        return OperationResult.ok(
            ReviewOutcome(record=_summary(result.record), job_id=result.job_id),
            elapsed_ms=timer.elapsed_ms,
        )
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to review quarantine record: {exc}", elapsed_ms=timer.elapsed_ms
        )


def bulk_update_quarantine(
    ctx: OperationContext,
    request: BulkUpdateQuarantineRequest,
) -> OperationResult[BulkUpdateResult]:
    """Apply one status to many records; each record succeeds or fails on its own."""
    timer = start_timer()

    if not request.record_ids:
        return OperationResult.fail(
            "VALIDATION_FAILED", "record_ids must not be empty", elapsed_ms=timer.elapsed_ms
        )

    try:
        results = quarantine_reviewer(ctx).bulk_update(
            list(request.record_ids),
            {"status": request.status, "notes": request.notes},
            ctx.actor,
        )
        succeeded = sum(1 for r in results if r.success)
        return OperationResult.ok(
            BulkUpdateResult(
                succeeded=succeeded,
                failed=len(results) - succeeded,
                results=[r.to_dict() for r in results],
            ),
            elapsed_ms=timer.elapsed_ms,
        )
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to bulk update quarantine: {exc}", elapsed_ms=timer.elapsed_ms
        )


def recover_quarantine(
    ctx: OperationContext,
    request: RecoverQuarantineRequest,
) -> OperationResult[dict[str, Any]]:
    """Close open records whose cause has cleared and re-enqueue their entities."""
    timer = start_timer()
    try:
        report = quarantine_reviewer(ctx).recover(
            dry_run=request.dry_run or ctx.dry_run,
            max_records=request.max_records,
            priority_only=request.priority_only,
            entity_type=request.entity_type,
        )
        return OperationResult.ok(report.to_dict(), elapsed_ms=timer.elapsed_ms)
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to recover quarantine: {exc}", elapsed_ms=timer.elapsed_ms
        )


def quarantine_entity(
    ctx: OperationContext,
    request: ManualQuarantineRequest,
) -> OperationResult[QuarantineSummary]:
    """Hold an entity back from sync by hand (``reason=manual``)."""
    timer = start_timer()
    try:
        record = quarantine_reviewer(ctx).quarantine_manually(
            request.entity_type,
            request.entity_id,
            request.detail,
            ctx.actor,
        )
        return OperationResult.ok(_summary(record), elapsed_ms=timer.elapsed_ms)
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to quarantine entity: {exc}", elapsed_ms=timer.elapsed_ms
        )


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _coerce(name: str, value: Any, enum_type: type[Enum]) -> Any:
    try:
        return enum_type(value)
    except ValueError as exc:
        raise InvalidConfigError(name, value) from exc


def _summary(record: QuarantineRecord) -> QuarantineSummary:
    return QuarantineSummary(
        id=record.id,
        entity_type=record.entity_type,
        entity_id=record.entity_id,
        status=record.status.value,
        priority=record.priority.value,
        reason=record.reason.value,
        error_detail=record.error_detail,
        occurrence_count=record.occurrence_count,
        job_id=record.job_id,
        corrected_data=record.corrected_data,
        created_at=to_iso8601(record.created_at),
        updated_at=to_iso8601(record.updated_at),
        resolved_at=to_iso8601(record.resolved_at),
        resolved_by=record.resolved_by,
        resolution_notes=record.resolution_notes,
    )
