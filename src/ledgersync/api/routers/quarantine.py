"""
Quarantine router: the reviewer worklist.

Endpoints:
    GET   /quarantine            Filtered worklist (priority desc, oldest first)
    GET   /quarantine/stats      Counts by status, priority, reason; resolution time
    POST  /quarantine            Quarantine an entity by hand
    POST  /quarantine/recover    Close records whose cause has cleared
    PATCH /quarantine/bulk       Apply one status to many records
    GET   /quarantine/{id}       One record with its audit trail
    PATCH /quarantine/{id}       Review: resolve (optionally corrected) or reject
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Path, Query, Request

from ledgersync.api.deps import OpContext
from ledgersync.api.schemas.common import PagedResponse, PageMeta, SuccessResponse
from ledgersync.api.schemas.domains import (
    BulkUpdateBody,
    BulkUpdateSchema,
    ManualQuarantineBody,
    QuarantineRecordSchema,
    RecoverBody,
    ReviewBody,
    ReviewOutcomeSchema,
)
from ledgersync.api.utils import _dc, _handle_error

router = APIRouter(prefix="/quarantine")


@router.get("", response_model=PagedResponse[QuarantineRecordSchema])
def list_quarantine(
    ctx: OpContext,
    request: Request,
    entity_type: str | None = Query(None),
    status: list[str] = Query([], description="Repeatable status filter"),
    priority: list[str] = Query([], description="Repeatable priority filter"),
    reason: str | None = Query(None),
    created_from: datetime | None = Query(None),
    created_to: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Worklist page, highest priority first and oldest first within a tier.

    Example:
        GET /api/v1/quarantine?status=pending&priority=high&limit=10
    """
    from ledgersync.ops.quarantine import list_quarantine as _list
    from ledgersync.ops.requests import ListQuarantineRequest

    result = _list(
        ctx,
        ListQuarantineRequest(
            entity_type=entity_type,
            statuses=status,
            priorities=priority,
            reason=reason,
            created_from=created_from,
            created_to=created_to,
            limit=limit,
            offset=offset,
        ),
    )
    if not result.success:
        return _handle_error(result, str(request.url))
    return PagedResponse(
        data=[QuarantineRecordSchema(**_dc(r)) for r in (result.data or [])],
        page=PageMeta(total=result.total, limit=result.limit, offset=result.offset, has_more=result.has_more),
        elapsed_ms=result.elapsed_ms,
    )


@router.get("/stats", response_model=SuccessResponse[dict[str, Any]])
def quarantine_stats(ctx: OpContext, request: Request):
    from ledgersync.ops.quarantine import get_quarantine_stats

    result = get_quarantine_stats(ctx)
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


@router.post("", status_code=201, response_model=SuccessResponse[QuarantineRecordSchema])
def quarantine_entity(ctx: OpContext, body: ManualQuarantineBody, request: Request):
    """Hold an entity back from automatic sync (``reason=manual``).

    If the entity already has an open record, that record's occurrence
    count is incremented instead.
    """
    from ledgersync.ops.quarantine import quarantine_entity as _quarantine
    from ledgersync.ops.requests import ManualQuarantineRequest

    result = _quarantine(
        ctx,
        ManualQuarantineRequest(entity_type=body.entity_type, entity_id=body.entity_id, detail=body.detail),
    )
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(data=QuarantineRecordSchema(**_dc(result.data)), elapsed_ms=result.elapsed_ms)


@router.post("/recover", response_model=SuccessResponse[dict[str, Any]])
def recover_quarantine(ctx: OpContext, body: RecoverBody, request: Request):
    """Resolve and re-enqueue records that no longer need a human."""
    from ledgersync.ops.quarantine import recover_quarantine as _recover
    from ledgersync.ops.requests import RecoverQuarantineRequest

    result = _recover(
        ctx,
        RecoverQuarantineRequest(
            dry_run=body.dry_run,
            max_records=body.max_records,
            priority_only=body.priority_only,
            entity_type=body.entity_type,
        ),
    )
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


# Registered before /{record_id} so "bulk" is never taken for a record id.
@router.patch("/bulk", response_model=SuccessResponse[BulkUpdateSchema])
def bulk_update(ctx: OpContext, body: BulkUpdateBody, request: Request):
    """Apply one status to many records.

    Each record succeeds or fails on its own; the response lists both.
    """
    from ledgersync.ops.quarantine import bulk_update_quarantine
    from ledgersync.ops.requests import BulkUpdateQuarantineRequest

    result = bulk_update_quarantine(
        ctx,
        BulkUpdateQuarantineRequest(record_ids=body.record_ids, status=body.status, notes=body.notes),
    )
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(data=BulkUpdateSchema(**_dc(result.data)), elapsed_ms=result.elapsed_ms)


@router.get("/{record_id}", response_model=SuccessResponse[dict[str, Any]])
def get_record(ctx: OpContext, request: Request, record_id: str = Path(..., description="Quarantine record ID")):
    from ledgersync.ops.quarantine import get_quarantine_record
    from ledgersync.ops.requests import GetQuarantineRequest

    result = get_quarantine_record(ctx, GetQuarantineRequest(record_id=record_id))
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


@router.patch("/{record_id}", response_model=SuccessResponse[ReviewOutcomeSchema])
def review_record(
    ctx: OpContext,
    body: ReviewBody,
    request: Request,
    record_id: str = Path(..., description="Quarantine record ID"),
):
    """Resolve or reject a record.

    ``resolved`` merges ``correctedData`` into the entity (when given) and
    enqueues a fresh sync job; ``rejected`` closes the record.

    Raises:
        400 VALIDATION_FAILED: corrected data failed validation (record stays in_review).
        404 NOT_FOUND: unknown record.
        409 ALREADY_RESOLVED: the record is already closed.

    Example:
        PATCH /api/v1/quarantine/01J...
        {"status": "resolved", "correctedData": {"amount": 42}}
    """
    from ledgersync.ops.quarantine import review_quarantine
    from ledgersync.ops.requests import ReviewQuarantineRequest

    result = review_quarantine(
        ctx,
        ReviewQuarantineRequest(
            record_id=record_id,
            decision=body.status,
            notes=body.notes,
            corrected_data=body.corrected_data,
        ),
    )
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(data=ReviewOutcomeSchema(**_dc(result.data)), elapsed_ms=result.elapsed_ms)
