"""
Sync router: enqueue single-entity and date-range syncs.

Endpoints:
    POST /sync/enqueue   Enqueue one entity (coalesces into a live job)
    POST /sync/batch     Enqueue a coordinating batch-sync job
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from ledgersync.api.deps import OpContext
from ledgersync.api.schemas.common import SuccessResponse
from ledgersync.api.schemas.domains import BatchSyncBody, EnqueueSyncBody, EnqueueSyncSchema
from ledgersync.api.utils import _dc, _handle_error

router = APIRouter(prefix="/sync")


@router.post("/enqueue", status_code=202, response_model=SuccessResponse[EnqueueSyncSchema])
def enqueue_sync(ctx: OpContext, body: EnqueueSyncBody, request: Request):
    """Enqueue a sync for one entity.

    If the entity already has a waiting, active or delayed job, nothing new
    is created: the response carries that job's id with ``created=false``.

    Example:
        POST /api/v1/sync/enqueue
        {"entityId": "TS-100", "priority": "high"}

        Response:
        {"data": {"job_id": "01J...", "created": true, "state": "waiting",
                  "queue_name": "high", "priority": "high"}}
    """
    from ledgersync.ops.requests import EnqueueSyncRequest
    from ledgersync.ops.sync import enqueue_sync as _enqueue

    result = _enqueue(
        ctx,
        EnqueueSyncRequest(
            entity_id=body.entity_id,
            operation=body.operation,
            priority=body.priority,
            trigger=body.trigger,
            entity_type=body.entity_type,
            metadata=body.metadata,
        ),
    )
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(
        data=EnqueueSyncSchema(**_dc(result.data)),
        elapsed_ms=result.elapsed_ms,
        warnings=result.warnings,
    )


@router.post("/batch", status_code=202, response_model=SuccessResponse[EnqueueSyncSchema])
def enqueue_batch_sync(ctx: OpContext, body: BatchSyncBody, request: Request):
    """Enqueue a batch sync over approved submissions in a date range.

    A worker expands the coordinating job into per-submission ``update``
    jobs; entities already in flight are coalesced.
    """
    from ledgersync.ops.requests import EnqueueBatchSyncRequest
    from ledgersync.ops.sync import enqueue_batch_sync as _batch

    result = _batch(
        ctx,
        EnqueueBatchSyncRequest(
            date_from=body.from_date,
            date_to=body.to_date,
            entity_ids=body.entity_ids,
            force=body.force,
        ),
    )
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(
        data=EnqueueSyncSchema(**_dc(result.data)),
        elapsed_ms=result.elapsed_ms,
        warnings=result.warnings,
    )
