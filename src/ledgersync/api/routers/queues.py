"""
Queues router: status and control of the named queues.

Endpoints:
    GET  /queues                 Metrics for every queue plus totals
    GET  /queues/{name}          Metrics for one queue
    POST /queues/{name}/control  pause | resume | clearFailed | retryFailed | requeueStalled
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Path, Request

from ledgersync.api.deps import OpContext
from ledgersync.api.schemas.common import SuccessResponse
from ledgersync.api.schemas.domains import QueueControlBody, QueueControlSchema
from ledgersync.api.utils import _dc, _handle_error

router = APIRouter(prefix="/queues")


@router.get("", response_model=SuccessResponse[dict[str, Any]])
def queue_status(ctx: OpContext, request: Request):
    """Per-state counts, error rate, average latency, paused and held flags."""
    from ledgersync.ops.queues import get_queue_status
    from ledgersync.ops.requests import QueueStatusRequest

    result = get_queue_status(ctx, QueueStatusRequest())
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


@router.get("/{name}", response_model=SuccessResponse[dict[str, Any]])
def queue_detail(ctx: OpContext, request: Request, name: str = Path(..., description="Queue name")):
    from ledgersync.ops.queues import get_queue_status
    from ledgersync.ops.requests import QueueStatusRequest

    result = get_queue_status(ctx, QueueStatusRequest(queue_name=name))
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


@router.post("/{name}/control", response_model=SuccessResponse[QueueControlSchema])
def control_queue(
    ctx: OpContext,
    body: QueueControlBody,
    request: Request,
    name: str = Path(..., description="Queue name"),
):
    """Pause or resume dispatch, or retry/clear the queue's failed jobs.

    Pause stops new dispatch only; active jobs run to completion.
    Resume also lifts an authorization hold on the queue.
    """
    from ledgersync.ops.queues import control_queue as _control
    from ledgersync.ops.requests import QueueControlRequest

    result = _control(ctx, QueueControlRequest(queue_name=name, action=body.action))
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(
        data=QueueControlSchema(**_dc(result.data)),
        elapsed_ms=result.elapsed_ms,
        warnings=result.warnings,
    )
