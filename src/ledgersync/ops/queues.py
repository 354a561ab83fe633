"""
Queue operations: status and control of the named queues.

``queue-control`` actions: ``pause``, ``resume``, ``clearFailed``,
``retryFailed`` (snake_case spellings are accepted too).
"""

from __future__ import annotations

from typing import Any

from ledgersync.core.errors import LedgerSyncError
from ledgersync.core.logging import get_logger
from ledgersync.execution.queue import coerce_queue
from ledgersync.ops.components import queue_manager
from ledgersync.ops.context import OperationContext
from ledgersync.ops.requests import QueueControlRequest, QueueStatusRequest
from ledgersync.ops.responses import QueueControlResult
from ledgersync.ops.result import OperationResult, fail_from_error, start_timer

logger = get_logger(__name__)

_ACTIONS = {
    "pause": "pause",
    "resume": "resume",
    "clearfailed": "clear_failed",
    "clear_failed": "clear_failed",
    "retryfailed": "retry_failed",
    "retry_failed": "retry_failed",
    "requeuestalled": "requeue_stalled",
    "requeue_stalled": "requeue_stalled",
}

# Actions that need a specific queue.
_PER_QUEUE = frozenset({"pause", "resume"})


def get_queue_status(
    ctx: OperationContext,
    request: QueueStatusRequest | None = None,
) -> OperationResult[dict[str, Any]]:
    """Per-state counts, error rate, latency, and flags for one or all queues."""
    timer = start_timer()
    request = request or QueueStatusRequest()

    try:
        manager = queue_manager(ctx)
        if request.queue_name:
            data = manager.metrics(coerce_queue(request.queue_name))
        else:
            data = manager.status()
        return OperationResult.ok(data, elapsed_ms=timer.elapsed_ms)
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to read queue status: {exc}", elapsed_ms=timer.elapsed_ms
        )


def control_queue(
    ctx: OperationContext,
    request: QueueControlRequest,
) -> OperationResult[QueueControlResult]:
    """Pause, resume, retry or clear failed jobs, or requeue stalled jobs."""
    timer = start_timer()

    action = _ACTIONS.get(request.action.replace("-", "_").lower())
    if action is None:
        return OperationResult.fail(
            "VALIDATION_FAILED",
            f"Unknown queue action: {request.action!r}",
            details={"allowed": ["pause", "resume", "clearFailed", "retryFailed", "requeueStalled"]},
            elapsed_ms=timer.elapsed_ms,
        )
    if action in _PER_QUEUE and not request.queue_name:
        return OperationResult.fail(
            "VALIDATION_FAILED", f"{request.action} requires a queue name", elapsed_ms=timer.elapsed_ms
        )

    try:
        manager = queue_manager(ctx)
        queue = coerce_queue(request.queue_name) if request.queue_name else None
        if ctx.dry_run:
            return OperationResult.ok(
                QueueControlResult(queue_name=request.queue_name, action=action),
                elapsed_ms=timer.elapsed_ms,
            )

        affected = 0
        paused = None
        if action == "pause":
            paused = manager.pause(queue, actor=ctx.actor)["paused"]
        elif action == "resume":
            paused = manager.resume(queue, actor=ctx.actor)["paused"]
        elif action == "retry_failed":
            affected = manager.retry_failed(queue, actor=ctx.actor)
        elif action == "clear_failed":
            affected = manager.clear_failed(queue, actor=ctx.actor)
        else:
            swept = manager.requeue_stalled()
            affected = swept["requeued"] + swept["failed"]

        return OperationResult.ok(
            QueueControlResult(
                queue_name=queue.value if queue else None,
                action=action,
                affected=affected,
                paused=paused,
            ),
            elapsed_ms=timer.elapsed_ms,
        )
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to {request.action} queue: {exc}", elapsed_ms=timer.elapsed_ms
        )
