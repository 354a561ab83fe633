"""
Operations layer: typed request/response functions over the pipeline.

- All functions accept ``OperationContext`` as first argument
- All functions return ``OperationResult[T]`` (never raise)
- All functions are transport-agnostic (no HTTP, no CLI knowledge)

Usage::

    from ledgersync.ops import OperationContext
    from ledgersync.ops.sync import enqueue_sync
    from ledgersync.ops.requests import EnqueueSyncRequest

    ctx = OperationContext(conn=conn, user="alice")
    result = enqueue_sync(ctx, EnqueueSyncRequest(entity_id="TS-100"))
    assert result.success
"""

from ledgersync.ops.context import OperationContext
from ledgersync.ops.result import OperationError, OperationResult, PagedResult

__all__ = [
    "OperationContext",
    "OperationError",
    "OperationResult",
    "PagedResult",
]
