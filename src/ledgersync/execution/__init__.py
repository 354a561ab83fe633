"""Sync job execution: models, store, classifier, queue manager, worker."""

from ledgersync.core.enums import Priority
from ledgersync.execution.classifier import Classification, FailureKind, classify
from ledgersync.execution.job_store import JobStore
from ledgersync.execution.ledger_client import (
    HttpLedgerClient,
    LedgerClient,
    LedgerRequest,
    LedgerResponse,
    StubLedgerClient,
    idempotency_key,
)
from ledgersync.execution.models import (
    EnqueueOptions,
    EnqueueResult,
    JobOutcome,
    JobState,
    QueueName,
    SyncJob,
    SyncOperation,
    TriggerSource,
)
from ledgersync.execution.queue import SyncQueueManager
from ledgersync.execution.retry import QUEUE_POLICIES, ExponentialBackoff, select_queue
from ledgersync.execution.worker import SyncWorker, WorkerStats

__all__ = [
    "Classification",
    "EnqueueOptions",
    "EnqueueResult",
    "ExponentialBackoff",
    "FailureKind",
    "HttpLedgerClient",
    "JobOutcome",
    "JobState",
    "JobStore",
    "LedgerClient",
    "LedgerRequest",
    "LedgerResponse",
    "Priority",
    "QUEUE_POLICIES",
    "QueueName",
    "StubLedgerClient",
    "SyncJob",
    "SyncOperation",
    "SyncQueueManager",
    "SyncWorker",
    "TriggerSource",
    "WorkerStats",
    "classify",
    "idempotency_key",
    "select_queue",
]
