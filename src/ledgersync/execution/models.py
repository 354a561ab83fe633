"""Sync job domain models.

Defines the data structures owned by the Sync Queue Manager:

- SyncJob: one pending push of one entity to the ledger
- JobState and its transition table
- EnqueueOptions: validated per-call enqueue configuration
- JobOutcome: what a worker reports back after calling the ledger

State graph::

    waiting  → active | cancelled
    active   → completed | delayed | failed | waiting (liveness requeue)
    delayed  → active | cancelled
    failed   → waiting (retryFailed)
    completed, cancelled → (terminal)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ledgersync.core.enums import Priority
from ledgersync.core.errors import InvalidConfigError, InvalidTransitionError
from ledgersync.core.timestamps import from_iso8601, to_iso8601


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"
    CANCELLED = "cancelled"

    @property
    def is_live(self) -> bool:
        return self in LIVE_STATES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


LIVE_STATES = frozenset({JobState.WAITING, JobState.ACTIVE, JobState.DELAYED})
TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED})

JOB_VALID_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.WAITING: frozenset({JobState.ACTIVE, JobState.CANCELLED}),
    JobState.ACTIVE: frozenset({
        JobState.COMPLETED,
        JobState.DELAYED,
        JobState.FAILED,
        JobState.WAITING,  # liveness requeue
    }),
    JobState.DELAYED: frozenset({JobState.ACTIVE, JobState.CANCELLED}),
    JobState.FAILED: frozenset({JobState.WAITING}),  # retryFailed
    JobState.COMPLETED: frozenset(),
    JobState.CANCELLED: frozenset(),
}


def validate_job_transition(current: JobState, target: JobState) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    if target not in JOB_VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError("job", current.value, target.value)


class SyncOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    RECONCILE = "reconcile"


class TriggerSource(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    EVENT = "event"


class QueueName(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    BATCH = "batch"


class JobEventType(str, Enum):
    CREATED = "created"
    COALESCED = "coalesced"
    PRIORITY_RAISED = "priority_raised"
    RESYNC_REQUESTED = "resync_requested"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    REQUEUED = "requeued"
    REARMED = "rearmed"
    CANCELLED = "cancelled"
    STALE_REPORT = "stale_report"


MAX_ATTEMPTS_LIMIT = 20


@dataclass(frozen=True)
class EnqueueOptions:
    """Validated options for :meth:`SyncQueueManager.enqueue`.

    String values are coerced to their enums, so API and CLI callers can
    pass raw request fields straight through.

    Raises:
        InvalidConfigError: on an unknown enum value or out-of-range attempts.
    """

    operation: SyncOperation = SyncOperation.UPDATE
    priority: Priority = Priority.MEDIUM
    trigger: TriggerSource = TriggerSource.MANUAL
    metadata: dict[str, Any] = field(default_factory=dict)
    entity_type: str = "submission"
    max_attempts: int | None = None
    queue_name: QueueName | None = None
    migration_id: str | None = None

    def __post_init__(self) -> None:
        for name, enum_type in (
            ("operation", SyncOperation),
            ("priority", Priority),
            ("trigger", TriggerSource),
        ):
            object.__setattr__(self, name, _coerce(name, getattr(self, name), enum_type))
        if self.queue_name is not None:
            object.__setattr__(self, "queue_name", _coerce("queue_name", self.queue_name, QueueName))
        if self.max_attempts is not None and not 1 <= self.max_attempts <= MAX_ATTEMPTS_LIMIT:
            raise InvalidConfigError("max_attempts", self.max_attempts)
        if not isinstance(self.metadata, dict):
            raise InvalidConfigError("metadata", self.metadata, "metadata must be a mapping")


def _coerce(name: str, value: Any, enum_type: type[Enum]) -> Any:
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError as exc:
        raise InvalidConfigError(name, value) from exc


@dataclass
class SyncJob:
    """A unit of work to push one logical entity to the ledger."""

    id: str
    entity_id: str
    operation: SyncOperation
    priority: Priority
    state: JobState
    queue_name: QueueName
    trigger: TriggerSource
    max_attempts: int
    created_at: datetime
    updated_at: datetime
    entity_type: str = "submission"
    attempts: int = 0
    stalled_count: int = 0
    migration_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    worker_id: str | None = None
    heartbeat_at: datetime | None = None
    resync_requested: bool = False
    last_attempt_at: datetime | None = None
    next_attempt_at: datetime | None = None
    finished_at: datetime | None = None
    last_error: str | None = None
    error_category: str | None = None
    external_ref: str | None = None
    result: dict[str, Any] | None = None

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "operation": self.operation.value,
            "priority": self.priority.value,
            "state": self.state.value,
            "queue_name": self.queue_name.value,
            "trigger": self.trigger.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "stalled_count": self.stalled_count,
            "migration_id": self.migration_id,
            "metadata": self.metadata,
            "worker_id": self.worker_id,
            "resync_requested": self.resync_requested,
            "created_at": to_iso8601(self.created_at),
            "updated_at": to_iso8601(self.updated_at),
            "last_attempt_at": to_iso8601(self.last_attempt_at),
            "next_attempt_at": to_iso8601(self.next_attempt_at),
            "finished_at": to_iso8601(self.finished_at),
            "last_error": self.last_error,
            "error_category": self.error_category,
            "external_ref": self.external_ref,
        }

    @classmethod
    def from_row(cls, row: Any) -> SyncJob:
        return cls(
            id=row["id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            operation=SyncOperation(row["operation"]),
            priority=Priority(row["priority"]),
            state=JobState(row["state"]),
            queue_name=QueueName(row["queue_name"]),
            trigger=TriggerSource(row["trigger"]),
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            stalled_count=row["stalled_count"],
            migration_id=row["migration_id"],
            metadata=json.loads(row["metadata"] or "{}"),
            worker_id=row["worker_id"],
            heartbeat_at=from_iso8601(row["heartbeat_at"]),
            resync_requested=bool(row["resync_requested"]),
            created_at=from_iso8601(row["created_at"]),
            updated_at=from_iso8601(row["updated_at"]),
            last_attempt_at=from_iso8601(row["last_attempt_at"]),
            next_attempt_at=from_iso8601(row["next_attempt_at"]),
            finished_at=from_iso8601(row["finished_at"]),
            last_error=row["last_error"],
            error_category=row["error_category"],
            external_ref=row["external_ref"],
            result=json.loads(row["result"]) if row["result"] else None,
        )


@dataclass(frozen=True)
class JobOutcome:
    """Result a worker reports for one ledger call.

    Use :meth:`succeeded` / :meth:`failed` rather than the constructor.
    """

    success: bool
    external_ref: str | None = None
    error: Exception | None = None
    result: dict[str, Any] | None = None
    duration_seconds: float | None = None

    @classmethod
    def succeeded(
        cls,
        external_ref: str | None = None,
        *,
        result: dict[str, Any] | None = None,
        duration_seconds: float | None = None,
    ) -> JobOutcome:
        return cls(True, external_ref=external_ref, result=result, duration_seconds=duration_seconds)

    @classmethod
    def failed(cls, error: Exception, *, duration_seconds: float | None = None) -> JobOutcome:
        return cls(False, error=error, duration_seconds=duration_seconds)


@dataclass(frozen=True)
class EnqueueResult:
    """Outcome of an enqueue call: the live job id and whether it was coalesced."""

    job_id: str
    created: bool
    job: SyncJob

    def to_dict(self) -> dict[str, Any]:
        return {"job_id": self.job_id, "created": self.created, "state": self.job.state.value}
