"""
Batch migration domain models.

A BatchMigration replays a bounded, frozen dataset of approved submissions
through the Sync Queue Manager in waves of ``batch_size`` items.

Architecture:
    ::

        start(config)
          │  dataset frozen into sync_migration_items (seq order)
          ▼
        pending ──► running ──► completed
                     │  ▲   └──► failed     (wave failure ratio / stalled wave)
                     ▼  │
                    paused
        {pending, running, paused} ──► cancelled (operator)

    Pause and cancel only stop the generation of *new* waves; jobs already
    dispatched run to completion.

Examples:
    >>> config = BatchMigrationConfig(batch_size=50)
    >>> config.waves_for(120)
    3
    >>> MigrationState.PAUSED.is_open
    True
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any

from ledgersync.core.errors import InvalidConfigError, InvalidTransitionError
from ledgersync.core.timestamps import to_iso8601

MAX_BATCH_SIZE = 500
MAX_RETRIES_LIMIT = 10
ERROR_HISTORY_LIMIT = 20


class MigrationState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_open(self) -> bool:
        return self in OPEN_MIGRATION_STATES

    @property
    def is_terminal(self) -> bool:
        return not self.is_open


OPEN_MIGRATION_STATES = frozenset({
    MigrationState.PENDING,
    MigrationState.RUNNING,
    MigrationState.PAUSED,
})

MIGRATION_VALID_TRANSITIONS: dict[MigrationState, frozenset[MigrationState]] = {
    MigrationState.PENDING: frozenset({
        MigrationState.RUNNING,
        MigrationState.CANCELLED,
        MigrationState.FAILED,
    }),
    MigrationState.RUNNING: frozenset({
        MigrationState.PAUSED,
        MigrationState.CANCELLED,
        MigrationState.COMPLETED,
        MigrationState.FAILED,
    }),
    MigrationState.PAUSED: frozenset({
        MigrationState.RUNNING,
        MigrationState.CANCELLED,
        MigrationState.FAILED,
    }),
    MigrationState.CANCELLED: frozenset(),
    MigrationState.COMPLETED: frozenset(),
    MigrationState.FAILED: frozenset(),
}


def validate_migration_transition(current: MigrationState, target: MigrationState) -> None:
    if target not in MIGRATION_VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError("migration", current.value, target.value)


class MigrationItemState(str, Enum):
    PENDING = "pending"
    DISPATCHED = "dispatched"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class MigrationAction(str, Enum):
    """Operator actions accepted by ``migration-control``."""

    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"


class StepResult(str, Enum):
    """What one controller step did."""

    WAVE_COMPLETED = "wave_completed"
    PAUSED = "paused"
    FINISHED = "finished"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class BatchMigrationConfig:
    """Validated configuration for one migration run.

    Attributes:
        batch_size: Items per wave (1-500).
        delay_between_batches: Seconds slept between waves.
        max_retries: ``max_attempts`` given to every generated job (1-10).
        dry_run: Validate and score only; never enqueue.
        date_from / date_to: Optional bounds on ``period_start``.
        include_rejected: Also replay rejected submissions.

    Raises:
        InvalidConfigError: on any out-of-range value.
    """

    batch_size: int = 50
    delay_between_batches: float = 0.0
    max_retries: int = 3
    dry_run: bool = False
    date_from: date | None = None
    date_to: date | None = None
    include_rejected: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.batch_size, int) or not 1 <= self.batch_size <= MAX_BATCH_SIZE:
            raise InvalidConfigError(
                "batch_size", self.batch_size, f"batch_size must be between 1 and {MAX_BATCH_SIZE}"
            )
        if self.delay_between_batches < 0:
            raise InvalidConfigError(
                "delay_between_batches", self.delay_between_batches,
                "delay_between_batches must not be negative",
            )
        if not isinstance(self.max_retries, int) or not 1 <= self.max_retries <= MAX_RETRIES_LIMIT:
            raise InvalidConfigError(
                "max_retries", self.max_retries, f"max_retries must be between 1 and {MAX_RETRIES_LIMIT}"
            )
        for name in ("date_from", "date_to"):
            value = getattr(self, name)
            if isinstance(value, str):
                try:
                    object.__setattr__(self, name, date.fromisoformat(value))
                except ValueError as exc:
                    raise InvalidConfigError(name, value, f"{name} must be an ISO date") from exc
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise InvalidConfigError(
                "date_range", f"{self.date_from}..{self.date_to}", "date_from must not be after date_to"
            )

    def waves_for(self, item_count: int) -> int:
        return math.ceil(item_count / self.batch_size) if item_count else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_size": self.batch_size,
            "delay_between_batches": self.delay_between_batches,
            "max_retries": self.max_retries,
            "dry_run": self.dry_run,
            "date_from": self.date_from.isoformat() if self.date_from else None,
            "date_to": self.date_to.isoformat() if self.date_to else None,
            "include_rejected": self.include_rejected,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BatchMigrationConfig:
        return cls(
            batch_size=data.get("batch_size", 50),
            delay_between_batches=data.get("delay_between_batches", 0.0),
            max_retries=data.get("max_retries", 3),
            dry_run=bool(data.get("dry_run", False)),
            date_from=data.get("date_from"),
            date_to=data.get("date_to"),
            include_rejected=bool(data.get("include_rejected", False)),
        )


@dataclass
class MigrationItem:
    migration_id: str
    seq: int
    entity_id: str
    state: MigrationItemState
    wave: int | None = None
    job_id: str | None = None
    error: str | None = None


@dataclass
class BatchMigration:
    """A supervised replay run and its aggregate progress."""

    id: str
    state: MigrationState
    config: BatchMigrationConfig
    created_at: datetime
    updated_at: datetime
    items_total: int = 0
    items_processed: int = 0
    items_succeeded: int = 0
    items_failed: int = 0
    current_wave: int = 0
    total_waves: int = 0
    wave_seconds_total: float = 0.0
    errors: list[str] = field(default_factory=list)
    failure_reason: str | None = None
    created_by: str | None = None
    runner_id: str | None = None
    heartbeat_at: datetime | None = None
    started_at: datetime | None = None
    last_wave_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def percent_complete(self) -> float:
        if self.items_total == 0:
            return 100.0 if self.state is MigrationState.COMPLETED else 0.0
        return round(self.items_processed / self.items_total * 100, 2)

    @property
    def remaining_waves(self) -> int:
        return max(0, self.total_waves - self.current_wave)

    def estimated_seconds_remaining(self) -> float | None:
        """Average completed-wave time multiplied by the waves left."""
        if self.state.is_terminal:
            return 0.0
        if self.current_wave == 0:
            return None
        average = self.wave_seconds_total / self.current_wave
        return round(average * self.remaining_waves, 3)

    def progress(self, now: datetime) -> dict[str, Any]:
        """Read-only progress snapshot."""
        remaining = self.estimated_seconds_remaining()
        eta = None
        if remaining is not None and self.state.is_open:
            eta = to_iso8601(now + timedelta(seconds=remaining))
        return {
            "migration_id": self.id,
            "state": self.state.value,
            "dry_run": self.config.dry_run,
            "items_total": self.items_total,
            "items_processed": self.items_processed,
            "items_succeeded": self.items_succeeded,
            "items_failed": self.items_failed,
            "percent_complete": self.percent_complete,
            "current_wave": self.current_wave,
            "total_waves": self.total_waves,
            "started_at": to_iso8601(self.started_at),
            "last_wave_at": to_iso8601(self.last_wave_at),
            "completed_at": to_iso8601(self.completed_at),
            "estimated_seconds_remaining": remaining,
            "estimated_completion_at": eta,
            "errors": self.errors[-ERROR_HISTORY_LIMIT:],
            "failure_reason": self.failure_reason,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "config": self.config.to_dict(),
            "items_total": self.items_total,
            "items_processed": self.items_processed,
            "items_succeeded": self.items_succeeded,
            "items_failed": self.items_failed,
            "current_wave": self.current_wave,
            "total_waves": self.total_waves,
            "failure_reason": self.failure_reason,
            "created_by": self.created_by,
            "runner_id": self.runner_id,
            "created_at": to_iso8601(self.created_at),
            "updated_at": to_iso8601(self.updated_at),
            "started_at": to_iso8601(self.started_at),
            "last_wave_at": to_iso8601(self.last_wave_at),
            "completed_at": to_iso8601(self.completed_at),
        }
