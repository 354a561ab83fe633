"""
Batch Migration Controller: supervised, resumable historical replay.

The controller freezes the dataset at start and then feeds it to the Sync
Queue Manager one wave at a time.  Everything it knows lives in the store,
so a runner that dies mid-wave is replaced by another that picks up at the
first non-terminal item.

Architecture:
    ::

        start(config) ──► pending ──► running      (dataset frozen, nothing enqueued yet)

        run(id)  ─ claims the runner lease, then repeats step() until terminal
          │
          ▼
        step(id)
          ├── state paused / cancelled / terminal?  ──► report, generate nothing
          ├── leftover dispatched items (crash)?    ──► await them as the current wave
          ├── no pending items                      ──► completed
          └── next batch_size pending items
                ├── dry run: validate each item, count, never enqueue
                └── live: enqueue on the batch queue, poll job states
                      ├── all terminal   ──► count outcomes, record wave time
                      └── wave timeout   ──► failed "wave <n> stalled"
                wave failure ratio > threshold ──► failed

Guardrails:
    - Pause and cancel stop *new* waves only; dispatched jobs finish.
    - Only this controller creates jobs tagged with a migration id.
    - Per-item failures never raise to the caller; they land in item and
      job state and show up in :meth:`progress`.
"""

from __future__ import annotations

import threading
import time
import uuid
from datetime import date, datetime, timedelta
from typing import Any

from ledgersync.core.enums import Priority
from ledgersync.core.errors import (
    ConflictError,
    InvalidConfigError,
    InvalidTransitionError,
    LedgerSyncError,
)
from ledgersync.core.logging import LogContext, get_logger
from ledgersync.core.protocols import Clock, Sleeper
from ledgersync.core.settings import LedgerSyncSettings
from ledgersync.core.timestamps import format_duration, generate_ulid, utc_now
from ledgersync.domain.submissions import EntityRepository
from ledgersync.domain.validation import ValidationIssue, validate_submission
from ledgersync.execution.models import (
    EnqueueOptions,
    JobState,
    QueueName,
    SyncOperation,
    TriggerSource,
)
from ledgersync.execution.queue import SyncQueueManager
from ledgersync.migration.models import (
    BatchMigration,
    BatchMigrationConfig,
    MigrationItem,
    MigrationItemState,
    MigrationState,
    StepResult,
)
from ledgersync.migration.store import MigrationStore
from ledgersync.quarantine.models import EntityType

logger = get_logger(__name__)

# Conservative processing estimate for one wave, used by analyze().
ESTIMATED_WAVE_SECONDS = 120.0


class BatchMigrationController:
    """Owns BatchMigration state; the only producer of migration-tagged jobs.

    Args:
        queue: Queue manager the waves are enqueued on.
        store: Migration store (defaults to one on the queue's connection).
        repository: Source of the dataset; defaults to ``queue.repository``.
        settings: Failure threshold, wave timeout, poll interval.
        clock: Time source.
        sleep: Blocking wait used between polls and waves.
        runner_id: Identity used for the runner lease.
    """

    def __init__(
        self,
        queue: SyncQueueManager,
        *,
        store: MigrationStore | None = None,
        repository: EntityRepository | None = None,
        settings: LedgerSyncSettings | None = None,
        clock: Clock = utc_now,
        sleep: Sleeper = time.sleep,
        runner_id: str | None = None,
    ):
        settings = settings or LedgerSyncSettings()
        repository = repository or queue.repository
        if repository is None:
            raise InvalidConfigError("repository", None, "migrations need a submission repository")
        self._queue = queue
        self._store = store or MigrationStore(queue.jobs.conn, clock=clock)
        self._repository = repository
        self._clock = clock
        self._sleep = sleep
        self._runner_id = runner_id or f"runner-{uuid.uuid4().hex[:8]}"
        self._failure_threshold = settings.migration_failure_threshold
        self._wave_timeout = timedelta(seconds=settings.migration_wave_timeout_seconds)
        self._poll_interval = settings.migration_poll_interval_seconds
        self._lease_timeout = timedelta(seconds=settings.liveness_timeout_seconds)
        self._stop = threading.Event()

    @property
    def store(self) -> MigrationStore:
        return self._store

    @property
    def runner_id(self) -> str:
        return self._runner_id

    # ------------------------------------------------------------------ #
    # Read-only reports
    # ------------------------------------------------------------------ #

    def analyze(
        self,
        *,
        date_from: date | None = None,
        date_to: date | None = None,
        batch_size: int = 50,
        delay_between_batches: float = 0.0,
    ) -> dict[str, Any]:
        """Pre-flight estimate of the work a migration would do.  No writes."""
        config = BatchMigrationConfig(
            batch_size=batch_size,
            delay_between_batches=delay_between_batches,
            date_from=date_from,
            date_to=date_to,
        )
        summary = self._repository.approved_summary(date_from=config.date_from, date_to=config.date_to)
        waves = config.waves_for(summary["pending_migration"])
        seconds = waves * ESTIMATED_WAVE_SECONDS + max(0, waves - 1) * config.delay_between_batches
        return {
            **summary,
            "batch_size": config.batch_size,
            "estimated_waves": waves,
            "estimated_duration_seconds": seconds,
            "estimated_duration": format_duration(seconds),
        }

    def validate(
        self,
        *,
        date_from: date | None = None,
        date_to: date | None = None,
        include_rejected: bool = False,
    ) -> dict[str, Any]:
        """Consistency report over the records a migration would replay."""
        records = self._repository.list_approved(
            date_from=date_from, date_to=date_to, include_rejected=include_rejected
        )
        issues: list[ValidationIssue] = []
        invalid = 0
        for record in records:
            found = validate_submission(record, bypass=self._bypassed(record.id))
            issues.extend(found)
            if any(i.severity == "error" for i in found):
                invalid += 1
        return {
            "total_records": len(records),
            "valid_records": len(records) - invalid,
            "invalid_records": invalid,
            "issues": [i.to_dict() for i in issues],
        }

    def get(self, migration_id: str) -> BatchMigration:
        return self._store.require(migration_id)

    def progress(self, migration_id: str) -> dict[str, Any]:
        return self._store.require(migration_id).progress(self._clock())

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self, config: BatchMigrationConfig, *, actor: str = "system") -> BatchMigration:
        """Freeze the dataset and move a new migration to ``running``.

        Waves are generated by :meth:`run` (or :meth:`step`).

        Raises:
            ConflictError: another migration is still open.
        """
        open_run = self._store.get_open()
        if open_run is not None:
            raise ConflictError(f"Migration {open_run.id} is already in progress")
        records = self._repository.list_approved(
            date_from=config.date_from,
            date_to=config.date_to,
            include_rejected=config.include_rejected,
        )
        now = self._clock()
        migration = BatchMigration(
            id=generate_ulid(),
            state=MigrationState.PENDING,
            config=config,
            created_at=now,
            updated_at=now,
            items_total=len(records),
            total_waves=config.waves_for(len(records)),
            created_by=actor,
        )
        self._store.create(migration, [r.id for r in records])
        self._store.transition(migration.id, (MigrationState.PENDING,), MigrationState.RUNNING)
        logger.info(
            "migration_started",
            migration_id=migration.id,
            items_total=migration.items_total,
            total_waves=migration.total_waves,
            dry_run=config.dry_run,
            actor=actor,
        )
        return self._store.require(migration.id)

    def pause(self, migration_id: str, *, actor: str = "system") -> BatchMigration:
        return self._operator_transition(
            migration_id, (MigrationState.RUNNING,), MigrationState.PAUSED, actor
        )

    def resume(self, migration_id: str, *, actor: str = "system") -> BatchMigration:
        return self._operator_transition(
            migration_id, (MigrationState.PAUSED,), MigrationState.RUNNING, actor
        )

    def cancel(self, migration_id: str, *, actor: str = "system") -> BatchMigration:
        """Stop generating waves.  Jobs already dispatched run to completion."""
        return self._operator_transition(
            migration_id,
            (MigrationState.PENDING, MigrationState.RUNNING, MigrationState.PAUSED),
            MigrationState.CANCELLED,
            actor,
        )

    def _operator_transition(
        self,
        migration_id: str,
        from_states: tuple[MigrationState, ...],
        target: MigrationState,
        actor: str,
    ) -> BatchMigration:
        current = self._store.require(migration_id)
        if current.state not in from_states:
            raise InvalidTransitionError("migration", current.state.value, target.value)
        if not self._store.transition(migration_id, from_states, target):
            latest = self._store.require(migration_id)
            raise InvalidTransitionError("migration", latest.state.value, target.value)
        logger.info(
            "migration_state_changed",
            migration_id=migration_id,
            from_state=current.state.value,
            to_state=target.value,
            actor=actor,
        )
        return self._store.require(migration_id)

    # ------------------------------------------------------------------ #
    # Running
    # ------------------------------------------------------------------ #

    def run(self, migration_id: str, *, wait_while_paused: bool = True) -> BatchMigration:
        """Drive a migration until it is terminal.

        While paused the runner keeps its lease and polls for resume, unless
        *wait_while_paused* is false, in which case it returns.

        Raises:
            ConflictError: another runner holds a fresh lease.
        """
        stale_before = self._clock() - self._lease_timeout
        if not self._store.claim_lease(migration_id, self._runner_id, stale_before):
            migration = self._store.require(migration_id)
            if migration.state.is_terminal:
                return migration
            raise ConflictError(
                f"Migration {migration_id} is being run by {migration.runner_id}"
            )
        try:
            with LogContext(migration_id=migration_id, runner_id=self._runner_id):
                self._run_loop(migration_id, wait_while_paused)
        finally:
            self._store.release_lease(migration_id, self._runner_id)
        return self._store.require(migration_id)

    def _run_loop(self, migration_id: str, wait_while_paused: bool) -> None:
        while not self._stop.is_set():
            result = self.step(migration_id)
            if result is StepResult.WAVE_COMPLETED:
                migration = self._store.require(migration_id)
                delay = migration.config.delay_between_batches
                if delay > 0 and not migration.config.dry_run:
                    self._sleep(delay)
                    self._store.renew_lease(migration_id, self._runner_id)
            elif result is StepResult.PAUSED:
                if not wait_while_paused:
                    return
                self._sleep(self._poll_interval)
                self._store.renew_lease(migration_id, self._runner_id)
            else:
                return

    def stop(self) -> None:
        """Ask :meth:`run` to return after the current step."""
        self._stop.set()

    def step(self, migration_id: str) -> StepResult:
        """Generate and settle at most one wave."""
        migration = self._store.require(migration_id)
        if migration.state is MigrationState.PENDING:
            self._store.transition(migration_id, (MigrationState.PENDING,), MigrationState.RUNNING)
            migration = self._store.require(migration_id)
        if migration.state is not MigrationState.RUNNING:
            return _result_for(migration.state)

        leftover = self._store.dispatched_items(migration_id)
        if leftover:
            # Previous runner died mid-wave: settle that wave before a new one.
            wave = leftover[0].wave or migration.current_wave
            logger.info("migration_wave_resumed", migration_id=migration_id, wave=wave,
                        outstanding=len(leftover))
            return self._settle_wave(migration, wave, self._clock())

        items = self._store.pending_items(migration_id, migration.config.batch_size)
        if not items:
            return self._finish(migration_id)

        wave = migration.current_wave + 1
        started = self._clock()
        self._store.assign_wave(migration_id, [i.seq for i in items], wave)
        self._store.start_wave(migration_id, wave)
        logger.info("migration_wave_started", migration_id=migration_id, wave=wave, size=len(items))

        if migration.config.dry_run:
            for item in items:
                self._simulate(item)
        else:
            for item in items:
                self._dispatch(migration, item, wave)
        return self._settle_wave(migration, wave, started)

    def _simulate(self, item: MigrationItem) -> None:
        record = self._repository.get(item.entity_id)
        if record is None:
            self._store.finish_item(item.migration_id, item.seq, False, f"{item.entity_id}: not found")
            return
        errors = [i for i in validate_submission(record, bypass=self._bypassed(record.id))
                  if i.severity == "error"]
        if errors:
            self._store.finish_item(item.migration_id, item.seq, False,
                                    f"{item.entity_id}: {errors[0].issue}")
        else:
            self._store.finish_item(item.migration_id, item.seq, True)

    def _bypassed(self, entity_id: str) -> frozenset[str]:
        return self._queue.overrides.bypassed_rules(EntityType.SUBMISSION.value, entity_id)

    def _dispatch(self, migration: BatchMigration, item: MigrationItem, wave: int) -> None:
        record = self._repository.get(item.entity_id)
        if record is None:
            self._store.finish_item(migration.id, item.seq, False, f"{item.entity_id}: not found")
            return
        try:
            result = self._queue.enqueue(
                item.entity_id,
                EnqueueOptions(
                    operation=SyncOperation.UPDATE if record.is_synced else SyncOperation.CREATE,
                    priority=Priority.LOW,
                    trigger=TriggerSource.SCHEDULED,
                    queue_name=QueueName.BATCH,
                    max_attempts=migration.config.max_retries,
                    migration_id=migration.id,
                    metadata={"migration_id": migration.id, "wave": wave},
                ),
            )
        except LedgerSyncError as exc:
            self._store.finish_item(migration.id, item.seq, False, f"{item.entity_id}: {exc.message}")
            return
        self._store.dispatch_item(migration.id, item.seq, result.job_id)

    def _settle_wave(self, migration: BatchMigration, wave: int, started: datetime) -> StepResult:
        """Wait for the wave's jobs, count outcomes, apply the failure policy."""
        deadline = started + self._wave_timeout
        while True:
            outstanding = [i for i in self._store.wave_items(migration.id, wave)
                           if i.job_id is not None and i.state is MigrationItemState.DISPATCHED]
            if outstanding:
                states = self._queue.job_states([i.job_id for i in outstanding])
                for item in outstanding:
                    state = states.get(item.job_id)
                    if state is None or not state.is_terminal:
                        continue
                    error = None
                    if state is not JobState.COMPLETED:
                        job = self._queue.jobs.get(item.job_id)
                        detail = job.last_error if job and job.last_error else state.value
                        error = f"{item.entity_id}: {detail}"
                    self._store.finish_item(migration.id, item.seq, state is JobState.COMPLETED, error)
                outstanding = [i for i in outstanding
                               if not (states.get(i.job_id) and states[i.job_id].is_terminal)]
            if not outstanding:
                break
            if self._clock() >= deadline:
                reason = f"wave {wave} stalled"
                self._fail(migration.id, reason)
                return StepResult.FAILED
            self._sleep(self._poll_interval)
            self._store.renew_lease(migration.id, self._runner_id)

        items = self._store.wave_items(migration.id, wave)
        failed = [i for i in items if i.state is MigrationItemState.FAILED]
        elapsed = (self._clock() - started).total_seconds()
        self._store.record_wave(migration.id, max(0.0, elapsed))
        self._store.append_errors(migration.id, [i.error for i in failed if i.error])
        logger.info(
            "migration_wave_completed",
            migration_id=migration.id,
            wave=wave,
            size=len(items),
            failed=len(failed),
            seconds=round(elapsed, 3),
        )

        # Dry runs are a report; every item is scored regardless of failures.
        if items and not migration.config.dry_run:
            ratio = len(failed) / len(items)
            if ratio > self._failure_threshold:
                self._fail(
                    migration.id,
                    f"wave {wave} failure rate {ratio:.0%} exceeded threshold "
                    f"{self._failure_threshold:.0%}",
                )
                return StepResult.FAILED

        current = self._store.require(migration.id)
        if current.state is MigrationState.RUNNING and not self._store.pending_items(migration.id, 1):
            return self._finish(migration.id)
        if current.state is MigrationState.RUNNING:
            return StepResult.WAVE_COMPLETED
        return _result_for(current.state)

    def _finish(self, migration_id: str) -> StepResult:
        if self._store.transition(migration_id, (MigrationState.RUNNING,), MigrationState.COMPLETED):
            migration = self._store.require(migration_id)
            logger.info(
                "migration_completed",
                migration_id=migration_id,
                items_succeeded=migration.items_succeeded,
                items_failed=migration.items_failed,
            )
            return StepResult.FINISHED
        return _result_for(self._store.require(migration_id).state)

    def _fail(self, migration_id: str, reason: str) -> None:
        changed = self._store.transition(
            migration_id,
            (MigrationState.RUNNING, MigrationState.PAUSED),
            MigrationState.FAILED,
            failure_reason=reason,
        )
        if changed:
            logger.error("migration_failed", migration_id=migration_id, reason=reason)


def _result_for(state: MigrationState) -> StepResult:
    return {
        MigrationState.PAUSED: StepResult.PAUSED,
        MigrationState.CANCELLED: StepResult.CANCELLED,
        MigrationState.COMPLETED: StepResult.FINISHED,
        MigrationState.FAILED: StepResult.FAILED,
    }.get(state, StepResult.WAVE_COMPLETED)
