"""Sync Queue Manager: enqueue, dispatch, retry, and control of sync jobs.

WHY
───
The manager is the only component that changes SyncJob state.  Workers
ask it for the next job and report back; API and CLI callers enqueue and
steer queues through it.  Per-job failures never raise to the caller:
they end up as job state (``delayed``/``failed``) and quarantine records.

ARCHITECTURE
────────────
::

    enqueue(entity, options) ──► live job? ──yes──► coalesce (return existing id)
                                    │no
                                    ▼
                               insert waiting ──IntegrityError──► coalesce

    dispatch_next(worker) ──► eligible queues (not paused/held/saturated)
                              ──► candidates (priority desc, created asc, due)
                              ──► CAS claim → active

    report_outcome(job, worker, outcome)
        success ──► completed ──► follow-up job if resync requested
        failure ──► classify()
                      retryable  ──► delayed, next_attempt_at = now + backoff
                      quarantine ──► failed + QuarantineRecord (+ hold on auth)
                      fatal      ──► failed, logged for operators

    requeue_stalled() ──► active with stale heartbeat ──► waiting (or failed
                          once the queue's stall budget is spent)
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any

from ledgersync.core.enums import Priority
from ledgersync.core.errors import (
    ErrorCategory,
    IntegrityError,
    InvalidConfigError,
    InvalidTransitionError,
    NotFoundError,
)
from ledgersync.core.logging import get_logger
from ledgersync.core.protocols import Clock, Connection
from ledgersync.core.settings import LedgerSyncSettings
from ledgersync.core.timestamps import generate_ulid, to_iso8601, utc_now
from ledgersync.domain.overrides import ValidationOverrideStore
from ledgersync.domain.submissions import EntityRepository
from ledgersync.execution.classifier import Classification, classify
from ledgersync.execution.job_store import JobStore
from ledgersync.execution.models import (
    EnqueueOptions,
    EnqueueResult,
    JobEventType,
    JobOutcome,
    JobState,
    QueueName,
    SyncJob,
    SyncOperation,
    TriggerSource,
)
from ledgersync.execution.retry import QUEUE_POLICIES, ExponentialBackoff, backoff_for, select_queue
from ledgersync.observability.metrics import SyncMetrics, sync_metrics
from ledgersync.quarantine.models import QuarantineReason, priority_for
from ledgersync.quarantine.store import QuarantineStore

logger = get_logger(__name__)

BATCH_ENTITY_TYPE = "batch"


def coerce_queue(name: QueueName | str) -> QueueName:
    """Resolve a queue name, raising :class:`NotFoundError` if unknown."""
    if isinstance(name, QueueName):
        return name
    try:
        return QueueName(name)
    except ValueError as exc:
        raise NotFoundError("queue", str(name)) from exc


class SyncQueueManager:
    """Owns every SyncJob state transition.

    Args:
        conn: Connection to the durable store.
        quarantine: Store that receives non-retryable failures.  Defaults to
            one on the same connection.
        overrides: Validation override store shared with the reviewer and
            the migration controller.
        repository: Record-management repository; used to snapshot entity
            data on capture and to expand batch-sync jobs.
        settings: Backoff and liveness settings.
        clock: Time source (inject a ``FrozenClock`` in tests).
        metrics: In-process metrics sink.
    """

    def __init__(
        self,
        conn: Connection,
        *,
        quarantine: QuarantineStore | None = None,
        overrides: ValidationOverrideStore | None = None,
        repository: EntityRepository | None = None,
        settings: LedgerSyncSettings | None = None,
        clock: Clock = utc_now,
        metrics: SyncMetrics | None = None,
    ):
        settings = settings or LedgerSyncSettings()
        self._conn = conn
        self._jobs = JobStore(conn)
        self._quarantine = quarantine or QuarantineStore(conn, clock=clock)
        self._overrides = overrides or ValidationOverrideStore(conn, clock=clock)
        self._repository = repository
        self._clock = clock
        self._metrics = metrics or sync_metrics
        self._liveness_timeout = timedelta(seconds=settings.liveness_timeout_seconds)
        self._backoff: dict[QueueName, ExponentialBackoff] = {
            q: backoff_for(
                q,
                multiplier=settings.backoff_multiplier,
                max_delay=settings.backoff_max_delay_seconds,
                jitter_range=settings.backoff_jitter_range,
            )
            for q in QueueName
        }

    @property
    def jobs(self) -> JobStore:
        return self._jobs

    @property
    def quarantine(self) -> QuarantineStore:
        return self._quarantine

    @property
    def overrides(self) -> ValidationOverrideStore:
        return self._overrides

    @property
    def repository(self) -> EntityRepository | None:
        return self._repository

    def operation_for(
        self, entity_id: str, fallback: SyncOperation = SyncOperation.UPDATE
    ) -> SyncOperation:
        """``update`` once the ledger holds the entity, ``create`` before.

        *fallback* applies when there is no repository or no such record.
        """
        if self._repository is None:
            return fallback
        record = self._repository.get(entity_id)
        if record is None:
            return fallback
        return SyncOperation.UPDATE if record.is_synced else SyncOperation.CREATE

    # ------------------------------------------------------------------ #
    # Enqueue
    # ------------------------------------------------------------------ #

    def enqueue(self, entity_id: str, options: EnqueueOptions | None = None) -> EnqueueResult:
        """Create a waiting job for *entity_id*, or coalesce into the live one.

        Idempotent per entity: while a waiting/active/delayed job exists, the
        existing job id is returned with ``created=False``.
        """
        if not entity_id:
            raise InvalidConfigError("entity_id", entity_id, "entity_id is required")
        opts = options or EnqueueOptions()

        live = self._jobs.get_live(entity_id)
        if live is not None:
            return self._coalesce(live, opts)

        queue = opts.queue_name or select_queue(
            opts.priority, opts.trigger, opts.metadata, opts.migration_id
        )
        policy = QUEUE_POLICIES[queue]
        now = self._clock()
        job = SyncJob(
            id=generate_ulid(),
            entity_type=opts.entity_type,
            entity_id=entity_id,
            operation=opts.operation,
            priority=opts.priority,
            state=JobState.WAITING,
            queue_name=queue,
            trigger=opts.trigger,
            max_attempts=opts.max_attempts or policy.max_attempts,
            migration_id=opts.migration_id,
            metadata=dict(opts.metadata),
            created_at=now,
            updated_at=now,
        )
        try:
            self._jobs.insert(job)
        except IntegrityError:
            # Lost the race against another enqueue for the same entity.
            live = self._jobs.get_live(entity_id)
            if live is None:
                raise
            return self._coalesce(live, opts)

        self._metrics.record_enqueued(queue.value)
        logger.info(
            "job_enqueued",
            job_id=job.id,
            entity_id=entity_id,
            operation=job.operation.value,
            priority=job.priority.value,
            queue=queue.value,
            trigger=job.trigger.value,
        )
        return EnqueueResult(job.id, True, job)

    def _coalesce(self, live: SyncJob, opts: EnqueueOptions) -> EnqueueResult:
        now = self._clock()
        if live.state is JobState.ACTIVE:
            self._jobs.request_resync(live.id, now)
        elif opts.priority.rank > live.priority.rank:
            self._jobs.raise_priority(live.id, opts.priority, now)
        else:
            self._jobs.record_event(live.id, JobEventType.COALESCED, now, {
                "trigger": opts.trigger.value, "priority": opts.priority.value,
            })
        logger.info(
            "job_coalesced",
            job_id=live.id,
            entity_id=live.entity_id,
            state=live.state.value,
            requested_priority=opts.priority.value,
        )
        current = self._jobs.get(live.id) or live
        return EnqueueResult(current.id, False, current)

    def enqueue_batch_sync(
        self,
        date_from: date,
        date_to: date,
        *,
        entity_ids: list[str] | None = None,
        force: bool = False,
        actor: str = "system",
    ) -> EnqueueResult:
        """Enqueue a coordinating ``reconcile`` job for a date range.

        The worker expands it through :meth:`expand_batch_sync`.
        """
        if date_from > date_to:
            raise InvalidConfigError("date_range", f"{date_from}..{date_to}",
                                     "from_date must not be after to_date")
        return self.enqueue(
            f"batch:{date_from.isoformat()}:{date_to.isoformat()}",
            EnqueueOptions(
                operation=SyncOperation.RECONCILE,
                priority=Priority.LOW,
                trigger=TriggerSource.MANUAL,
                entity_type=BATCH_ENTITY_TYPE,
                queue_name=QueueName.BATCH,
                metadata={
                    "date_from": date_from.isoformat(),
                    "date_to": date_to.isoformat(),
                    "entity_ids": list(entity_ids or []),
                    "force": force,
                    "actor": actor,
                },
            ),
        )

    def expand_batch_sync(self, job: SyncJob) -> dict[str, Any]:
        """Fan a coordinating batch job out into per-submission jobs."""
        if self._repository is None:
            raise InvalidConfigError("repository", None, "batch sync needs a submission repository")
        meta = job.metadata
        records = self._repository.list_approved(
            date_from=date.fromisoformat(meta["date_from"]),
            date_to=date.fromisoformat(meta["date_to"]),
            include_synced=bool(meta.get("force")),
            entity_ids=meta.get("entity_ids") or None,
        )
        created = coalesced = 0
        for record in records:
            result = self.enqueue(
                record.id,
                EnqueueOptions(
                    operation=SyncOperation.UPDATE if record.is_synced else SyncOperation.CREATE,
                    trigger=TriggerSource.SCHEDULED,
                    metadata={"batch_job_id": job.id, "actor": meta.get("actor", "system")},
                ),
            )
            if result.created:
                created += 1
            else:
                coalesced += 1
        logger.info(
            "batch_sync_expanded",
            job_id=job.id,
            matched=len(records),
            enqueued=created,
            coalesced=coalesced,
        )
        return {"matched": len(records), "enqueued": created, "coalesced": coalesced}

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #

    def dispatch_next(self, worker_id: str) -> SyncJob | None:
        """Claim the next eligible job for *worker_id*, or ``None``.

        Eligible: queue neither paused, held, nor at its concurrency limit;
        ``next_attempt_at`` due.  Ordered by priority then age.
        """
        now = self._clock()
        excluded = {q for q, state in self._queue_states().items() if state["paused"] or state["held"]}
        for queue in QueueName:
            if queue not in excluded and self._jobs.count_active(queue) >= QUEUE_POLICIES[queue].concurrency:
                excluded.add(queue)
        if len(excluded) == len(QueueName):
            return None

        for candidate in self._jobs.dispatch_candidates(now, exclude_queues=excluded):
            if self._jobs.claim(candidate, worker_id, now):
                job = self._jobs.get(candidate.id)
                logger.info(
                    "job_dispatched",
                    job_id=candidate.id,
                    entity_id=candidate.entity_id,
                    queue=candidate.queue_name.value,
                    attempt=candidate.attempts + 1,
                    worker_id=worker_id,
                )
                return job
        return None

    # ------------------------------------------------------------------ #
    # Outcomes
    # ------------------------------------------------------------------ #

    def report_outcome(self, job_id: str, worker_id: str, outcome: JobOutcome) -> SyncJob | None:
        """Apply a worker's result.  Returns the updated job, or ``None`` if stale.

        A report is stale when the job is no longer active or is owned by a
        different worker (it was requeued after a missed heartbeat).
        """
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        if job.state is not JobState.ACTIVE or job.worker_id != worker_id:
            return self._stale(job, worker_id)

        now = self._clock()
        if outcome.success:
            if not self._jobs.complete(job_id, worker_id, now,
                                       external_ref=outcome.external_ref, result=outcome.result):
                return self._stale(job, worker_id)
            self._metrics.record_finished(job.queue_name.value, JobState.COMPLETED.value,
                                          outcome.duration_seconds)
            logger.info(
                "job_completed",
                job_id=job_id,
                entity_id=job.entity_id,
                attempts=job.attempts,
                external_ref=outcome.external_ref,
            )
            self._after_terminal(job)
            return self._jobs.get(job_id)

        error = outcome.error or RuntimeError("worker reported failure without an error")
        classification = classify(error, job.attempts, job.max_attempts, job_priority=job.priority)
        detail = str(error) or type(error).__name__

        if classification.retryable:
            delay = self._backoff[job.queue_name].next_delay(job.attempts, classification.retry_after)
            next_at = now + timedelta(seconds=delay)
            if not self._jobs.delay(job_id, worker_id, now, next_attempt_at=next_at,
                                    error=detail, category=classification.category.value):
                return self._stale(job, worker_id)
            self._metrics.record_finished(job.queue_name.value, JobState.DELAYED.value,
                                          outcome.duration_seconds)
            logger.warning(
                "job_retry_scheduled",
                job_id=job_id,
                entity_id=job.entity_id,
                attempt=job.attempts,
                max_attempts=job.max_attempts,
                delay_seconds=round(delay, 3),
                error=detail,
            )
            return self._jobs.get(job_id)

        if not self._jobs.fail(job_id, worker_id, now, error=detail,
                               category=classification.category.value):
            return self._stale(job, worker_id)
        self._metrics.record_finished(job.queue_name.value, JobState.FAILED.value,
                                      outcome.duration_seconds)
        self._handle_failure(job, classification, detail)
        self._after_terminal(job)
        return self._jobs.get(job_id)

    def _stale(self, job: SyncJob, worker_id: str) -> None:
        logger.warning(
            "stale_outcome_ignored",
            job_id=job.id,
            state=job.state.value,
            owner=job.worker_id,
            reporter=worker_id,
        )
        self._jobs.record_event(job.id, JobEventType.STALE_REPORT, self._clock(), {
            "reporter": worker_id, "state": job.state.value,
        })
        return None

    def _handle_failure(self, job: SyncJob, classification: Classification, detail: str) -> None:
        if classification.quarantine and classification.reason is not None:
            self._capture(job, classification.reason, detail,
                          priority=classification.priority, category=classification.category.value)
        else:
            logger.error(
                "job_failed_fatal",
                job_id=job.id,
                entity_id=job.entity_id,
                error=detail,
                category=classification.category.value,
            )
        if classification.halt_dispatch:
            self.hold_all(f"authorization failure on job {job.id}: {detail}")

    def _capture(
        self,
        job: SyncJob,
        reason: QuarantineReason,
        detail: str,
        *,
        priority: Priority | None,
        category: str,
    ) -> None:
        entity_data = None
        if self._repository is not None and job.entity_type == "submission":
            record = self._repository.get(job.entity_id)
            entity_data = record.to_dict() if record is not None else None
        record = self._quarantine.capture(
            job.entity_type,
            job.entity_id,
            reason,
            detail,
            priority=priority,
            job_id=job.id,
            error_category=category,
            entity_data=entity_data,
        )
        self._metrics.record_quarantined(reason.value)
        logger.warning(
            "job_failed_quarantined",
            job_id=job.id,
            entity_id=job.entity_id,
            record_id=record.id,
            reason=reason.value,
            priority=record.priority.value,
        )

    def _after_terminal(self, job: SyncJob) -> None:
        """Create the follow-up job a coalesced enqueue asked for."""
        current = self._jobs.get(job.id)
        if current is None or not current.resync_requested:
            return
        operation = job.operation
        if operation is SyncOperation.CREATE and current.state is JobState.COMPLETED:
            operation = SyncOperation.UPDATE
        if operation is not SyncOperation.RECONCILE:
            operation = self.operation_for(job.entity_id, fallback=operation)
        result = self.enqueue(
            job.entity_id,
            EnqueueOptions(
                operation=operation,
                priority=job.priority,
                trigger=job.trigger,
                entity_type=job.entity_type,
                metadata={**{k: v for k, v in job.metadata.items() if k != "migration_id"},
                          "follows": job.id},
            ),
        )
        logger.info("job_resync_enqueued", job_id=result.job_id, follows=job.id,
                    entity_id=job.entity_id)

    # ------------------------------------------------------------------ #
    # Liveness
    # ------------------------------------------------------------------ #

    def heartbeat(self, worker_id: str, job_ids: list[str]) -> int:
        return self._jobs.heartbeat(job_ids, worker_id, self._clock())

    def requeue_stalled(self) -> dict[str, int]:
        """Recover active jobs whose worker stopped heartbeating.

        Returns ``{"requeued": n, "failed": m}``.
        """
        now = self._clock()
        requeued = failed = 0
        for job in self._jobs.stalled(now - self._liveness_timeout):
            policy = QUEUE_POLICIES[job.queue_name]
            if job.stalled_count + 1 > policy.max_stalled:
                detail = f"job stalled {job.stalled_count + 1} times (worker {job.worker_id})"
                if self._jobs.fail(job.id, job.worker_id, now, error=detail,
                                   category=ErrorCategory.TIMEOUT.value):
                    failed += 1
                    self._metrics.record_finished(job.queue_name.value, JobState.FAILED.value)
                    reason = QuarantineReason.RETRIES_EXHAUSTED
                    self._capture(job, reason, detail, priority=priority_for(reason),
                                  category=ErrorCategory.TIMEOUT.value)
                    self._after_terminal(job)
                continue
            if self._jobs.requeue(job, now):
                requeued += 1
                logger.warning(
                    "job_requeued",
                    job_id=job.id,
                    entity_id=job.entity_id,
                    previous_worker=job.worker_id,
                    stalled_count=job.stalled_count + 1,
                )
        return {"requeued": requeued, "failed": failed}

    # ------------------------------------------------------------------ #
    # Queue control
    # ------------------------------------------------------------------ #

    def pause(self, queue: QueueName | str, *, actor: str = "system") -> dict[str, Any]:
        """Stop dispatch from *queue*; queued jobs are kept."""
        name = coerce_queue(queue)
        now = to_iso8601(self._clock())
        self._ensure_queue_rows()
        self._conn.execute(
            "UPDATE sync_queue_state SET paused = 1, paused_at = ?, paused_by = ?, updated_at = ? "
            "WHERE queue_name = ? AND paused = 0",
            (now, actor, now, name.value),
        )
        self._conn.commit()
        logger.info("queue_paused", queue=name.value, actor=actor)
        return self.metrics(name)

    def resume(self, queue: QueueName | str, *, actor: str = "system") -> dict[str, Any]:
        """Resume dispatch from *queue*, also lifting an authorization hold on it."""
        name = coerce_queue(queue)
        now = to_iso8601(self._clock())
        self._ensure_queue_rows()
        self._conn.execute(
            "UPDATE sync_queue_state SET paused = 0, paused_at = NULL, paused_by = NULL, "
            "held = 0, hold_reason = NULL, held_at = NULL, updated_at = ? WHERE queue_name = ?",
            (now, name.value),
        )
        self._conn.commit()
        logger.info("queue_resumed", queue=name.value, actor=actor)
        return self.metrics(name)

    def hold_all(self, reason: str) -> None:
        """Suspend dispatch on every queue until credentials are fixed."""
        now = to_iso8601(self._clock())
        self._ensure_queue_rows()
        self._conn.execute(
            "UPDATE sync_queue_state SET held = 1, hold_reason = ?, held_at = ?, updated_at = ? "
            "WHERE held = 0",
            (reason, now, now),
        )
        self._conn.commit()
        logger.error("dispatch_held", reason=reason)

    def release_hold(self, *, actor: str = "system") -> int:
        """Lift the authorization hold on every queue.  Returns queues released."""
        now = to_iso8601(self._clock())
        self._ensure_queue_rows()
        cur = self._conn.execute(
            "UPDATE sync_queue_state SET held = 0, hold_reason = NULL, held_at = NULL, updated_at = ? "
            "WHERE held = 1",
            (now,),
        )
        released = cur.rowcount
        self._conn.commit()
        if released:
            logger.info("dispatch_hold_released", actor=actor, queues=released)
        return released

    def retry_failed(self, queue: QueueName | str | None = None, *, actor: str = "system") -> int:
        """Re-arm failed jobs with a fresh attempt budget.

        Entities that already have a live job are skipped.
        """
        name = coerce_queue(queue) if queue is not None else None
        now = self._clock()
        rearmed = 0
        for job_id in self._jobs.failed_ids(name):
            job = self._jobs.get(job_id)
            if job is None or self._jobs.get_live(job.entity_id) is not None:
                continue
            try:
                if self._jobs.rearm_failed(job_id, now, actor=actor):
                    rearmed += 1
            except IntegrityError:
                self._conn.rollback()
        logger.info("failed_jobs_rearmed", queue=name.value if name else None, count=rearmed, actor=actor)
        return rearmed

    def clear_failed(self, queue: QueueName | str | None = None, *, actor: str = "system") -> int:
        name = coerce_queue(queue) if queue is not None else None
        deleted = self._jobs.delete_failed(name)
        logger.info("failed_jobs_cleared", queue=name.value if name else None, count=deleted, actor=actor)
        return deleted

    def cancel(self, job_id: str, *, actor: str = "system") -> SyncJob:
        """Cancel a waiting or delayed job.  Active jobs run to completion."""
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        if not self._jobs.cancel(job_id, self._clock(), actor=actor):
            current = self._jobs.get(job_id) or job
            raise InvalidTransitionError("job", current.state.value, JobState.CANCELLED.value)
        logger.info("job_cancelled", job_id=job_id, entity_id=job.entity_id, actor=actor)
        return self._jobs.get(job_id) or job

    def get_job(self, job_id: str) -> SyncJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        return job

    # ------------------------------------------------------------------ #
    # Metrics (read-only)
    # ------------------------------------------------------------------ #

    def metrics(self, queue: QueueName | str | None = None) -> dict[str, Any]:
        """Counts per state, error rate, average latency, paused/held flags."""
        name = coerce_queue(queue) if queue is not None else None
        counts = self._jobs.counts(name)
        completed = counts[JobState.COMPLETED]
        failed = counts[JobState.FAILED]
        finished = completed + failed
        latency = self._jobs.average_latency_ms(name)

        states = self._queue_states()
        if name is not None:
            state = states[name]
            paused, held, hold_reason = state["paused"], state["held"], state["hold_reason"]
        else:
            paused = all(s["paused"] for s in states.values())
            held = any(s["held"] for s in states.values())
            hold_reason = next((s["hold_reason"] for s in states.values() if s["held"]), None)

        return {
            "queue": name.value if name else None,
            "counts": {state.value: n for state, n in counts.items()},
            "total": sum(counts.values()),
            "error_rate": round(failed / finished, 4) if finished else 0.0,
            "average_latency_ms": round(latency, 2) if latency is not None else None,
            "paused": paused,
            "held": held,
            "hold_reason": hold_reason,
        }

    def status(self) -> dict[str, Any]:
        """Metrics for every named queue plus totals."""
        return {
            "queues": [self.metrics(q) for q in QueueName],
            "totals": self.metrics(None),
        }

    def _queue_states(self) -> dict[QueueName, dict[str, Any]]:
        self._conn.execute(
            "SELECT queue_name, paused, paused_by, held, hold_reason FROM sync_queue_state"
        )
        rows = {r["queue_name"]: r for r in self._conn.fetchall()}
        states: dict[QueueName, dict[str, Any]] = {}
        for queue in QueueName:
            row = rows.get(queue.value)
            states[queue] = {
                "paused": bool(row["paused"]) if row else False,
                "paused_by": row["paused_by"] if row else None,
                "held": bool(row["held"]) if row else False,
                "hold_reason": row["hold_reason"] if row else None,
            }
        return states

    def _ensure_queue_rows(self) -> None:
        now = to_iso8601(self._clock())
        self._conn.executemany(
            "INSERT OR IGNORE INTO sync_queue_state (queue_name, updated_at) VALUES (?, ?)",
            [(q.value, now) for q in QueueName],
        )

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def list_jobs(
        self,
        *,
        state: JobState | str | None = None,
        queue: QueueName | str | None = None,
        entity_id: str | None = None,
        migration_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[SyncJob], int]:
        if state is not None and not isinstance(state, JobState):
            try:
                state = JobState(state)
            except ValueError as exc:
                raise InvalidConfigError("state", state) from exc
        return self._jobs.list(
            state=state,
            queue=coerce_queue(queue) if queue is not None else None,
            entity_id=entity_id,
            migration_id=migration_id,
            limit=limit,
            offset=offset,
        )

    def job_states(self, job_ids: list[str]) -> dict[str, JobState]:
        return self._jobs.states(job_ids)

    def now(self) -> datetime:
        return self._clock()
