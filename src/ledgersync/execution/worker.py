"""Sync worker: pulls jobs from the queue manager and pushes them to the ledger.

One dispatch → ledger call → report cycle is the unit of concurrency.  A
worker runs up to ``pool_size`` cycles at once in a thread pool; the poll
loop itself is single-threaded so a worker never double-claims.  Many
worker processes may share one store: exclusivity comes from the CAS claim
in the job store, not from anything in this module.

Usage (programmatic)::

    manager = SyncQueueManager(conn, repository=SubmissionRepository(conn))
    worker = SyncWorker(manager, HttpLedgerClient(settings.ledger_base_url))
    worker.start()  # blocking, runs until SIGINT/SIGTERM

Usage (CLI)::

    ledgersync worker start --pool-size 4 --poll-interval 1

Tests drive the same code path synchronously with :meth:`SyncWorker.run_once`
and :meth:`SyncWorker.drain`.
"""

from __future__ import annotations

import os
import platform
import signal
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ledgersync.core.errors import DataValidationError, InvalidConfigError
from ledgersync.core.logging import LogContext, get_logger
from ledgersync.core.timestamps import to_iso8601, utc_now
from ledgersync.execution.ledger_client import LedgerClient, LedgerRequest, idempotency_key
from ledgersync.execution.models import JobOutcome, JobState, SyncJob, SyncOperation
from ledgersync.execution.queue import BATCH_ENTITY_TYPE, SyncQueueManager
from ledgersync.observability.metrics import SyncMetrics, sync_metrics

logger = get_logger(__name__)


@dataclass
class WorkerStats:
    """Counters for one worker process."""

    processed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    stale: int = 0
    requeued: int = 0
    last_poll_at: datetime | None = None
    started_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "completed": self.completed,
            "retried": self.retried,
            "failed": self.failed,
            "stale": self.stale,
            "requeued": self.requeued,
            "last_poll_at": to_iso8601(self.last_poll_at),
            "started_at": to_iso8601(self.started_at),
        }


class SyncWorker:
    """Poll loop + thread pool around :class:`SyncQueueManager`.

    Thread-safety:
        The manager shares one connection with the pool threads, so every
        store access goes through ``_db_lock``.  Ledger calls run outside
        the lock.
    """

    def __init__(
        self,
        manager: SyncQueueManager,
        ledger: LedgerClient,
        *,
        pool_size: int = 4,
        poll_interval: float = 1.0,
        heartbeat_interval: float = 15.0,
        sweep_interval: float = 30.0,
        worker_id: str | None = None,
        metrics: SyncMetrics | None = None,
    ):
        if manager.repository is None:
            raise InvalidConfigError("repository", None, "SyncWorker needs an entity repository")
        if pool_size < 1:
            raise InvalidConfigError("pool_size", pool_size)
        self._manager = manager
        self._repository = manager.repository
        self._ledger = ledger
        self._pool_size = pool_size
        self._poll_interval = poll_interval
        self._heartbeat_interval = heartbeat_interval
        self._sweep_interval = sweep_interval
        self._worker_id = worker_id or f"worker-{platform.node() or 'local'}-{os.getpid()}-{uuid.uuid4().hex[:6]}"
        self._metrics = metrics or sync_metrics

        self._shutdown = threading.Event()
        self._db_lock = threading.Lock()
        self._active: set[str] = set()
        self._active_lock = threading.Lock()
        self._pool: ThreadPoolExecutor | None = None
        self.stats = WorkerStats()
        self._stats_lock = threading.Lock()

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def active_jobs(self) -> list[str]:
        with self._active_lock:
            return sorted(self._active)

    # ------------------------------------------------------------------ #
    # Synchronous API (tests, CLI one-shots, migration drains)
    # ------------------------------------------------------------------ #

    def run_once(self) -> SyncJob | None:
        """Dispatch and process one job inline.  Returns the job as reported."""
        with self._db_lock:
            job = self._manager.dispatch_next(self._worker_id)
        if job is None:
            return None
        return self._process(job)

    def drain(self, max_jobs: int = 10_000) -> int:
        """Process jobs inline until nothing is eligible.  Returns jobs processed."""
        processed = 0
        while processed < max_jobs and self.run_once() is not None:
            processed += 1
        return processed

    def sweep(self) -> dict[str, int]:
        """Requeue jobs whose worker stopped heartbeating."""
        with self._db_lock:
            result = self._manager.requeue_stalled()
        with self._stats_lock:
            self.stats.requeued += result["requeued"]
        return result

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Run the poll loop until :meth:`stop` or SIGINT/SIGTERM (blocking)."""
        self.stats.started_at = utc_now()
        self._pool = ThreadPoolExecutor(max_workers=self._pool_size,
                                        thread_name_prefix=self._worker_id)
        try:
            signal.signal(signal.SIGINT, self._handle_signal)
            signal.signal(signal.SIGTERM, self._handle_signal)
        except ValueError:
            pass  # not the main thread

        with LogContext(worker_id=self._worker_id):
            logger.info(
                "worker_started",
                pool_size=self._pool_size,
                poll_interval=self._poll_interval,
            )
            try:
                self._run_loop()
            finally:
                self._cleanup()

    def start_background(self) -> threading.Thread:
        thread = threading.Thread(target=self.start, name=f"{self._worker_id}-loop", daemon=True)
        thread.start()
        return thread

    def stop(self) -> None:
        logger.info("worker_stopping", worker_id=self._worker_id)
        self._shutdown.set()

    def _handle_signal(self, signum, frame) -> None:
        logger.info("worker_signal", worker_id=self._worker_id, signal=signum)
        self.stop()

    def _run_loop(self) -> None:
        last_heartbeat = last_sweep = time.monotonic()
        while not self._shutdown.is_set():
            try:
                self._fill_pool()
                now = time.monotonic()
                if now - last_heartbeat >= self._heartbeat_interval:
                    self._heartbeat()
                    last_heartbeat = now
                if now - last_sweep >= self._sweep_interval:
                    self.sweep()
                    last_sweep = now
            except Exception:
                logger.exception("worker_poll_error", worker_id=self._worker_id)
            self.stats.last_poll_at = utc_now()
            self._shutdown.wait(self._poll_interval)

    def _fill_pool(self) -> int:
        assert self._pool is not None
        claimed = 0
        while len(self.active_jobs) < self._pool_size and not self._shutdown.is_set():
            with self._db_lock:
                job = self._manager.dispatch_next(self._worker_id)
            if job is None:
                break
            with self._active_lock:
                self._active.add(job.id)
            self._pool.submit(self._process_tracked, job)
            claimed += 1
        return claimed

    def _process_tracked(self, job: SyncJob) -> None:
        try:
            self._process(job)
        except Exception:
            logger.exception("worker_process_error", job_id=job.id, worker_id=self._worker_id)
        finally:
            with self._active_lock:
                self._active.discard(job.id)

    def _heartbeat(self) -> None:
        active = self.active_jobs
        if active:
            with self._db_lock:
                self._manager.heartbeat(self._worker_id, active)

    def _cleanup(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True, cancel_futures=False)
        logger.info("worker_stopped", worker_id=self._worker_id, **self.stats.to_dict())

    # ------------------------------------------------------------------ #
    # One cycle
    # ------------------------------------------------------------------ #

    def _process(self, job: SyncJob) -> SyncJob | None:
        self._metrics.busy_slots.inc()
        try:
            outcome = self._execute(job)
        finally:
            self._metrics.busy_slots.dec()

        with self._db_lock:
            reported = self._manager.report_outcome(job.id, self._worker_id, outcome)

        self._count(reported)
        return reported

    def _count(self, reported: SyncJob | None) -> None:
        # Called from pool threads.
        with self._stats_lock:
            self.stats.processed += 1
            if reported is None:
                self.stats.stale += 1
            elif reported.state is JobState.COMPLETED:
                self.stats.completed += 1
            elif reported.state is JobState.DELAYED:
                self.stats.retried += 1
            else:
                self.stats.failed += 1

    def _execute(self, job: SyncJob) -> JobOutcome:
        """Perform the work for *job*.  Never raises: failures become outcomes."""
        started = time.perf_counter()

        if job.entity_type == BATCH_ENTITY_TYPE:
            try:
                with self._db_lock:
                    result = self._manager.expand_batch_sync(job)
            except Exception as exc:
                return JobOutcome.failed(exc, duration_seconds=time.perf_counter() - started)
            return JobOutcome.succeeded(result=result, duration_seconds=time.perf_counter() - started)

        with self._db_lock:
            record = self._repository.get(job.entity_id)
        if record is None:
            error = DataValidationError(
                f"Submission not found: {job.entity_id}", field="entity_id"
            ).with_context(entity_id=job.entity_id, job_id=job.id)
            return JobOutcome.failed(error, duration_seconds=time.perf_counter() - started)

        request = LedgerRequest(
            entity_type=job.entity_type,
            entity_id=job.entity_id,
            operation=job.operation,
            payload=record.to_payload(),
            idempotency_key=idempotency_key(job.entity_id, job.operation, job.id),
            job_id=job.id,
        )
        try:
            response = self._ledger.push(request)
        except Exception as exc:
            return JobOutcome.failed(exc, duration_seconds=time.perf_counter() - started)

        if job.operation in (SyncOperation.CREATE, SyncOperation.UPDATE):
            with self._db_lock:
                self._repository.mark_synced(job.entity_id, response.external_ref)
        return JobOutcome.succeeded(
            response.external_ref,
            result={"replayed": response.replayed},
            duration_seconds=time.perf_counter() - started,
        )
