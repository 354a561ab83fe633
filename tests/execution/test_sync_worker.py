"""Tests for ``ledgersync.execution.worker`` driven inline via run_once/drain."""

from __future__ import annotations

import time
from datetime import date

import pytest

from ledgersync.core.errors import (
    ConflictError,
    DataValidationError,
    InvalidConfigError,
    NetworkError,
    RateLimitError,
)
from ledgersync.execution.ledger_client import idempotency_key
from ledgersync.execution.models import EnqueueOptions, JobState, SyncOperation
from ledgersync.execution.queue import SyncQueueManager
from ledgersync.execution.worker import SyncWorker


class TestWorkerConstruction:
    def test_requires_repository(self, conn, ledger):
        with pytest.raises(InvalidConfigError):
            SyncWorker(SyncQueueManager(conn), ledger)

    def test_pool_size_must_be_positive(self, manager, ledger):
        with pytest.raises(InvalidConfigError):
            SyncWorker(manager, ledger, pool_size=0)

    def test_generated_worker_id(self, manager, ledger):
        assert SyncWorker(manager, ledger).worker_id.startswith("worker-")


class TestRunOnce:
    def test_idle(self, worker):
        assert worker.run_once() is None
        assert worker.stats.processed == 0

    def test_pushes_and_marks_synced(self, worker, manager, ledger, seed_submissions, repository):
        seed_submissions(1)
        job_id = manager.enqueue("TS-001", EnqueueOptions(operation="create")).job_id

        job = worker.run_once()

        assert job.state is JobState.COMPLETED
        assert len(ledger.writes) == 1
        request = ledger.writes[0]
        assert request.operation is SyncOperation.CREATE
        assert request.payload["submission_id"] == "TS-001"
        assert request.idempotency_key == idempotency_key("TS-001", "create", job_id)
        assert repository.get("TS-001").ledger_ref == job.external_ref
        assert worker.stats.completed == 1

    def test_reconcile_does_not_mark_synced(self, worker, manager, seed_submissions, repository):
        seed_submissions(1)
        manager.enqueue("TS-001", EnqueueOptions(operation="reconcile"))
        assert worker.run_once().state is JobState.COMPLETED
        assert repository.get("TS-001").ledger_ref is None

    def test_missing_record_is_quarantined(self, worker, manager, ledger):
        manager.enqueue("TS-404")
        job = worker.run_once()
        assert job.state is JobState.FAILED
        assert ledger.calls == []
        record = manager.quarantine.get_open("submission", "TS-404")
        assert record.reason.value == "validation_failed"

    def test_transient_failure_is_retried(self, worker, manager, ledger, seed_submissions, clock):
        seed_submissions(1)
        ledger.fail("TS-001", RateLimitError(retry_after=1))
        manager.enqueue("TS-001")

        assert worker.run_once().state is JobState.DELAYED
        assert worker.run_once() is None
        clock.advance(seconds=10)
        assert worker.run_once().state is JobState.COMPLETED
        assert (worker.stats.retried, worker.stats.completed) == (1, 1)
        assert len(ledger.calls) == 2
        assert len(ledger.writes) == 1

    def test_permanent_failure(self, worker, manager, ledger, seed_submissions):
        seed_submissions(1)
        ledger.fail("TS-001", ConflictError("duplicate invoice"))
        manager.enqueue("TS-001")
        assert worker.run_once().state is JobState.FAILED
        assert worker.stats.failed == 1
        assert manager.quarantine.get_open("submission", "TS-001").reason.value == "conflict"

    def test_busy_slots_return_to_zero(self, worker, manager, metrics, seed_submissions):
        seed_submissions(1)
        manager.enqueue("TS-001")
        worker.run_once()
        assert metrics.busy_slots.labels().value == 0


class TestDrain:
    def test_drains_everything_due(self, worker, manager, ledger, seed_submissions):
        ids = seed_submissions(5)
        ledger.fail("TS-003", DataValidationError("bad"))
        for entity_id in ids:
            manager.enqueue(entity_id)

        assert worker.drain() == 5
        assert worker.stats.completed == 4
        assert worker.stats.failed == 1
        assert worker.drain() == 0

    def test_max_jobs(self, worker, manager, seed_submissions):
        for entity_id in seed_submissions(3):
            manager.enqueue(entity_id)
        assert worker.drain(max_jobs=2) == 2

    def test_batch_sync_job_expands(self, worker, manager, ledger, seed_submissions):
        seed_submissions(3)
        manager.enqueue_batch_sync(date(2026, 1, 1), date(2026, 12, 31))

        assert worker.drain() == 4
        assert sorted(r.entity_id for r in ledger.writes) == ["TS-001", "TS-002", "TS-003"]
        batch_jobs, _ = manager.list_jobs(queue="batch")
        assert batch_jobs[0].state is JobState.COMPLETED
        assert batch_jobs[0].result == {"matched": 3, "enqueued": 3, "coalesced": 0}


class TestSweep:
    def test_sweep_counts_requeues(self, worker, manager, clock):
        manager.enqueue("TS-1")
        manager.dispatch_next("other-worker")
        clock.advance(seconds=120)
        assert worker.sweep() == {"requeued": 1, "failed": 0}
        assert worker.stats.requeued == 1


class TestBackgroundLoop:
    def test_processes_then_stops(self, manager, ledger, seed_submissions, metrics):
        seed_submissions(2)
        manager.enqueue("TS-001")
        manager.enqueue("TS-002")
        worker = SyncWorker(manager, ledger, pool_size=2, poll_interval=0.01, metrics=metrics)

        thread = worker.start_background()
        deadline = time.monotonic() + 5
        while worker.stats.completed < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        worker.stop()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert worker.stats.completed == 2
        assert worker.active_jobs == []

    def test_pool_counts_every_job(self, manager, ledger, seed_submissions, metrics):
        ids = seed_submissions(24)
        for entity_id in ids:
            manager.enqueue(entity_id)
        worker = SyncWorker(manager, ledger, pool_size=4, poll_interval=0.005, metrics=metrics)

        thread = worker.start_background()
        deadline = time.monotonic() + 10
        while worker.stats.processed < 24 and time.monotonic() < deadline:
            time.sleep(0.01)
        worker.stop()
        thread.join(timeout=5)

        assert worker.stats.processed == 24
        assert worker.stats.completed == 24
        assert len(ledger.writes) == 24


class TestWorkerCrash:
    def test_redelivery_after_crash_writes_once(
        self, manager, ledger, seed_submissions, repository, metrics, clock, monkeypatch
    ):
        """Worker A pushes then dies before reporting; worker B finishes the job."""
        seed_submissions(1)
        job_id = manager.enqueue("TS-001", EnqueueOptions(operation="create")).job_id
        worker_a = SyncWorker(manager, ledger, pool_size=1, worker_id="w-a", metrics=metrics)
        worker_b = SyncWorker(manager, ledger, pool_size=1, worker_id="w-b", metrics=metrics)

        def killed(*args, **kwargs):
            raise RuntimeError("worker killed")

        monkeypatch.setattr(manager, "report_outcome", killed)
        with pytest.raises(RuntimeError):
            worker_a.run_once()
        monkeypatch.undo()

        assert len(ledger.writes_for("TS-001")) == 1
        assert manager.get_job(job_id).state is JobState.ACTIVE

        clock.advance(seconds=120)
        assert manager.requeue_stalled() == {"requeued": 1, "failed": 0}
        assert worker_b.drain() == 1

        job = manager.get_job(job_id)
        assert job.state is JobState.COMPLETED
        assert job.result == {"replayed": True}
        assert len(ledger.writes_for("TS-001")) == 1
        assert len([c for c in ledger.calls if c.entity_id == "TS-001"]) == 2
        assert repository.get("TS-001").ledger_ref == job.external_ref
