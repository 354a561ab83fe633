"""Tests for ``ledgersync.quarantine.reviewer``: review, bulk, manual, recovery."""

from __future__ import annotations

from datetime import timedelta

import pytest

from ledgersync.core.enums import Priority
from ledgersync.core.errors import (
    AlreadyResolvedError,
    AuthorizationError,
    ConflictError,
    DataValidationError,
    InvalidConfigError,
    NotFoundError,
)
from ledgersync.execution.models import EnqueueOptions, JobOutcome, JobState, QueueName, SyncOperation
from ledgersync.quarantine.models import QuarantineReason, QuarantineStatus
from ledgersync.quarantine.reviewer import QuarantineReviewer


@pytest.fixture
def reviewer(manager) -> QuarantineReviewer:
    return QuarantineReviewer(manager.quarantine, manager)


@pytest.fixture
def store(manager):
    return manager.quarantine


def _audit_actions(store, record_id):
    return {a["action"] for a in store.audit(record_id)}


# ── Review ───────────────────────────────────────────────────


class TestReview:
    def test_corrected_submission_is_resynced(
        self, reviewer, manager, worker, ledger, repository, make_submission, store
    ):
        repository.save(make_submission("TS-101"))
        manager.enqueue("TS-101")
        ledger.fail("TS-101", DataValidationError("amount rejected by ledger"))
        assert worker.run_once().state is JobState.FAILED

        record = store.get_open("submission", "TS-101")
        assert record.status is QuarantineStatus.PENDING
        assert record.priority is Priority.MEDIUM

        result = reviewer.review(record.id, "alice", "resolved", corrected_data={"amount": 42})

        assert result.record.status is QuarantineStatus.RESOLVED
        assert result.record.resolved_by == "alice"
        assert result.record.corrected_data == {"amount": 42}
        new_job = manager.get_job(result.job_id)
        assert new_job.entity_id == "TS-101"
        assert new_job.state is JobState.WAITING
        # the ledger never accepted TS-101, so the fresh attempt creates it
        assert new_job.operation is SyncOperation.CREATE
        assert new_job.metadata["quarantine_id"] == record.id
        assert repository.get("TS-101").amount == 42.0
        assert {"review_started", "resolved", "reenqueued"} <= _audit_actions(store, record.id)

        assert worker.run_once().state is JobState.COMPLETED
        assert ledger.writes[-1].payload["amount"] == 42.0

    def test_failed_create_is_resent_as_create(
        self, reviewer, manager, worker, ledger, repository, make_submission, store
    ):
        repository.save(make_submission("TS-101"))
        manager.enqueue("TS-101", EnqueueOptions(operation="create"))
        ledger.fail("TS-101", DataValidationError("amount rejected by ledger"))
        worker.drain()
        assert not repository.get("TS-101").is_synced

        record = store.get_open("submission", "TS-101")
        result = reviewer.review(record.id, "alice", "resolved", corrected_data={"amount": 42})

        assert manager.get_job(result.job_id).operation is SyncOperation.CREATE
        assert worker.run_once().state is JobState.COMPLETED
        assert ledger.writes[-1].operation is SyncOperation.CREATE
        assert repository.get("TS-101").is_synced

    def test_synced_entity_is_resent_as_update(
        self, reviewer, manager, worker, ledger, repository, make_submission, store
    ):
        repository.save(make_submission("TS-102", ledger_ref="L-77"))
        manager.enqueue("TS-102", EnqueueOptions(operation="update"))
        ledger.fail("TS-102", ConflictError("ledger holds a newer version"))
        worker.drain()

        record = store.get_open("submission", "TS-102")
        job = manager.get_job(reviewer.review(record.id, "alice", "resolved").job_id)
        assert job.operation is SyncOperation.UPDATE

    def test_failed_reconcile_stays_reconcile(self, reviewer, manager, worker, ledger, repository,
                                              make_submission, store):
        repository.save(make_submission("TS-103"))
        manager.enqueue("TS-103", EnqueueOptions(operation="reconcile"))
        ledger.fail("TS-103", ConflictError("totals differ"))
        worker.drain()

        record = store.get_open("submission", "TS-103")
        job = manager.get_job(reviewer.review(record.id, "alice", "resolved").job_id)
        assert job.operation is SyncOperation.RECONCILE

    def test_reject_closes_without_job(self, reviewer, manager, store):
        record = store.capture("submission", "TS-1", QuarantineReason.VALIDATION_FAILED, "bad")
        result = reviewer.review(record.id, "alice", "rejected", notes="duplicate timesheet")
        assert result.job_id is None
        assert result.record.status is QuarantineStatus.REJECTED
        assert result.record.resolution_notes == "duplicate timesheet"
        assert manager.jobs.get_live("TS-1") is None

    def test_resolve_reenqueues_with_record_priority(self, reviewer, manager, store):
        record = store.capture("submission", "TS-1", QuarantineReason.CONFLICT, "dup")
        job = manager.get_job(reviewer.review(record.id, "alice", "resolved").job_id)
        assert job.priority is Priority.HIGH
        assert job.queue_name is QueueName.HIGH

    def test_resolve_coalesces_into_live_job(self, reviewer, manager, store):
        live = manager.enqueue("TS-1").job_id
        record = store.capture("submission", "TS-1", QuarantineReason.MANUAL, "hold")
        assert reviewer.review(record.id, "alice", "resolved").job_id == live

    def test_second_review_raises(self, reviewer, store):
        record = store.capture("submission", "TS-1", QuarantineReason.MANUAL, "hold")
        reviewer.review(record.id, "alice", "rejected")
        with pytest.raises(AlreadyResolvedError):
            reviewer.review(record.id, "bob", "resolved")

    def test_unknown_record(self, reviewer):
        with pytest.raises(NotFoundError):
            reviewer.review("missing", "alice", "resolved")

    def test_invalid_decision(self, reviewer, store):
        record = store.capture("submission", "TS-1", QuarantineReason.MANUAL, "hold")
        with pytest.raises(InvalidConfigError):
            reviewer.review(record.id, "alice", "pending")

    def test_invalid_correction_leaves_record_in_review(
        self, reviewer, manager, repository, make_submission, store
    ):
        repository.save(make_submission("TS-1"))
        record = store.capture("submission", "TS-1", QuarantineReason.VALIDATION_FAILED, "bad")

        with pytest.raises(DataValidationError) as exc_info:
            reviewer.review(record.id, "alice", "resolved", corrected_data={"amount": -5})

        assert "Amount is negative" in exc_info.value.issues
        current = store.require(record.id)
        assert current.status is QuarantineStatus.IN_REVIEW
        assert current.corrected_data == {"amount": -5}
        assert "correction_rejected" in _audit_actions(store, record.id)
        assert repository.get("TS-1").amount == 1200.0
        assert manager.jobs.get_live("TS-1") is None

    def test_correction_accepted_under_override(self, reviewer, manager, repository, make_submission, store):
        repository.save(make_submission("TS-1"))
        record = store.capture("submission", "TS-1", QuarantineReason.VALIDATION_FAILED, "bad")
        manager.overrides.create("submission", "TS-1", ["amount_non_negative"], "refund week", "lead")

        result = reviewer.review(record.id, "alice", "resolved", corrected_data={"amount": -5})

        assert result.record.status is QuarantineStatus.RESOLVED
        assert repository.get("TS-1").amount == -5.0
        assert result.job_id is not None

    def test_correction_for_other_entity_types_rejected(self, reviewer, store):
        record = store.capture("project", "P-1", QuarantineReason.VALIDATION_FAILED, "bad")
        with pytest.raises(DataValidationError, match="project"):
            reviewer.review(record.id, "alice", "resolved", corrected_data={"amount": 1})

    def test_resolving_authorization_releases_hold(self, reviewer, manager, store):
        job_id = manager.enqueue("TS-1").job_id
        manager.dispatch_next("w1")
        manager.report_outcome(job_id, "w1", JobOutcome.failed(AuthorizationError("revoked")))
        assert manager.metrics()["held"] is True

        record = store.get_open("submission", "TS-1")
        reviewer.review(record.id, "ops", "resolved", notes="token rotated")

        assert manager.metrics()["held"] is False
        assert manager.dispatch_next("w1").entity_id == "TS-1"


# ── Bulk ─────────────────────────────────────────────────────


class TestBulkUpdate:
    def test_per_record_results(self, reviewer, store):
        a = store.capture("submission", "TS-1", QuarantineReason.MANUAL, "")
        b = store.capture("submission", "TS-2", QuarantineReason.MANUAL, "")
        reviewer.review(b.id, "alice", "rejected")

        results = reviewer.bulk_update([a.id, b.id, "missing"], {"status": "resolved", "notes": "ok"}, "bob")

        assert [r.success for r in results] == [True, False, False]
        assert results[0].job_id is not None
        assert "already rejected" in results[1].error
        assert "not found" in results[2].error
        assert store.require(a.id).status is QuarantineStatus.RESOLVED

    def test_bulk_in_review(self, reviewer, store):
        a = store.capture("submission", "TS-1", QuarantineReason.MANUAL, "")
        results = reviewer.bulk_update([a.id], {"status": "in_review"}, "bob")
        assert results[0].success is True
        assert store.require(a.id).status is QuarantineStatus.IN_REVIEW

    @pytest.mark.parametrize("updates", [{"status": "pending"}, {"status": "done"}, {}])
    def test_invalid_status(self, reviewer, updates):
        with pytest.raises(InvalidConfigError):
            reviewer.bulk_update(["x"], updates, "bob")


# ── Manual quarantine ────────────────────────────────────────


class TestManualQuarantine:
    def test_snapshots_submission(self, reviewer, repository, make_submission):
        repository.save(make_submission("TS-1"))
        record = reviewer.quarantine_manually("submission", "TS-1", "customer dispute", "ops")
        assert record.reason is QuarantineReason.MANUAL
        assert record.priority is Priority.MEDIUM
        assert record.entity_data["id"] == "TS-1"
        assert reviewer.store.audit(record.id)[0]["actor"] == "ops"

    def test_unknown_entity_type(self, reviewer):
        with pytest.raises(InvalidConfigError):
            reviewer.quarantine_manually("invoice", "I-1", "", "ops")

    def test_entity_id_required(self, reviewer):
        with pytest.raises(InvalidConfigError):
            reviewer.quarantine_manually("submission", "", "", "ops")


# ── Recovery ─────────────────────────────────────────────────


class TestRecover:
    @pytest.fixture
    def worklist(self, store, repository, make_submission, clock):
        repository.save(make_submission("TS-2"))
        repository.save(make_submission("TS-3", amount=-1.0))
        records = {}
        for entity_id, reason in (
            ("TS-1", QuarantineReason.RETRIES_EXHAUSTED),
            ("TS-2", QuarantineReason.VALIDATION_FAILED),
            ("TS-3", QuarantineReason.VALIDATION_FAILED),
            ("TS-4", QuarantineReason.CONFLICT),
            ("TS-5", QuarantineReason.MANUAL),
        ):
            records[entity_id] = store.capture("submission", entity_id, reason, "")
            clock.advance(seconds=1)
        return records

    def test_dry_run_changes_nothing(self, reviewer, manager, store, worklist):
        report = reviewer.recover(dry_run=True)
        assert report.dry_run is True
        assert report.examined == 5
        assert report.recovered == 2
        assert report.failed == 3
        assert set(report.recovered_ids) == {worklist["TS-1"].id, worklist["TS-2"].id}
        assert store.require(worklist["TS-1"].id).status is QuarantineStatus.PENDING
        assert manager.jobs.get_live("TS-1") is None

    def test_recover_resolves_and_reenqueues(self, reviewer, manager, store, worklist):
        report = reviewer.recover()
        assert report.recovered == 2
        for entity_id in ("TS-1", "TS-2"):
            record = store.require(worklist[entity_id].id)
            assert record.status is QuarantineStatus.RESOLVED
            assert record.resolved_by == "system"
            assert manager.jobs.get_live(entity_id) is not None
        errors = " ".join(report.errors)
        assert "still invalid: Amount is negative" in errors
        assert "conflict requires manual review" in errors
        assert "manual requires manual review" in errors

    def test_override_makes_record_recoverable(self, reviewer, manager, store, worklist):
        manager.overrides.create("submission", "TS-3", ["amount_non_negative"], "refund week", "lead")
        report = reviewer.recover()
        assert report.recovered == 3
        assert store.require(worklist["TS-3"].id).status is QuarantineStatus.RESOLVED

    def test_expired_override_no_longer_recovers(self, reviewer, manager, clock, worklist):
        manager.overrides.create(
            "submission", "TS-3", ["amount_non_negative"], "refund week", "lead",
            expires_at=clock() + timedelta(minutes=5),
        )
        clock.advance(minutes=6)
        report = reviewer.recover(dry_run=True)
        assert worklist["TS-3"].id not in report.recovered_ids

    def test_priority_only(self, reviewer, worklist):
        report = reviewer.recover(dry_run=True, priority_only=True)
        assert report.examined == 1
        assert report.recovered == 0

    def test_max_records(self, reviewer, worklist):
        assert reviewer.recover(dry_run=True, max_records=2).examined == 2
        with pytest.raises(InvalidConfigError):
            reviewer.recover(max_records=0)
