"""Tests for ledgersync.ops.quarantine: worklist, review, bulk, recovery."""

import pytest

from ledgersync.ops.quarantine import (
    bulk_update_quarantine,
    get_quarantine_record,
    get_quarantine_stats,
    list_quarantine,
    quarantine_entity,
    recover_quarantine,
    review_quarantine,
)
from ledgersync.ops.requests import (
    BulkUpdateQuarantineRequest,
    GetQuarantineRequest,
    ListQuarantineRequest,
    ManualQuarantineRequest,
    RecoverQuarantineRequest,
    ReviewQuarantineRequest,
)
from ledgersync.quarantine.models import QuarantineReason


@pytest.fixture()
def captured(manager, clock, seed_submissions):
    """Three open records: one per priority tier, oldest is low."""
    seed_submissions(3)
    store = manager.quarantine
    low = store.capture("submission", "TS-001", QuarantineReason.RETRIES_EXHAUSTED, "gave up")
    clock.advance(seconds=1)
    medium = store.capture("submission", "TS-002", QuarantineReason.VALIDATION_FAILED, "bad entry")
    clock.advance(seconds=1)
    high = store.capture("submission", "TS-003", QuarantineReason.CONFLICT, "duplicate in ledger")
    clock.advance(seconds=1)
    return {"low": low.id, "medium": medium.id, "high": high.id}


class TestListQuarantine:
    def test_priority_order(self, ctx, captured):
        result = list_quarantine(ctx, ListQuarantineRequest())
        assert result.total == 3
        assert [r.priority for r in result.data] == ["high", "medium", "low"]

    def test_filters(self, ctx, captured):
        result = list_quarantine(ctx, ListQuarantineRequest(priorities=["low", "medium"]))
        assert {r.entity_id for r in result.data} == {"TS-001", "TS-002"}
        result = list_quarantine(ctx, ListQuarantineRequest(reason="conflict"))
        assert [r.id for r in result.data] == [captured["high"]]

    def test_bad_filter_value(self, ctx):
        result = list_quarantine(ctx, ListQuarantineRequest(statuses=["archived"]))
        assert result.success is False
        assert result.error.code == "VALIDATION_FAILED"


class TestRecordReads:
    def test_get_with_audit(self, ctx, captured):
        result = get_quarantine_record(ctx, GetQuarantineRequest(record_id=captured["high"]))
        assert result.data["record"]["reason"] == "conflict"
        assert result.data["audit"][0]["action"] == "captured"

    def test_get_unknown(self, ctx):
        result = get_quarantine_record(ctx, GetQuarantineRequest(record_id="q-missing"))
        assert result.error.code == "NOT_FOUND"

    def test_stats(self, ctx, captured):
        stats = get_quarantine_stats(ctx).data
        assert stats["total"] == 3
        assert stats["open"] == 3
        assert stats["by_priority"] == {"high": 1, "low": 1, "medium": 1}


class TestReviewQuarantine:
    def test_resolve_reenqueues(self, ctx, captured, manager):
        result = review_quarantine(
            ctx, ReviewQuarantineRequest(record_id=captured["high"], decision="resolved", notes="dup removed")
        )
        assert result.success is True
        assert result.data.record.status == "resolved"
        assert result.data.record.resolved_by == "ops-admin"
        job = manager.get_job(result.data.job_id)
        assert job.entity_id == "TS-003"

    def test_correction_then_resolve(self, ctx, captured, repository):
        result = review_quarantine(
            ctx,
            ReviewQuarantineRequest(
                record_id=captured["medium"], decision="resolved", corrected_data={"amount": 980.0}
            ),
        )
        assert result.success is True
        assert result.data.record.corrected_data == {"amount": 980.0}
        assert repository.get("TS-002").amount == 980.0

    def test_invalid_correction(self, ctx, captured):
        result = review_quarantine(
            ctx,
            ReviewQuarantineRequest(
                record_id=captured["medium"], decision="resolved", corrected_data={"amount": -1}
            ),
        )
        assert result.error.code == "VALIDATION_FAILED"
        record = get_quarantine_record(ctx, GetQuarantineRequest(record_id=captured["medium"]))
        assert record.data["record"]["status"] == "in_review"

    def test_already_resolved(self, ctx, captured):
        request = ReviewQuarantineRequest(record_id=captured["low"], decision="rejected")
        assert review_quarantine(ctx, request).success is True
        assert review_quarantine(ctx, request).error.code == "ALREADY_RESOLVED"

    def test_bad_decision(self, ctx, captured):
        result = review_quarantine(ctx, ReviewQuarantineRequest(record_id=captured["low"], decision="maybe"))
        assert result.error.code == "VALIDATION_FAILED"


class TestBulkAndRecovery:
    def test_bulk_partial_success(self, ctx, captured):
        result = bulk_update_quarantine(
            ctx,
            BulkUpdateQuarantineRequest(
                record_ids=[captured["low"], "q-missing"], status="rejected", notes="noise"
            ),
        )
        assert result.success is True
        assert result.data.succeeded == 1
        assert result.data.failed == 1
        assert result.data.results[1]["record_id"] == "q-missing"

    def test_bulk_needs_ids(self, ctx):
        result = bulk_update_quarantine(ctx, BulkUpdateQuarantineRequest(status="rejected"))
        assert result.error.code == "VALIDATION_FAILED"

    def test_recover_dry_run(self, ctx, captured):
        result = recover_quarantine(ctx, RecoverQuarantineRequest(dry_run=True))
        # Conflict records always need a human.
        assert result.data["recovered"] == 2
        assert result.data["failed"] == 1
        assert get_quarantine_stats(ctx).data["open"] == 3

    def test_recover_closes_records(self, ctx, captured):
        result = recover_quarantine(ctx, RecoverQuarantineRequest())
        assert sorted(result.data["recovered_ids"]) == sorted([captured["low"], captured["medium"]])
        assert get_quarantine_stats(ctx).data["open"] == 1

    def test_manual_quarantine(self, ctx, seed_submissions):
        seed_submissions(1)
        result = quarantine_entity(
            ctx, ManualQuarantineRequest(entity_id="TS-001", detail="client disputes hours")
        )
        assert result.data.reason == "manual"
        assert result.data.priority == "medium"

    def test_manual_quarantine_needs_entity(self, ctx):
        result = quarantine_entity(ctx, ManualQuarantineRequest(detail="?"))
        assert result.error.code == "VALIDATION_FAILED"
