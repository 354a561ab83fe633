"""Tests for ledgersync.ops.queues: queue status and control."""

from ledgersync.core.errors import DataValidationError
from ledgersync.ops.queues import control_queue, get_queue_status
from ledgersync.ops.requests import EnqueueSyncRequest, QueueControlRequest, QueueStatusRequest
from ledgersync.ops.sync import enqueue_sync


def _fail_one(ctx, worker, ledger, entity_id="TS-001"):
    ledger.fail(entity_id, DataValidationError("ledger rejected amount"))
    enqueue_sync(ctx, EnqueueSyncRequest(entity_id=entity_id))
    worker.drain()


class TestQueueStatus:
    def test_all_queues(self, ctx):
        enqueue_sync(ctx, EnqueueSyncRequest(entity_id="TS-1", priority="high"))
        result = get_queue_status(ctx)
        assert result.success is True
        assert [q["queue"] for q in result.data["queues"]] == ["high", "normal", "batch"]
        assert result.data["totals"]["counts"]["waiting"] == 1

    def test_one_queue(self, ctx):
        result = get_queue_status(ctx, QueueStatusRequest(queue_name="batch"))
        assert result.data["queue"] == "batch"
        assert result.data["error_rate"] == 0.0

    def test_unknown_queue(self, ctx):
        result = get_queue_status(ctx, QueueStatusRequest(queue_name="urgent"))
        assert result.error.code == "NOT_FOUND"


class TestQueueControl:
    def test_pause_and_resume(self, ctx):
        paused = control_queue(ctx, QueueControlRequest(queue_name="normal", action="pause"))
        assert paused.data.paused is True
        assert get_queue_status(ctx, QueueStatusRequest(queue_name="normal")).data["paused"] is True
        resumed = control_queue(ctx, QueueControlRequest(queue_name="normal", action="resume"))
        assert resumed.data.paused is False

    def test_pause_needs_queue(self, ctx):
        result = control_queue(ctx, QueueControlRequest(action="pause"))
        assert result.error.code == "VALIDATION_FAILED"

    def test_unknown_action(self, ctx):
        result = control_queue(ctx, QueueControlRequest(queue_name="high", action="drain"))
        assert result.error.code == "VALIDATION_FAILED"
        assert "retryFailed" in result.error.details["allowed"]

    def test_retry_failed_camel_case(self, ctx, worker, ledger, seed_submissions):
        seed_submissions(1)
        _fail_one(ctx, worker, ledger)
        result = control_queue(ctx, QueueControlRequest(action="retryFailed"))
        assert result.data.action == "retry_failed"
        assert result.data.affected == 1
        assert get_queue_status(ctx).data["totals"]["counts"]["waiting"] == 1

    def test_clear_failed(self, ctx, worker, ledger, seed_submissions):
        seed_submissions(1)
        _fail_one(ctx, worker, ledger)
        result = control_queue(ctx, QueueControlRequest(queue_name="normal", action="clear-failed"))
        assert result.data.affected == 1
        assert get_queue_status(ctx).data["totals"]["counts"]["failed"] == 0

    def test_dry_run_does_not_pause(self, dry_ctx, ctx):
        result = control_queue(dry_ctx, QueueControlRequest(queue_name="high", action="pause"))
        assert result.success is True
        assert get_queue_status(ctx, QueueStatusRequest(queue_name="high")).data["paused"] is False
