"""Tests for ``ledgersync.execution.retry``."""

from __future__ import annotations

import pytest

from ledgersync.core.enums import Priority
from ledgersync.execution.models import QueueName, TriggerSource
from ledgersync.execution.retry import QUEUE_POLICIES, ExponentialBackoff, backoff_for, select_queue


class TestExponentialBackoff:
    def test_doubles_without_jitter(self):
        backoff = ExponentialBackoff(base_delay=2.0, jitter=False)
        assert [backoff.next_delay(a) for a in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 16.0]

    def test_capped_at_max_delay(self):
        backoff = ExponentialBackoff(base_delay=10.0, max_delay=60.0, jitter=False)
        assert backoff.next_delay(10) == 60.0

    def test_retry_after_is_a_floor(self):
        backoff = ExponentialBackoff(base_delay=2.0, jitter=False)
        assert backoff.next_delay(1, retry_after=30) == 30.0
        assert backoff.next_delay(5, retry_after=1) == 32.0

    def test_jitter_stays_in_range(self):
        backoff = ExponentialBackoff(base_delay=100.0, jitter=True, jitter_range=0.25)
        for _ in range(50):
            assert 75.0 <= backoff.next_delay(1) <= 125.0

    def test_attempt_zero_treated_as_first(self):
        assert ExponentialBackoff(base_delay=5.0, jitter=False).next_delay(0) == 5.0


class TestQueuePolicies:
    def test_policy_table(self):
        high, normal, batch = (QUEUE_POLICIES[q] for q in (QueueName.HIGH, QueueName.NORMAL, QueueName.BATCH))
        assert (high.concurrency, high.max_attempts, high.backoff_base_seconds) == (3, 5, 2.0)
        assert (normal.concurrency, normal.max_attempts, normal.backoff_base_seconds) == (5, 3, 5.0)
        assert (batch.concurrency, batch.max_attempts, batch.backoff_base_seconds) == (2, 2, 10.0)

    def test_backoff_for_uses_policy_base(self):
        backoff = backoff_for(QueueName.BATCH, jitter_range=0.0)
        assert backoff.jitter is False
        assert backoff.next_delay(2) == 20.0


class TestSelectQueue:
    @pytest.mark.parametrize(
        "priority, trigger, metadata, migration_id, expected",
        [
            (Priority.HIGH, TriggerSource.MANUAL, None, None, QueueName.HIGH),
            (Priority.MEDIUM, TriggerSource.EVENT, {"reason": "approval"}, None, QueueName.HIGH),
            (Priority.MEDIUM, TriggerSource.EVENT, {"reason": "edit"}, None, QueueName.NORMAL),
            (Priority.LOW, TriggerSource.SCHEDULED, None, None, QueueName.NORMAL),
            (Priority.HIGH, TriggerSource.EVENT, {"reason": "approval"}, "m-1", QueueName.BATCH),
        ],
    )
    def test_routing(self, priority, trigger, metadata, migration_id, expected):
        assert select_queue(priority, trigger, metadata, migration_id) is expected
