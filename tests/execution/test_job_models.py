"""Tests for ``ledgersync.execution.models``."""

from __future__ import annotations

import pytest

from ledgersync.core.enums import Priority
from ledgersync.core.errors import InvalidConfigError, InvalidTransitionError, NetworkError
from ledgersync.execution.models import (
    EnqueueOptions,
    JobOutcome,
    JobState,
    QueueName,
    SyncOperation,
    TriggerSource,
    validate_job_transition,
)


class TestJobState:
    def test_live_and_terminal(self):
        assert {s for s in JobState if s.is_live} == {
            JobState.WAITING,
            JobState.ACTIVE,
            JobState.DELAYED,
        }
        assert {s for s in JobState if s.is_terminal} == {
            JobState.COMPLETED,
            JobState.FAILED,
            JobState.CANCELLED,
        }

    @pytest.mark.parametrize(
        "current, target",
        [
            (JobState.WAITING, JobState.ACTIVE),
            (JobState.ACTIVE, JobState.DELAYED),
            (JobState.ACTIVE, JobState.WAITING),
            (JobState.DELAYED, JobState.CANCELLED),
            (JobState.FAILED, JobState.WAITING),
        ],
    )
    def test_allowed(self, current, target):
        validate_job_transition(current, target)

    @pytest.mark.parametrize(
        "current, target",
        [
            (JobState.COMPLETED, JobState.WAITING),
            (JobState.CANCELLED, JobState.ACTIVE),
            (JobState.ACTIVE, JobState.CANCELLED),
            (JobState.WAITING, JobState.COMPLETED),
        ],
    )
    def test_rejected(self, current, target):
        with pytest.raises(InvalidTransitionError):
            validate_job_transition(current, target)


class TestEnqueueOptions:
    def test_defaults(self):
        opts = EnqueueOptions()
        assert opts.operation is SyncOperation.UPDATE
        assert opts.priority is Priority.MEDIUM
        assert opts.trigger is TriggerSource.MANUAL
        assert opts.queue_name is None
        assert opts.entity_type == "submission"

    def test_strings_are_coerced(self):
        opts = EnqueueOptions(operation="create", priority="high", trigger="event", queue_name="batch")
        assert opts.operation is SyncOperation.CREATE
        assert opts.priority is Priority.HIGH
        assert opts.trigger is TriggerSource.EVENT
        assert opts.queue_name is QueueName.BATCH

    @pytest.mark.parametrize(
        "kwargs, key",
        [
            ({"priority": "urgent"}, "priority"),
            ({"operation": "delete"}, "operation"),
            ({"queue_name": "express"}, "queue_name"),
            ({"max_attempts": 0}, "max_attempts"),
            ({"max_attempts": 21}, "max_attempts"),
            ({"metadata": ["x"]}, "metadata"),
        ],
    )
    def test_invalid_values(self, kwargs, key):
        with pytest.raises(InvalidConfigError) as exc_info:
            EnqueueOptions(**kwargs)
        assert exc_info.value.key == key


class TestJobOutcome:
    def test_succeeded(self):
        outcome = JobOutcome.succeeded("L-1", result={"replayed": False}, duration_seconds=0.2)
        assert outcome.success is True
        assert outcome.external_ref == "L-1"
        assert outcome.error is None

    def test_failed(self):
        err = NetworkError("reset")
        outcome = JobOutcome.failed(err)
        assert outcome.success is False
        assert outcome.error is err
