"""Tests for ``ledgersync.execution.classifier``: retry vs quarantine vs fatal."""

from __future__ import annotations

import pytest

from ledgersync.core.enums import Priority
from ledgersync.core.errors import (
    AuthenticationError,
    AuthorizationError,
    BusinessRuleError,
    ConflictError,
    DataValidationError,
    ErrorCategory,
    InternalError,
    LedgerTimeoutError,
    NetworkError,
    RateLimitError,
)
from ledgersync.execution.classifier import FailureKind, classify, failure_kind
from ledgersync.quarantine.models import QuarantineReason


class TestFailureKind:
    @pytest.mark.parametrize(
        "error, kind",
        [
            (NetworkError("x"), FailureKind.TRANSIENT),
            (LedgerTimeoutError("x"), FailureKind.TRANSIENT),
            (RateLimitError(), FailureKind.TRANSIENT),
            (ConnectionResetError(), FailureKind.TRANSIENT),
            (AuthenticationError("x"), FailureKind.AUTHORIZATION),
            (DataValidationError("x"), FailureKind.DATA),
            (BusinessRuleError("x"), FailureKind.DATA),
            (ConflictError("x"), FailureKind.CONFLICT),
            (InternalError("x"), FailureKind.FATAL),
            (KeyError("x"), FailureKind.FATAL),
        ],
    )
    def test_mapping(self, error, kind):
        assert failure_kind(error) is kind


class TestClassifyTransient:
    def test_retry_while_attempts_remain(self):
        result = classify(RateLimitError(retry_after=30), attempt=1, max_attempts=3)
        assert result.retryable is True
        assert result.quarantine is False
        assert result.retry_after == 30
        assert result.category == ErrorCategory.RATE_LIMIT

    def test_exhausted_goes_to_quarantine(self):
        result = classify(NetworkError("reset"), attempt=3, max_attempts=3)
        assert result.retryable is False
        assert result.quarantine is True
        assert result.reason is QuarantineReason.RETRIES_EXHAUSTED
        assert result.priority is Priority.LOW

    def test_exhausted_high_job_bumped(self):
        result = classify(NetworkError("reset"), 5, 5, job_priority=Priority.HIGH)
        assert result.priority is Priority.MEDIUM


class TestClassifyPermanent:
    def test_validation_never_retried(self):
        result = classify(DataValidationError("missing email"), attempt=1, max_attempts=5)
        assert result.retryable is False
        assert result.quarantine is True
        assert result.reason is QuarantineReason.VALIDATION_FAILED
        assert result.priority is Priority.MEDIUM

    def test_business_rule_reason(self):
        result = classify(BusinessRuleError("closed period"), 1, 3)
        assert result.reason is QuarantineReason.BUSINESS_RULE_VIOLATION

    def test_conflict_is_high(self):
        result = classify(ConflictError("duplicate"), 1, 3, job_priority=Priority.LOW)
        assert result.reason is QuarantineReason.CONFLICT
        assert result.priority is Priority.HIGH

    def test_authorization_halts_dispatch(self):
        result = classify(AuthorizationError("scope"), 1, 3)
        assert result.kind is FailureKind.AUTHORIZATION
        assert result.halt_dispatch is True
        assert result.reason is QuarantineReason.AUTHORIZATION
        assert result.priority is Priority.HIGH

    def test_validation_on_high_job_bumped(self):
        result = classify(DataValidationError("x"), 1, 3, job_priority=Priority.HIGH)
        assert result.priority is Priority.HIGH

    def test_fatal_not_quarantined(self):
        result = classify(InternalError("bug"), 1, 3)
        assert result.is_fatal
        assert result.quarantine is False
        assert result.priority is None
        assert result.halt_dispatch is False
