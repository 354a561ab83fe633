"""Error Classifier: decide retry vs. quarantine vs. fatal for a failed sync.

``classify`` is a pure function shared by the Sync Queue Manager and the
Batch Migration Controller.  It never looks at message text, only at the
error type raised by the Ledger Client Adapter.

Rule table::

    kind           error types                         retry             quarantine            priority
    ─────────────  ──────────────────────────────────  ────────────────  ────────────────────  ────────
    transient      NetworkError, LedgerTimeoutError,   while attempt <   only when exhausted   low
                   RateLimitError, TransientError,     max_attempts      (retries_exhausted)
                   builtin ConnectionError/TimeoutError
    authorization  AuthError and subclasses            never             immediately           high  (+ halts dispatch)
    data           DataValidationError                 never             immediately           medium
                   BusinessRuleError                                     (business_rule)       medium
    conflict       ConflictError                       never             immediately           high
    fatal          InternalError, anything else        never             never                 -

Quarantine priority comes from :func:`ledgersync.quarantine.models.priority_for`,
so a failure of a ``high`` priority job is bumped one tier.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ledgersync.core.errors import (
    AuthError,
    BusinessRuleError,
    ConflictError,
    DataValidationError,
    ErrorCategory,
    LedgerSyncError,
    TransientError,
    categorize_error,
    get_retry_after,
)
from ledgersync.core.enums import Priority
from ledgersync.quarantine.models import QuarantineReason, priority_for


class FailureKind(str, Enum):
    TRANSIENT = "transient"
    DATA = "data"
    CONFLICT = "conflict"
    AUTHORIZATION = "authorization"
    FATAL = "fatal"


@dataclass(frozen=True)
class Classification:
    """Decision for one failed attempt.

    Attributes:
        kind: Failure family the error belongs to.
        retryable: Schedule another attempt (job → delayed).
        quarantine: Capture a QuarantineRecord (job → failed).
        priority: Quarantine priority; ``None`` when not quarantined.
        reason: Quarantine reason; ``None`` when not quarantined.
        halt_dispatch: Suspend all queues until credentials are fixed.
        retry_after: Ledger-supplied minimum delay in seconds.
        category: Error category for logs and job rows.
    """

    kind: FailureKind
    retryable: bool
    quarantine: bool
    priority: Priority | None
    reason: QuarantineReason | None = None
    halt_dispatch: bool = False
    retry_after: int | None = None
    category: ErrorCategory = ErrorCategory.UNKNOWN

    @property
    def is_fatal(self) -> bool:
        return self.kind is FailureKind.FATAL


def failure_kind(error: BaseException) -> FailureKind:
    """Map an exception onto its failure family."""
    if isinstance(error, AuthError):
        return FailureKind.AUTHORIZATION
    if isinstance(error, ConflictError):
        return FailureKind.CONFLICT
    if isinstance(error, DataValidationError):
        return FailureKind.DATA
    if isinstance(error, TransientError):
        return FailureKind.TRANSIENT
    if isinstance(error, LedgerSyncError):
        return FailureKind.TRANSIENT if error.retryable else FailureKind.FATAL
    if isinstance(error, (ConnectionError, TimeoutError)):
        return FailureKind.TRANSIENT
    return FailureKind.FATAL


def classify(
    error: BaseException,
    attempt: int,
    max_attempts: int,
    *,
    job_priority: Priority | None = None,
) -> Classification:
    """Classify a failure of attempt number *attempt* (1-based).

    Args:
        error: Exception raised by the Ledger Client Adapter.
        attempt: Attempts made so far, including the one that failed.
        max_attempts: Attempt budget of the job.
        job_priority: Priority of the failing job (business impact).
    """
    kind = failure_kind(error)
    category = categorize_error(error) if isinstance(error, Exception) else ErrorCategory.UNKNOWN

    if kind is FailureKind.TRANSIENT:
        if attempt < max_attempts:
            return Classification(
                kind=kind,
                retryable=True,
                quarantine=False,
                priority=None,
                retry_after=get_retry_after(error) if isinstance(error, Exception) else None,
                category=category,
            )
        reason = QuarantineReason.RETRIES_EXHAUSTED
        return Classification(
            kind=kind,
            retryable=False,
            quarantine=True,
            priority=priority_for(reason, job_priority),
            reason=reason,
            category=category,
        )

    if kind is FailureKind.FATAL:
        return Classification(
            kind=kind, retryable=False, quarantine=False, priority=None, category=category
        )

    if kind is FailureKind.AUTHORIZATION:
        reason = QuarantineReason.AUTHORIZATION
    elif kind is FailureKind.CONFLICT:
        reason = QuarantineReason.CONFLICT
    elif isinstance(error, BusinessRuleError):
        reason = QuarantineReason.BUSINESS_RULE_VIOLATION
    else:
        reason = QuarantineReason.VALIDATION_FAILED

    return Classification(
        kind=kind,
        retryable=False,
        quarantine=True,
        priority=priority_for(reason, job_priority),
        reason=reason,
        halt_dispatch=kind is FailureKind.AUTHORIZATION,
        category=category,
    )
