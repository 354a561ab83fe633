"""
Structured error types for ledgersync.

Every failure that crosses a component boundary is expressed as a
:class:`LedgerSyncError` subclass.  The error carries the metadata the
pipeline needs to decide what to do next: its category, whether retrying
can help, how long to wait, and a structured context for logs.

Manifesto:
    - **Typed hierarchy:** The Ledger Client Adapter raises a distinct type
      per failure family so the classifier never inspects message text.
    - **Explicit retry semantics:** Each type declares ``default_retryable``.
    - **Rich context:** ``ErrorContext`` carries entity/job/HTTP details.
    - **Chaining:** The driver exception is preserved as ``cause``.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                       LedgerSyncError                        │
        │   (category, retryable, retry_after, context, cause)         │
        ├──────────────────────────────────────────────────────────────┤
        │  TransientError        AuthError          DataValidationError │
        │  (retryable)           (AUTH)             (VALIDATION)        │
        │    NetworkError          Authentication                       │
        │    LedgerTimeoutError    Authorization    ConflictError       │
        │    RateLimitError                         (CONFLICT)          │
        │                                                               │
        │  ConfigError           NotFoundError      InternalError       │
        │    InvalidConfigError  InvalidTransition  IntegrityError      │
        │                        AlreadyResolved                        │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> err = RateLimitError(retry_after=30)
    >>> err.retryable, err.retry_after
    (True, 30)
    >>> DataValidationError("amount missing", field="amount").to_dict()["field"]
    'amount'

Tags:
    error-handling, exception-hierarchy, retry-logic, ledgersync
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing.

    Categories are grouped by their typical retry behavior:

    - **Transport (transient):** NETWORK, TIMEOUT, RATE_LIMIT
    - **Remote rejections:** AUTH, VALIDATION, CONFLICT, BUSINESS_RULE
    - **Local:** CONFIG, DATABASE, NOT_FOUND, STATE, INTERNAL, UNKNOWN
    """

    # Transport errors (usually transient)
    NETWORK = "NETWORK"           # Connection refused, DNS, reset
    TIMEOUT = "TIMEOUT"           # Request exceeded deadline
    RATE_LIMIT = "RATE_LIMIT"     # Ledger throttled the caller

    # Remote rejections (never retryable)
    AUTH = "AUTH"                 # Credentials missing, expired, or revoked
    VALIDATION = "VALIDATION"     # Schema mismatch, missing required field
    CONFLICT = "CONFLICT"         # Duplicate or contradictory ledger state
    BUSINESS_RULE = "BUSINESS_RULE"

    # Local errors
    CONFIG = "CONFIG"             # Invalid settings or operation config
    DATABASE = "DATABASE"         # Storage constraint or query failure
    NOT_FOUND = "NOT_FOUND"       # Unknown id on a control-plane call
    STATE = "STATE"               # Illegal lifecycle transition
    INTERNAL = "INTERNAL"         # Bugs, malformed internal state
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        entity_id: Domain record the operation concerned.
        job_id: Sync job being processed.
        migration_id: Batch migration that generated the job.
        operation: Sync operation (create/update/reconcile).
        url: Ledger URL that was being accessed.
        http_status: HTTP status code returned by the ledger.
        metadata: Additional key-value pairs.
    """

    entity_id: str | None = None
    job_id: str | None = None
    migration_id: str | None = None
    operation: str | None = None
    url: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["entity_id", "job_id", "migration_id", "operation", "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class LedgerSyncError(Exception):
    """Base exception for all ledgersync errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that a
    bare ``raise NetworkError("...")`` already carries the right semantics.
    Callers may still override either per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> LedgerSyncError:
        """Add context to this error (fluent API).

        Usage:
            raise ConflictError("duplicate invoice").with_context(
                entity_id="TS-100", http_status=409
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Retryable)
# =============================================================================


class TransientError(LedgerSyncError):
    """Temporary error that may succeed on retry.

    Raised for conditions that resolve on their own: dropped connections,
    timeouts, throttling, 5xx responses from the ledger.
    """

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class NetworkError(TransientError):
    """Connection-level failure talking to the ledger."""

    default_category = ErrorCategory.NETWORK


class LedgerTimeoutError(TransientError):
    """The ledger did not answer before the request deadline."""

    default_category = ErrorCategory.TIMEOUT


class RateLimitError(TransientError):
    """The ledger rate limit was exceeded."""

    default_category = ErrorCategory.RATE_LIMIT

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: int = 60,
        **kwargs: Any,
    ):
        super().__init__(message, retry_after=retry_after, **kwargs)


# =============================================================================
# REMOTE REJECTIONS (Never retryable)
# =============================================================================


class AuthError(LedgerSyncError):
    """Authentication or authorization failure against the ledger."""

    default_category = ErrorCategory.AUTH
    default_retryable = False


class AuthenticationError(AuthError):
    """Credentials were missing, expired, or revoked."""


class AuthorizationError(AuthError):
    """Credentials are valid but lack permission for the operation."""


class DataValidationError(LedgerSyncError):
    """The record is malformed or fails an entity-level rule.

    Never retryable: the data must be corrected first.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        issues: list[str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.constraint = constraint
        self.issues = issues or []

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        if self.constraint:
            result["constraint"] = self.constraint
        if self.issues:
            result["issues"] = list(self.issues)
        return result


class BusinessRuleError(DataValidationError):
    """The record is well-formed but violates a business rule."""

    default_category = ErrorCategory.BUSINESS_RULE


class ConflictError(LedgerSyncError):
    """The ledger reports a duplicate or contradictory record."""

    default_category = ErrorCategory.CONFLICT
    default_retryable = False


class InternalError(LedgerSyncError):
    """Programming error or malformed internal state.

    No entity-level fix helps, so jobs failing with this are never quarantined.
    """

    default_category = ErrorCategory.INTERNAL
    default_retryable = False


# =============================================================================
# CONTROL-PLANE ERRORS
# =============================================================================


class ConfigError(LedgerSyncError):
    """Configuration error. Never retryable."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}")


class NotFoundError(LedgerSyncError):
    """A control-plane call referenced an unknown id."""

    default_category = ErrorCategory.NOT_FOUND

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class InvalidTransitionError(LedgerSyncError):
    """A lifecycle transition was requested from a state that forbids it."""

    default_category = ErrorCategory.STATE

    def __init__(self, kind: str, current: str, target: str):
        self.kind = kind
        self.current = current
        self.target = target
        super().__init__(f"Invalid {kind} transition: {current} -> {target}")


class AlreadyResolvedError(LedgerSyncError):
    """The quarantine record is already terminal."""

    default_category = ErrorCategory.STATE

    def __init__(self, record_id: str, status: str):
        self.record_id = record_id
        self.status = status
        super().__init__(f"Quarantine record {record_id} is already {status}")


class DatabaseError(LedgerSyncError):
    """Storage query or transaction error."""

    default_category = ErrorCategory.DATABASE


class IntegrityError(DatabaseError):
    """A storage constraint (unique index, foreign key) was violated."""


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, LedgerSyncError):
        return error.retryable
    # builtins TimeoutError and ConnectionError are both OSError subclasses
    return isinstance(error, (ConnectionError, TimeoutError))


def get_retry_after(error: Exception) -> int | None:
    """Get retry delay from error, if specified."""
    if isinstance(error, LedgerSyncError):
        return error.retry_after
    return None


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, LedgerSyncError):
        return error.category
    if isinstance(error, TimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(error, ConnectionError):
        return ErrorCategory.NETWORK
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "LedgerSyncError",
    "TransientError",
    "NetworkError",
    "LedgerTimeoutError",
    "RateLimitError",
    "AuthError",
    "AuthenticationError",
    "AuthorizationError",
    "DataValidationError",
    "BusinessRuleError",
    "ConflictError",
    "InternalError",
    "ConfigError",
    "InvalidConfigError",
    "NotFoundError",
    "InvalidTransitionError",
    "AlreadyResolvedError",
    "DatabaseError",
    "IntegrityError",
    "is_retryable",
    "get_retry_after",
    "categorize_error",
]
