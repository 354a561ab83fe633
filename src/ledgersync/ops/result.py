"""
What ledgersync operations hand back to the REST and CLI transports.

A queue, migration, quarantine or override call ends in an
:class:`OperationResult` (or :class:`PagedResult` for worklists and job
listings).  Pipeline errors are caught at the operation boundary and
turned into a failure code by :func:`fail_from_error`; the API maps the
code to an HTTP status, and the CLI prints it and exits non-zero.

Error codes:
    ``NOT_FOUND``, ``VALIDATION_FAILED``, ``CONFLICT``, ``ALREADY_RESOLVED``,
    ``INVALID_TRANSITION``, ``INTERNAL``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from ledgersync.core.errors import (
    AlreadyResolvedError,
    ConfigError,
    ConflictError,
    DataValidationError,
    ErrorCategory,
    InvalidTransitionError,
    LedgerSyncError,
    NotFoundError,
)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class OperationError:
    """Why an operation failed.

    ``code`` is one of the failure codes above; ``details`` carries the
    offending field and validation issues for ``VALIDATION_FAILED``.
    ``retryable`` mirrors the classifier's view of the underlying error.
    """

    code: str
    message: str
    category: ErrorCategory | None = None
    details: dict[str, Any] = field(default_factory=dict)
    retryable: bool = False


@dataclass
class OperationResult(Generic[T]):
    """Outcome of one operation: ``data`` on success, ``error`` otherwise."""

    success: bool
    data: T | None = None
    error: OperationError | None = None
    warnings: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        data: T,
        *,
        warnings: list[str] | None = None,
        elapsed_ms: float = 0.0,
        metadata: dict[str, Any] | None = None,
    ) -> OperationResult[T]:
        return cls(
            success=True,
            data=data,
            warnings=warnings or [],
            elapsed_ms=elapsed_ms,
            metadata=metadata or {},
        )

    @classmethod
    def fail(
        cls,
        code: str,
        message: str,
        *,
        category: ErrorCategory | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
        warnings: list[str] | None = None,
        elapsed_ms: float = 0.0,
        metadata: dict[str, Any] | None = None,
    ) -> OperationResult[T]:
        return cls(
            success=False,
            error=OperationError(
                code=code,
                message=message,
                category=category,
                details=details or {},
                retryable=retryable,
            ),
            warnings=warnings or [],
            elapsed_ms=elapsed_ms,
            metadata=metadata or {},
        )

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict form of the whole envelope, data included."""
        d: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            d["data"] = self.data
        if self.error is not None:
            d["error"] = {
                "code": self.error.code,
                "message": self.error.message,
                "retryable": self.error.retryable,
            }
            if self.error.details:
                d["error"]["details"] = self.error.details
        if self.warnings:
            d["warnings"] = self.warnings
        if self.elapsed_ms:
            d["elapsed_ms"] = round(self.elapsed_ms, 2)
        if self.metadata:
            d["metadata"] = self.metadata
        return d


@dataclass
class PagedResult(OperationResult[list[T]]):
    """One page of jobs, quarantine records, migrations or overrides."""

    total: int = 0
    limit: int = 50
    offset: int = 0
    has_more: bool = False

    @classmethod
    def from_items(
        cls,
        items: list[T],
        total: int,
        *,
        limit: int = 50,
        offset: int = 0,
        warnings: list[str] | None = None,
        elapsed_ms: float = 0.0,
        metadata: dict[str, Any] | None = None,
    ) -> PagedResult[T]:
        """Successful page; ``has_more`` when rows remain past this page."""
        return cls(
            success=True,
            data=items,
            total=total,
            limit=limit,
            offset=offset,
            has_more=(offset + limit) < total,
            warnings=warnings or [],
            elapsed_ms=elapsed_ms,
            metadata=metadata or {},
        )

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["total"] = self.total
        d["limit"] = self.limit
        d["offset"] = self.offset
        d["has_more"] = self.has_more
        return d


# ------------------------------------------------------------------ #
# Error mapping
# ------------------------------------------------------------------ #


def error_code_for(error: LedgerSyncError) -> str:
    """Failure code for a control-plane error."""
    if isinstance(error, NotFoundError):
        return "NOT_FOUND"
    if isinstance(error, AlreadyResolvedError):
        return "ALREADY_RESOLVED"
    if isinstance(error, InvalidTransitionError):
        return "INVALID_TRANSITION"
    if isinstance(error, ConflictError):
        return "CONFLICT"
    if isinstance(error, (ConfigError, DataValidationError)):
        return "VALIDATION_FAILED"
    return "INTERNAL"


def fail_from_error(error: LedgerSyncError, *, elapsed_ms: float = 0.0) -> OperationResult[Any]:
    details: dict[str, Any] = {}
    if isinstance(error, DataValidationError):
        if error.field:
            details["field"] = error.field
        if error.issues:
            details["issues"] = list(error.issues)
    return OperationResult.fail(
        error_code_for(error),
        error.message,
        category=error.category,
        details=details,
        retryable=error.retryable,
        elapsed_ms=elapsed_ms,
    )


# ------------------------------------------------------------------ #
# Timing helper
# ------------------------------------------------------------------ #


class _Timer:

    __slots__ = ("_start",)

    def __init__(self) -> None:
        self._start = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000


def start_timer() -> _Timer:
    """Start timing an operation; read ``elapsed_ms`` for the result."""
    return _Timer()
