"""
Common API schemas: shared envelopes and RFC 7807 errors.

Every endpoint returns either :class:`SuccessResponse` (200/201/202)
or :class:`ProblemDetail` (4xx/5xx).  Paged endpoints embed
:class:`PageMeta` alongside the item list.
"""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


# ── RFC 7807 Problem Detail ─────────────────────────────────────────────


class ErrorDetail(BaseModel):
    """Field-level error, e.g. one failed validation rule of a correction."""

    code: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    field: str | None = Field(default=None, description="Field path if error is field-specific")


class ProblemDetail(BaseModel):
    """RFC 7807 «Problem Details for HTTP APIs».

    Error Codes (carried in ``detail``):
        - ``NOT_FOUND`` (404): unknown job, queue, migration or record
        - ``VALIDATION_FAILED`` (400): invalid input or corrected data
        - ``CONFLICT`` (409): another migration is open, lease held
        - ``ALREADY_RESOLVED`` (409): quarantine record already closed
        - ``INVALID_TRANSITION`` (409): state machine refused the change
        - ``INTERNAL`` (500): unexpected server error
    """

    type: str = Field(default="about:blank", description="Error type URI (usually 'about:blank')")
    title: str = Field(description="Short human-readable error summary")
    status: int = Field(description="HTTP status code")
    detail: str = Field(default="", description="Error code or explanation")
    instance: str = Field(default="", description="URI of the failing request")
    errors: list[ErrorDetail] = Field(
        default_factory=list,
        description="List of field-level or nested error details",
    )


# ── Success Envelopes ────────────────────────────────────────────────────


class PageMeta(BaseModel):
    """Pagination metadata for list responses."""

    total: int = Field(description="Total items across all pages")
    limit: int = Field(description="Items per page (requested)")
    offset: int = Field(description="Current offset (0-based)")
    has_more: bool = Field(description="True if more pages exist after current")


class SuccessResponse(BaseModel, Generic[T]):
    """Standard success envelope for single-item responses."""

    data: T = Field(description="Response payload (type varies by endpoint)")
    elapsed_ms: float = Field(default=0.0, description="Server-side processing time in milliseconds")
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-fatal warnings to display to users",
    )


class PagedResponse(BaseModel, Generic[T]):
    """Paged success envelope for list responses."""

    data: list[T] = Field(description="List of items for this page")
    page: PageMeta = Field(description="Pagination metadata")
    elapsed_ms: float = Field(default=0.0, description="Server-side processing time in milliseconds")
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-fatal warnings to display to users",
    )
