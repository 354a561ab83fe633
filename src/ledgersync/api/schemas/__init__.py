"""API schemas: response envelopes and request/response bodies."""

from ledgersync.api.schemas.common import (
    ErrorDetail,
    PagedResponse,
    PageMeta,
    ProblemDetail,
    SuccessResponse,
)

__all__ = [
    "ErrorDetail",
    "PageMeta",
    "PagedResponse",
    "ProblemDetail",
    "SuccessResponse",
]
