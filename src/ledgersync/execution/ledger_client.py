"""Ledger Client Adapter: the boundary that performs the remote call.

The pipeline talks to the ledger only through :class:`LedgerClient`.
Failures are raised as typed errors from :mod:`ledgersync.core.errors`
so the Error Classifier never inspects message text or status codes.

Idempotency
───────────
Delivery is at-least-once: a job whose worker died is requeued and pushed
again.  Every request carries ``idempotency_key``, derived from the entity,
the operation, and the job id, so a redelivered job repeats the same key
and the ledger (or :class:`StubLedgerClient`) answers with the original
write instead of creating a second one.

Implementations
───────────────
- :class:`HttpLedgerClient`  ─ httpx, JSON over HTTP, status → error mapping
- :class:`StubLedgerClient`  ─ in-memory ledger for tests, dry demos, local dev
"""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from ledgersync.core.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    DataValidationError,
    ErrorContext,
    InternalError,
    LedgerSyncError,
    LedgerTimeoutError,
    NetworkError,
    RateLimitError,
    TransientError,
)
from ledgersync.core.logging import get_logger
from ledgersync.core.timestamps import generate_ulid
from ledgersync.execution.models import SyncOperation

logger = get_logger(__name__)


def idempotency_key(entity_id: str, operation: SyncOperation | str, job_id: str) -> str:
    """Stable key for one job's write: 32 hex chars of SHA-256."""
    op = operation.value if isinstance(operation, SyncOperation) else operation
    return hashlib.sha256(f"{entity_id}:{op}:{job_id}".encode()).hexdigest()[:32]


@dataclass(frozen=True)
class LedgerRequest:
    entity_type: str
    entity_id: str
    operation: SyncOperation
    payload: dict[str, Any]
    idempotency_key: str
    job_id: str | None = None


@dataclass(frozen=True)
class LedgerResponse:
    external_ref: str
    replayed: bool = False
    data: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class LedgerClient(Protocol):
    """Anything that can push one entity to the ledger."""

    def push(self, request: LedgerRequest) -> LedgerResponse: ...


# =============================================================================
# HTTP
# =============================================================================


class HttpLedgerClient:
    """JSON-over-HTTP ledger client.

    ``POST {base_url}/v1/{entity_type}s/{operation}`` with the payload as
    body and the idempotency key in the ``Idempotency-Key`` header.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def push(self, request: LedgerRequest) -> LedgerResponse:
        url = f"/v1/{request.entity_type}s/{request.operation.value}"
        context = ErrorContext(
            entity_id=request.entity_id,
            job_id=request.job_id,
            operation=request.operation.value,
            url=url,
        )
        try:
            response = self._client.post(
                url,
                json=request.payload,
                headers={"Idempotency-Key": request.idempotency_key},
            )
        except httpx.TimeoutException as exc:
            raise LedgerTimeoutError(f"Ledger timed out: {exc}", context=context, cause=exc) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Ledger unreachable: {exc}", context=context, cause=exc) from exc

        context.http_status = response.status_code
        if response.is_success:
            body = _json(response)
            ref = body.get("id") or body.get("external_ref")
            if not ref:
                raise InternalError("Ledger response carried no reference", context=context)
            return LedgerResponse(
                external_ref=str(ref),
                replayed=response.headers.get("Idempotent-Replayed", "").lower() == "true",
                data=body,
            )
        raise _error_for(response, context)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpLedgerClient:
        return self

    def __exit__(self, *args) -> None:
        self.close()


def _json(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_for(response: httpx.Response, context: ErrorContext) -> LedgerSyncError:
    status = response.status_code
    body = _json(response)
    detail = body.get("detail") or body.get("message") or response.reason_phrase or str(status)
    message = f"Ledger returned {status}: {detail}"

    if status == 429:
        retry_after = _retry_after(response.headers.get("Retry-After"))
        return RateLimitError(message, retry_after=retry_after, context=context)
    if status == 401:
        return AuthenticationError(message, context=context)
    if status == 403:
        return AuthorizationError(message, context=context)
    if status in (400, 422):
        return DataValidationError(
            message,
            field=body.get("field"),
            issues=[str(e) for e in body.get("errors", [])],
            context=context,
        )
    if status == 409:
        return ConflictError(message, context=context)
    if status >= 500:
        return TransientError(message, context=context)
    return InternalError(message, context=context)


def _retry_after(value: str | None) -> int:
    if value is None:
        return 60
    try:
        return max(0, int(float(value)))
    except ValueError:
        return 60


# =============================================================================
# STUB
# =============================================================================


FailureFactory = Callable[[LedgerRequest], Exception]


class StubLedgerClient:
    """In-memory ledger.

    - Writes are deduplicated by idempotency key: repeating a key returns
      the original reference with ``replayed=True``.
    - ``fail(entity_id, *errors)`` scripts failures: each push for that
      entity pops the next error and raises it, then pushes succeed.
    - ``calls`` records every request received, ``writes`` every distinct
      write performed.

    Thread-safe; a worker pool may share one instance.

    Example:
        >>> ledger = StubLedgerClient()
        >>> ledger.fail("TS-100", RateLimitError(retry_after=1))
        >>> len(ledger.calls)
        0
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._failures: dict[str, list[Exception | FailureFactory]] = {}
        self._by_key: dict[str, str] = {}
        self.calls: list[LedgerRequest] = []
        self.writes: list[LedgerRequest] = []

    def fail(self, entity_id: str, *errors: Exception | FailureFactory) -> None:
        with self._lock:
            self._failures.setdefault(entity_id, []).extend(errors)

    def push(self, request: LedgerRequest) -> LedgerResponse:
        with self._lock:
            self.calls.append(request)
            queued = self._failures.get(request.entity_id)
            if queued:
                failure = queued.pop(0)
                error = failure if isinstance(failure, Exception) else failure(request)
                logger.debug("stub_ledger_failure", entity_id=request.entity_id, error=str(error))
                raise error

            existing = self._by_key.get(request.idempotency_key)
            if existing is not None:
                return LedgerResponse(external_ref=existing, replayed=True)

            ref = f"LG-{generate_ulid()}"
            self._by_key[request.idempotency_key] = ref
            self.writes.append(request)
            return LedgerResponse(external_ref=ref, data={"id": ref})

    def writes_for(self, entity_id: str) -> list[LedgerRequest]:
        with self._lock:
            return [r for r in self.writes if r.entity_id == entity_id]
