"""
Request-scoped context for operations.

Every operation function receives an :class:`OperationContext` as its first
argument.  The context carries the database connection, the acting
identity recorded on state-changing calls, the dry-run flag, and the
settings and clock the pipeline components are built with.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from ledgersync.core.protocols import Clock, Connection
from ledgersync.core.settings import LedgerSyncSettings
from ledgersync.core.timestamps import utc_now


@dataclass
class OperationContext:
    """Context passed to every operation function.

    Attributes:
        conn: Database connection satisfying :class:`ledgersync.core.protocols.Connection`.
        request_id: Unique ID for this operation invocation (auto-generated).
        caller: Origin of the request: ``"api"``, ``"cli"`` or ``"sdk"``.
        user: Acting identity recorded in audit trails (``"system"`` when unknown).
        dry_run: When ``True``, operations return a preview without side effects.
        settings: Pipeline settings; defaults are used when omitted.
        clock: Time source handed to stores and managers.
        metadata: Arbitrary key/value pairs forwarded to logging.
    """

    conn: Connection
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    caller: str = "sdk"
    user: str | None = None
    dry_run: bool = False
    settings: LedgerSyncSettings | None = None
    clock: Clock = utc_now
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def actor(self) -> str:
        return self.user or "system"
