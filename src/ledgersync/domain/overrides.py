"""Validation overrides: operator-approved bypasses of named validation rules.

An override names one entity and the rules it may skip, with a written
justification.  It only takes effect once approved (``active``) and until
it expires; every lifecycle change is audited.

::

    create(requires_approval=False) ──► active
    create(requires_approval=True)  ──► pending_approval ─approve─► active
                                                          ─reject──► rejected
    active | pending_approval ─revoke─► revoked
    active | pending_approval ─extend─► same status, later expires_at

``bypassed_rules(entity_type, entity_id)`` is what validation callers use.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from ledgersync.core.errors import InvalidConfigError, InvalidTransitionError, NotFoundError
from ledgersync.core.logging import get_logger
from ledgersync.core.protocols import Clock, Connection
from ledgersync.core.timestamps import as_utc, from_iso8601, generate_ulid, to_iso8601, utc_now
from ledgersync.domain.validation import VALIDATION_RULES

logger = get_logger(__name__)


class OverrideStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    ACTIVE = "active"
    REJECTED = "rejected"
    REVOKED = "revoked"


class OverrideType(str, Enum):
    TEMPORARY = "temporary"
    PERMANENT = "permanent"


class OverrideAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REVOKE = "revoke"
    EXTEND = "extend"


# Statuses an action may start from.
ACTION_SOURCES: dict[OverrideAction, frozenset[OverrideStatus]] = {
    OverrideAction.APPROVE: frozenset({OverrideStatus.PENDING_APPROVAL}),
    OverrideAction.REJECT: frozenset({OverrideStatus.PENDING_APPROVAL}),
    OverrideAction.REVOKE: frozenset({OverrideStatus.PENDING_APPROVAL, OverrideStatus.ACTIVE}),
    OverrideAction.EXTEND: frozenset({OverrideStatus.PENDING_APPROVAL, OverrideStatus.ACTIVE}),
}

_ACTION_TARGETS = {
    OverrideAction.APPROVE: OverrideStatus.ACTIVE,
    OverrideAction.REJECT: OverrideStatus.REJECTED,
    OverrideAction.REVOKE: OverrideStatus.REVOKED,
}


@dataclass
class ValidationOverride:
    id: str
    entity_type: str
    entity_id: str
    rules: list[str]
    justification: str
    override_type: OverrideType
    status: OverrideStatus
    created_by: str
    created_at: datetime
    updated_at: datetime
    expires_at: datetime | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    approval_comments: str | None = None
    revoked_by: str | None = None
    revoked_at: datetime | None = None
    revocation_reason: str | None = None
    extended_by: str | None = None
    extended_at: datetime | None = None
    extension_reason: str | None = None

    def is_effective(self, now: datetime) -> bool:
        """Approved and not past its expiry."""
        if self.status is not OverrideStatus.ACTIVE:
            return False
        return self.expires_at is None or self.expires_at > now

    def to_dict(self, now: datetime | None = None) -> dict[str, Any]:
        data = {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "rules": list(self.rules),
            "justification": self.justification,
            "override_type": self.override_type.value,
            "status": self.status.value,
            "expires_at": to_iso8601(self.expires_at),
            "created_by": self.created_by,
            "created_at": to_iso8601(self.created_at),
            "updated_at": to_iso8601(self.updated_at),
            "approved_by": self.approved_by,
            "approved_at": to_iso8601(self.approved_at),
            "approval_comments": self.approval_comments,
            "revoked_by": self.revoked_by,
            "revoked_at": to_iso8601(self.revoked_at),
            "revocation_reason": self.revocation_reason,
            "extended_by": self.extended_by,
            "extended_at": to_iso8601(self.extended_at),
            "extension_reason": self.extension_reason,
        }
        if now is not None:
            data["effective"] = self.is_effective(now)
        return data

    @classmethod
    def from_row(cls, row: Any) -> ValidationOverride:
        return cls(
            id=row["id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            rules=json.loads(row["rules"]),
            justification=row["justification"],
            override_type=OverrideType(row["override_type"]),
            status=OverrideStatus(row["status"]),
            expires_at=from_iso8601(row["expires_at"]),
            created_by=row["created_by"],
            created_at=from_iso8601(row["created_at"]),
            updated_at=from_iso8601(row["updated_at"]),
            approved_by=row["approved_by"],
            approved_at=from_iso8601(row["approved_at"]),
            approval_comments=row["approval_comments"],
            revoked_by=row["revoked_by"],
            revoked_at=from_iso8601(row["revoked_at"]),
            revocation_reason=row["revocation_reason"],
            extended_by=row["extended_by"],
            extended_at=from_iso8601(row["extended_at"]),
            extension_reason=row["extension_reason"],
        )


_COLUMNS = (
    "id, entity_type, entity_id, rules, justification, override_type, status, expires_at, "
    "created_by, created_at, updated_at, approved_by, approved_at, approval_comments, "
    "revoked_by, revoked_at, revocation_reason, extended_by, extended_at, extension_reason"
)


def normalize_rules(rules: Iterable[str]) -> list[str]:
    """Deduplicated rule names in input order.

    Raises:
        InvalidConfigError: empty list or an unknown rule name.
    """
    names = list(dict.fromkeys(r.strip() for r in rules if r and r.strip()))
    if not names:
        raise InvalidConfigError("rules", names, "At least one rule name is required")
    unknown = [r for r in names if r not in VALIDATION_RULES]
    if unknown:
        raise InvalidConfigError(
            "rules", unknown,
            f"Unknown validation rule(s): {', '.join(unknown)}. "
            f"Known rules: {', '.join(sorted(VALIDATION_RULES))}",
        )
    return names


class ValidationOverrideStore:
    """SQL access to ``sync_validation_overrides`` and its audit table."""

    def __init__(self, conn: Connection, *, clock: Clock = utc_now):
        self._conn = conn
        self._clock = clock

    def create(
        self,
        entity_type: str,
        entity_id: str,
        rules: Iterable[str],
        justification: str,
        actor: str,
        *,
        override_type: OverrideType | str = OverrideType.TEMPORARY,
        expires_at: datetime | None = None,
        requires_approval: bool = False,
    ) -> ValidationOverride:
        """Record a new override; active at once unless *requires_approval*.

        Raises:
            InvalidConfigError: missing entity or justification, unknown
                rule, bad override type, or an expiry that is not in the
                future (or set on a permanent override).
        """
        if not entity_type or not entity_id:
            raise InvalidConfigError("entity_id", entity_id, "entity_type and entity_id are required")
        if not justification or not justification.strip():
            raise InvalidConfigError("justification", justification, "A justification is required")
        names = normalize_rules(rules)
        try:
            override_type = OverrideType(override_type)
        except ValueError as exc:
            raise InvalidConfigError("override_type", override_type) from exc
        now = self._clock()
        if expires_at is not None:
            expires_at = as_utc(expires_at)
            if override_type is OverrideType.PERMANENT:
                raise InvalidConfigError("expires_at", to_iso8601(expires_at),
                                         "Permanent overrides do not expire")
            if expires_at <= now:
                raise InvalidConfigError("expires_at", to_iso8601(expires_at),
                                         "expires_at must be in the future")

        status = OverrideStatus.PENDING_APPROVAL if requires_approval else OverrideStatus.ACTIVE
        override = ValidationOverride(
            id=generate_ulid(),
            entity_type=entity_type,
            entity_id=entity_id,
            rules=names,
            justification=justification.strip(),
            override_type=override_type,
            status=status,
            expires_at=expires_at,
            created_by=actor,
            created_at=now,
            updated_at=now,
            approved_by=None if requires_approval else actor,
            approved_at=None if requires_approval else now,
        )
        self._conn.execute(
            f"INSERT INTO sync_validation_overrides ({_COLUMNS}) "  # noqa: S608
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                override.id,
                override.entity_type,
                override.entity_id,
                json.dumps(override.rules),
                override.justification,
                override.override_type.value,
                override.status.value,
                to_iso8601(override.expires_at),
                override.created_by,
                to_iso8601(now),
                to_iso8601(now),
                override.approved_by,
                to_iso8601(override.approved_at),
                None,
                None,
                None,
                None,
                None,
                None,
                None,
            ),
        )
        self._audit(override.id, "created", actor, {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "rules": names,
            "justification": override.justification,
            "status": status.value,
        })
        self._conn.commit()
        logger.info(
            "validation_override_created",
            override_id=override.id,
            entity_id=entity_id,
            rules=names,
            status=status.value,
            actor=actor,
        )
        return override

    # ------------------------------------------------------------------ #
    # Read
    # ------------------------------------------------------------------ #

    def get(self, override_id: str) -> ValidationOverride | None:
        self._conn.execute(
            f"SELECT {_COLUMNS} FROM sync_validation_overrides WHERE id = ?",  # noqa: S608
            (override_id,),
        )
        row = self._conn.fetchone()
        return ValidationOverride.from_row(row) if row is not None else None

    def require(self, override_id: str) -> ValidationOverride:
        override = self.get(override_id)
        if override is None:
            raise NotFoundError("validation override", override_id)
        return override

    def list(
        self,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        status: OverrideStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ValidationOverride], int]:
        """Newest first, plus the total matching count."""
        where = " WHERE 1=1"
        params: list[Any] = []
        if entity_type:
            where += " AND entity_type = ?"
            params.append(entity_type)
        if entity_id:
            where += " AND entity_id = ?"
            params.append(entity_id)
        if status is not None:
            where += " AND status = ?"
            params.append(status.value)
        self._conn.execute(f"SELECT COUNT(*) FROM sync_validation_overrides{where}", tuple(params))  # noqa: S608
        total = self._conn.fetchone()[0]
        self._conn.execute(
            f"SELECT {_COLUMNS} FROM sync_validation_overrides{where} "  # noqa: S608
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [ValidationOverride.from_row(r) for r in self._conn.fetchall()], total

    def bypassed_rules(self, entity_type: str, entity_id: str) -> frozenset[str]:
        """Union of rules named by the entity's effective overrides."""
        now = self._clock()
        self._conn.execute(
            f"SELECT {_COLUMNS} FROM sync_validation_overrides "  # noqa: S608
            "WHERE entity_type = ? AND entity_id = ? AND status = 'active'",
            (entity_type, entity_id),
        )
        rules: set[str] = set()
        for row in self._conn.fetchall():
            override = ValidationOverride.from_row(row)
            if override.is_effective(now):
                rules.update(override.rules)
        return frozenset(rules)

    def audit(self, override_id: str) -> list[dict[str, Any]]:
        self._conn.execute(
            "SELECT action, actor, timestamp, details FROM sync_validation_override_audit "
            "WHERE override_id = ? ORDER BY timestamp ASC, id ASC",
            (override_id,),
        )
        return [
            {
                "action": r["action"],
                "actor": r["actor"],
                "timestamp": r["timestamp"],
                "details": json.loads(r["details"]),
            }
            for r in self._conn.fetchall()
        ]

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def apply(
        self,
        override_id: str,
        action: OverrideAction | str,
        actor: str,
        *,
        comments: str | None = None,
        new_expires_at: datetime | None = None,
    ) -> ValidationOverride:
        """Approve, reject, revoke, or extend one override.

        Raises:
            NotFoundError: unknown override.
            InvalidConfigError: unknown action, or ``extend`` without a
                future ``new_expires_at``.
            InvalidTransitionError: the override's status does not allow
                the action (also raised when a concurrent change wins).
        """
        try:
            action = OverrideAction(action)
        except ValueError as exc:
            raise InvalidConfigError(
                "action", action, "Action must be one of: approve, reject, revoke, extend"
            ) from exc
        current = self.require(override_id)
        target = _ACTION_TARGETS.get(action, current.status)
        if current.status not in ACTION_SOURCES[action]:
            raise InvalidTransitionError("validation override", current.status.value, target.value)

        now = self._clock()
        stamp = to_iso8601(now)
        if action is OverrideAction.EXTEND:
            new_expires_at = as_utc(new_expires_at) if new_expires_at is not None else None
            if new_expires_at is None or new_expires_at <= now:
                raise InvalidConfigError("new_expires_at", to_iso8601(new_expires_at),
                                         "extend needs a new expiry in the future")
            sets = ("expires_at = ?, override_type = 'temporary', extended_by = ?, "
                    "extended_at = ?, extension_reason = ?")
            values: tuple[Any, ...] = (to_iso8601(new_expires_at), actor, stamp, comments)
        elif action is OverrideAction.REVOKE:
            sets = "status = ?, revoked_by = ?, revoked_at = ?, revocation_reason = ?"
            values = (target.value, actor, stamp, comments)
        else:
            sets = "status = ?, approved_by = ?, approved_at = ?, approval_comments = ?"
            values = (target.value, actor, stamp, comments)

        cur = self._conn.execute(
            f"UPDATE sync_validation_overrides SET {sets}, updated_at = ? "  # noqa: S608
            "WHERE id = ? AND status = ?",
            (*values, stamp, override_id, current.status.value),
        )
        if cur.rowcount != 1:
            self._conn.rollback()
            latest = self.require(override_id)
            raise InvalidTransitionError("validation override", latest.status.value, target.value)
        details: dict[str, Any] = {"comments": comments, "previous_status": current.status.value}
        if new_expires_at is not None:
            details["expires_at"] = to_iso8601(new_expires_at)
        self._audit(override_id, action.value, actor, details)
        self._conn.commit()
        logger.info(
            "validation_override_changed",
            override_id=override_id,
            action=action.value,
            from_status=current.status.value,
            to_status=target.value,
            actor=actor,
        )
        return self.require(override_id)

    def _audit(self, override_id: str, action: str, actor: str, details: dict[str, Any]) -> None:
        self._conn.execute(
            "INSERT INTO sync_validation_override_audit "
            "(id, override_id, action, actor, timestamp, details) VALUES (?, ?, ?, ?, ?, ?)",
            (generate_ulid(), override_id, action, actor, to_iso8601(self._clock()), json.dumps(details)),
        )
