"""
Structural types shared across ledgersync.

:class:`Connection` is the minimal synchronous database interface every
store is written against.  The shipped implementation is
:class:`ledgersync.core.connection.SqliteConnection`; any DB-API style
adapter exposing the same methods can back the pipeline.

Architecture:
    ::

        Connection Protocol:
        ┌────────────────────────────────────────────────────────┐
        │ execute(sql, params)   → cursor (rowcount for CAS)     │
        │ executemany(sql, list) → cursor                        │
        │ fetchone()             → one row of the last execute   │
        │ fetchall()             → all rows of the last execute  │
        │ commit() / rollback() / close()                        │
        └────────────────────────────────────────────────────────┘

Guardrails:
    - ``fetchone``/``fetchall`` read the result of the *last* ``execute``;
      always drain a SELECT before issuing the next statement.
    - Every compare-and-swap reads ``execute(...).rowcount`` immediately.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """Minimal synchronous connection interface for the stores."""

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute a single statement and return the cursor."""
        ...

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        """Execute a statement for every parameter tuple."""
        ...

    def fetchone(self) -> Any:
        """Return the next row of the last query, or ``None``."""
        ...

    def fetchall(self) -> list[Any]:
        """Return all remaining rows of the last query."""
        ...

    def commit(self) -> None:
        """Commit the current transaction."""
        ...

    def rollback(self) -> None:
        """Roll back the current transaction."""
        ...

    def close(self) -> None:
        """Release the connection."""
        ...


Clock = Callable[[], datetime]
"""Zero-argument callable returning an aware UTC ``datetime``."""

Sleeper = Callable[[float], None]
"""``time.sleep``-compatible callable used by supervised loops."""
