"""
Connection factory and SQLite adapter.

``create_connection(url)`` returns ``(conn, ConnectionInfo)`` where ``conn``
satisfies :class:`~ledgersync.core.protocols.Connection`.

==================  ==========================================  ============
Scheme              Example                                     Backend
==================  ==========================================  ============
``memory``          ``memory`` or ``:memory:`` or ``None``       SQLite RAM
``sqlite``          ``sqlite:///path/to/file.db``                SQLite file
``(file path)``     ``./data/ledgersync.db``                     SQLite file
==================  ==========================================  ============

Usage::

    conn, info = create_connection("sqlite:///ledgersync.db", init_schema=True)
    conn.execute("SELECT COUNT(*) FROM sync_jobs")
    count = conn.fetchone()[0]

File databases are opened in WAL mode with a busy timeout so that API
processes and several worker processes can share one file.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ledgersync.core.errors import ConfigError, IntegrityError
from ledgersync.core.logging import get_logger

logger = get_logger(__name__)


class SqliteConnection:
    """Adapter: ``sqlite3.Connection`` → ``Connection`` protocol.

    Maintains a single cursor so that ``execute`` / ``fetchone`` /
    ``fetchall`` operate on the same result set.  Driver integrity
    violations are re-raised as :class:`ledgersync.core.errors.IntegrityError`
    so stores stay engine-agnostic.
    """

    def __init__(
        self,
        path: str = ":memory:",
        *,
        row_factory: Any = sqlite3.Row,
        busy_timeout: float = 30.0,
    ) -> None:
        self._path = path
        self._conn = sqlite3.connect(path, timeout=busy_timeout, check_same_thread=False)
        self._conn.row_factory = row_factory
        self._cursor = self._conn.cursor()
        if path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> Any:
        try:
            self._cursor.execute(sql, params)
        except sqlite3.IntegrityError as exc:
            raise IntegrityError(str(exc), cause=exc) from exc
        return self._cursor

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        try:
            self._cursor.executemany(sql, params)
        except sqlite3.IntegrityError as exc:
            raise IntegrityError(str(exc), cause=exc) from exc
        return self._cursor

    def fetchone(self) -> Any:
        return self._cursor.fetchone()

    def fetchall(self) -> list:
        return self._cursor.fetchall()

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    # -- convenience -------------------------------------------------------

    @property
    def path(self) -> str:
        return self._path

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (e.g. for pragmas)."""
        return self._conn

    def __repr__(self) -> str:
        return f"SqliteConnection({self._path!r})"


@dataclass(frozen=True)
class ConnectionInfo:
    """Metadata about a database connection."""

    backend: str
    persistent: bool
    url: str
    resolved_path: str | None = None


def resolve_sqlite_path(url: str | None) -> str:
    """Map a database URL onto a SQLite path (``:memory:`` for RAM)."""
    if url is None or url in ("memory", ":memory:", "sqlite://", "sqlite:///:memory:"):
        return ":memory:"
    if url.startswith(("postgresql://", "postgres://")):
        raise ConfigError(f"Unsupported database backend: {url.split(':', 1)[0]}")
    if url.startswith("sqlite:///"):
        url = url[len("sqlite:///"):]
    return url


def create_connection(
    url: str | None = None,
    *,
    init_schema: bool = False,
) -> tuple[SqliteConnection, ConnectionInfo]:
    """Open a connection for *url* and optionally apply the schema.

    Returns:
        ``(conn, info)`` where *conn* satisfies the ``Connection`` protocol.
    """
    path = resolve_sqlite_path(url)
    persistent = path != ":memory:"
    resolved = None
    if persistent:
        file_path = Path(path).expanduser()
        file_path.parent.mkdir(parents=True, exist_ok=True)
        resolved = str(file_path.resolve())
        path = str(file_path)

    conn = SqliteConnection(path)
    info = ConnectionInfo(
        backend="sqlite",
        persistent=persistent,
        url=url or ":memory:",
        resolved_path=resolved,
    )

    if init_schema:
        from ledgersync.core.schema import create_core_tables

        create_core_tables(conn)
        logger.debug("schema_initialized", path=resolved or ":memory:")

    return conn, info
