"""Shared fixtures for ledgersync.ops tests."""

from __future__ import annotations

import pytest

from ledgersync.ops.context import OperationContext


@pytest.fixture()
def ctx(conn, settings, clock) -> OperationContext:
    """Context on the shared in-memory connection, acting as ``ops-admin``."""
    return OperationContext(conn=conn, caller="sdk", user="ops-admin", settings=settings, clock=clock)


@pytest.fixture()
def dry_ctx(conn, settings, clock) -> OperationContext:
    return OperationContext(conn=conn, user="ops-admin", dry_run=True, settings=settings, clock=clock)
