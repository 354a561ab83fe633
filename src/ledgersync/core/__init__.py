"""Core primitives: errors, logging, settings, storage, and time."""

from ledgersync.core.connection import ConnectionInfo, SqliteConnection, create_connection
from ledgersync.core.errors import (
    AlreadyResolvedError,
    AuthenticationError,
    AuthError,
    AuthorizationError,
    BusinessRuleError,
    ConfigError,
    ConflictError,
    DataValidationError,
    ErrorCategory,
    ErrorContext,
    IntegrityError,
    InternalError,
    InvalidConfigError,
    InvalidTransitionError,
    LedgerSyncError,
    LedgerTimeoutError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    TransientError,
)
from ledgersync.core.logging import LogContext, configure_logging, get_logger
from ledgersync.core.protocols import Connection
from ledgersync.core.schema import create_core_tables
from ledgersync.core.settings import LedgerSyncSettings, get_settings
from ledgersync.core.timestamps import FrozenClock, generate_ulid, utc_now

__all__ = [
    "AlreadyResolvedError",
    "AuthError",
    "AuthenticationError",
    "AuthorizationError",
    "BusinessRuleError",
    "ConfigError",
    "ConflictError",
    "Connection",
    "ConnectionInfo",
    "DataValidationError",
    "ErrorCategory",
    "ErrorContext",
    "FrozenClock",
    "IntegrityError",
    "InternalError",
    "InvalidConfigError",
    "InvalidTransitionError",
    "LedgerSyncError",
    "LedgerSyncSettings",
    "LedgerTimeoutError",
    "LogContext",
    "NetworkError",
    "NotFoundError",
    "RateLimitError",
    "SqliteConnection",
    "TransientError",
    "configure_logging",
    "create_connection",
    "create_core_tables",
    "generate_ulid",
    "get_logger",
    "get_settings",
    "utc_now",
]
