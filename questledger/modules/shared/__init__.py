"""
Shared domain building blocks.

Only the exception taxonomy is re-exported here; `base_service` and
`base_repository` depend on `questledger.core.database`, which itself imports
these exceptions, so import them from their modules directly.
"""

from questledger.modules.shared.exceptions import (
    ConfigError,
    ContentionError,
    ErrorSeverity,
    InvalidOperationError,
    LedgerDomainException,
    LobbyNotJoinableError,
    NotFoundError,
    ValidationError,
    get_error_severity,
    is_transient_error,
    should_alert,
)

__all__ = [
    "ConfigError",
    "ContentionError",
    "ErrorSeverity",
    "InvalidOperationError",
    "LedgerDomainException",
    "LobbyNotJoinableError",
    "NotFoundError",
    "ValidationError",
    "get_error_severity",
    "is_transient_error",
    "should_alert",
]
