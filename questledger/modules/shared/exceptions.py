"""
Domain exceptions raised by the progression, reward ledger and lobby
services. Callers (HTTP handlers, jobs, admin tools) map them onto their
own error surfaces.

Every exception carries `message`, `details`, `severity`, `is_retryable`
and a stable `error_code`, and serializes with `to_dict()`.

"Already done" outcomes (challenge already completed, rewards already
claimed, player already in lobby) and a full lobby are not exceptions; they
are flags on successful results.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    DEBUG = "debug"
    INFO = "info"  # expected outcomes: bad input, missing documents
    WARNING = "warning"  # handled but worth watching: contention
    ERROR = "error"
    CRITICAL = "critical"


class LedgerDomainException(Exception):
    """Base class for questledger domain errors."""

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})
        self.severity = severity or self.DEFAULT_SEVERITY
        self.is_retryable = self.DEFAULT_RETRYABLE if is_retryable is None else is_retryable
        self.error_code = error_code or type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        if not self.details:
            return f"[{self.error_code}] {self.message}"
        return f"[{self.error_code}] {self.message} | {self.details}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, details={self.details!r})"


class NotFoundError(LedgerDomainException):
    """
    A referenced document does not exist.

    Never retried: re-reading will not make a missing progress record or
    lobby appear.
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier
        suffix = f": {identifier}" if identifier is not None else ""
        super().__init__(
            f"{resource_type} not found{suffix}",
            details={"resource_type": resource_type, "identifier": identifier},
            error_code=f"{resource_type.upper()}_NOT_FOUND",
        )


class ValidationError(LedgerDomainException):
    """Input rejected before any transaction starts."""

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.validation_message = message
        super().__init__(
            f"Invalid {field}: {message}",
            details={"field": field, "validation_message": message},
            error_code=f"VALIDATION_{field.upper()}",
        )


class ContentionError(LedgerDomainException):
    """
    An atomic operation lost every optimistic-concurrency race it was
    allowed. Nothing was written; the caller may resubmit.
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(self, operation: str, attempts: int) -> None:
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"{operation} gave up after {attempts} conflicting attempts",
            details={"operation": operation, "attempts": attempts},
            error_code="CONTENTION",
        )


class InvalidOperationError(LedgerDomainException):
    """
    The action is not allowed in the current state.

    >>> InvalidOperationError("advance_status", "lobby is expired").error_code
    'INVALID_ADVANCE_STATUS'
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(
            f"Cannot {action}: {reason}",
            details={"action": action, "reason": reason},
            error_code=f"INVALID_{action.upper()}",
        )


class LobbyNotJoinableError(InvalidOperationError):
    """Join attempted on a lobby that is in progress or expired."""

    def __init__(self, lobby_id: str, status: str) -> None:
        self.lobby_id = lobby_id
        self.status = status
        super().__init__("join_lobby", f"lobby {lobby_id} is {status}")
        self.details.update(lobby_id=lobby_id, status=status)


class ConfigError(LedgerDomainException):
    """A required tunable is missing or has the wrong type."""

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, config_key: str, message: str) -> None:
        self.config_key = config_key
        super().__init__(
            f"Bad configuration value '{config_key}': {message}",
            details={"config_key": config_key},
            error_code="CONFIG_ERROR",
        )


def is_transient_error(exc: Exception) -> bool:
    """True when the caller may resubmit the failed operation."""
    return isinstance(exc, LedgerDomainException) and exc.is_retryable


def get_error_severity(exc: Exception) -> ErrorSeverity:
    if isinstance(exc, LedgerDomainException):
        return exc.severity
    return ErrorSeverity.ERROR


def should_alert(exc: Exception) -> bool:
    """Unknown exceptions always alert; domain ones at ERROR and above."""
    return get_error_severity(exc) in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)


__all__ = [
    "ErrorSeverity",
    "LedgerDomainException",
    "NotFoundError",
    "ValidationError",
    "ContentionError",
    "InvalidOperationError",
    "LobbyNotJoinableError",
    "ConfigError",
    "is_transient_error",
    "get_error_severity",
    "should_alert",
]
