"""
Base Service Foundation

Purpose
-------
Foundational class for the domain services (progression, reward ledger,
lobby). Services implement the business rules, run their reads and writes
through the atomic retry primitive, and emit domain events after commit.

Design Notes
------------
This base class provides:
- Structured logging with operation context
- Safe config access patterns
- `run_atomic()`: the RunAtomic primitive (retry policy around a fresh
  `DatabaseService.get_transaction()` per attempt)
- Event emission helpers
- Validation error wrapping

What this class does NOT do:
- Open sessions itself outside `run_atomic()`
- Cache any document between attempts
- Publish events from inside a transaction

Usage
-----
    class LobbyService(BaseService):
        def __init__(self, config_manager, event_bus, logger, **kwargs):
            super().__init__(config_manager, event_bus, logger, **kwargs)

        async def touch(self, lobby_id: str) -> bool:
            async def _txn(session):
                ...
            return await self.run_atomic(_txn, operation_name="lobby.touch")
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, TypeVar

from questledger.core.clock import ServerClock, default_clock
from questledger.core.database.retry_policy import DatabaseRetryPolicy
from questledger.core.database.service import DatabaseService

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from questledger.core.config.manager import ConfigManager
    from questledger.core.event.bus import EventBus

T = TypeVar("T")


class BaseService:
    """
    Base class for all domain services.

    Args:
        config_manager: Gameplay tunables (ConfigManager or a compatible object)
        event_bus: Event bus for post-commit notifications
        logger: Structured logger instance
        retry_policy: Conflict retry policy; defaults to the Config-driven one
        clock: Server clock for every `*_at` field
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        *,
        retry_policy: Optional[DatabaseRetryPolicy] = None,
        clock: Optional[ServerClock] = None,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self.log = logger
        self._retry = retry_policy or DatabaseRetryPolicy.from_config()
        self._clock = clock or default_clock

    # ------------------------------------------------------------------ #
    # Infrastructure helpers
    # ------------------------------------------------------------------ #

    def now(self) -> datetime:
        return self._clock.now()

    async def run_atomic(
        self,
        fn: Callable[[AsyncSession], Awaitable[T]],
        *,
        operation_name: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> T:
        """
        Run `fn(session)` in its own transaction, retrying on conflict.

        `fn` must read every document it touches from the session it is
        given; nothing read in a failed attempt may be reused.

        Raises:
            ContentionError: If conflicts persist past the retry budget
            LedgerDomainException: Any domain error raised by `fn`, unretried
        """

        async def _attempt() -> T:
            async with DatabaseService.get_transaction() as session:
                return await fn(session)

        return await self._retry.execute(
            _attempt,
            operation_name=operation_name,
            context=context,
        )

    async def run_read(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run `fn(session)` on a non-committing session."""
        async with DatabaseService.get_session() as session:
            return await fn(session)

    def get_config(
        self, key: str, default: Optional[Any] = None, required: bool = False
    ) -> Any:
        """
        Safely retrieve configuration value.

        Raises:
            ConfigError: If required=True and key is missing
        """
        from .exceptions import ConfigError

        value = self._config.get(key, default)
        if required and value is None:
            raise ConfigError(key, f"Required configuration key '{key}' is missing")
        return value

    def get_int_config(self, key: str, default: int, *, minimum: int = 0) -> int:
        """Integer tunable with a lower bound; bad values raise ConfigError."""
        from .exceptions import ConfigError

        value = self.get_config(key, default)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(key, f"expected an integer, got {value!r}")
        if value < minimum:
            raise ConfigError(key, f"must be >= {minimum}, got {value}")
        return value

    async def emit_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Emit a domain event. Call only after the transaction has committed.

        Listener failures are isolated by the bus; a publish failure is
        logged and never propagates into the already-committed operation.
        """
        try:
            await self._events.publish(event_type, {**data, **(context or {})})
        except Exception as exc:
            self.log_error("emit_event", exc, event_type=event_type)

    # ------------------------------------------------------------------ #
    # Logging
    # ------------------------------------------------------------------ #

    def log_operation(self, operation: str, **context: Any) -> None:
        self.log.info(
            f"Service operation: {operation}",
            extra={"operation": operation, **context},
        )

    def log_error(self, operation: str, error: Exception, **context: Any) -> None:
        self.log.error(
            f"Service error during {operation}: {str(error)}",
            extra={
                "operation": operation,
                "error_type": type(error).__name__,
                "error_message": str(error),
                **context,
            },
        )
