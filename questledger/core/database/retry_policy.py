"""
Database Retry Policy - the atomic read-modify-write runner.

Purpose
-------
Execute an async unit of work that opens its own transaction, re-running it
from a fresh read whenever it loses an optimistic-concurrency race or hits a
transient lock/connection error.

Retry Classification
--------------------
- Retriable: `StaleDataError` (version column mismatch at flush),
  `IntegrityError` (duplicate insert by a concurrent writer),
  `OperationalError` / other `DBAPIError` (lock timeouts, dropped connections).
- Non-retriable: everything else, in particular every domain exception
  (`NotFoundError`, `ValidationError`, ...), which propagates immediately.
- When the retry budget is exhausted the last error is chained into a
  `ContentionError`.

Backoff Strategy
----------------
min(initial * 2^(attempt-1), max) + random(0, jitter), in milliseconds.

Usage
-----
>>> retry_policy = DatabaseRetryPolicy.from_config()
>>>
>>> async def _grant() -> GrantResult:
>>>     async with DatabaseService.get_transaction() as session:
>>>         ...  # read everything afresh, mutate, return
>>>
>>> result = await retry_policy.execute(_grant, operation_name="rewards.grant")

The transaction must be opened INSIDE the operation, never around the call.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from questledger.core.config.config import Config
from questledger.core.database.metrics import DatabaseMetrics
from questledger.core.logging.logger import get_logger
from questledger.modules.shared.exceptions import ContentionError

logger = get_logger(__name__)

T = TypeVar("T")


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class DatabaseRetryConfig:
    """
    Configuration for database retry behavior.

    Attributes
    ----------
    max_attempts : int
        Maximum number of attempts (including the initial attempt).
    initial_backoff_ms : int
        Initial backoff duration in milliseconds.
    max_backoff_ms : int
        Maximum backoff duration in milliseconds.
    jitter_ms : int
        Maximum random jitter added to each backoff in milliseconds.
    retriable_exceptions : Tuple[Type[BaseException], ...]
        Exception types considered retriable.
    """

    max_attempts: int
    initial_backoff_ms: int
    max_backoff_ms: int
    jitter_ms: int
    retriable_exceptions: Tuple[Type[BaseException], ...] = (
        StaleDataError,
        IntegrityError,
        OperationalError,
        DBAPIError,
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if min(self.initial_backoff_ms, self.max_backoff_ms, self.jitter_ms) < 0:
            raise ValueError("backoff and jitter must be non-negative")

    @classmethod
    def from_config(cls) -> DatabaseRetryConfig:
        """
        Build retry configuration from Config.

        Configuration Keys
        ------------------
        - DATABASE_RETRY_MAX_ATTEMPTS (default: 5)
        - DATABASE_RETRY_INITIAL_BACKOFF_MS (default: 20)
        - DATABASE_RETRY_MAX_BACKOFF_MS (default: 500)
        - DATABASE_RETRY_JITTER_MS (default: 25)
        """
        return cls(
            max_attempts=int(getattr(Config, "DATABASE_RETRY_MAX_ATTEMPTS", 5)),
            initial_backoff_ms=int(
                getattr(Config, "DATABASE_RETRY_INITIAL_BACKOFF_MS", 20)
            ),
            max_backoff_ms=int(getattr(Config, "DATABASE_RETRY_MAX_BACKOFF_MS", 500)),
            jitter_ms=int(getattr(Config, "DATABASE_RETRY_JITTER_MS", 25)),
        )


# ============================================================================
# Retry Policy
# ============================================================================


class DatabaseRetryPolicy:
    """
    Execute async database operations with retry semantics.

    Public API
    ----------
    - __init__(config) -> Create policy with configuration
    - from_config() -> Create policy from Config
    - execute(operation, operation_name, context) -> Execute with retries
    """

    def __init__(self, config: DatabaseRetryConfig) -> None:
        self._config = config

    @property
    def config(self) -> DatabaseRetryConfig:
        return self._config

    @classmethod
    def from_config(cls) -> DatabaseRetryPolicy:
        return cls(DatabaseRetryConfig.from_config())

    def _is_retriable(self, exc: BaseException) -> bool:
        return isinstance(exc, self._config.retriable_exceptions)

    def _compute_backoff_ms(self, attempt: int) -> int:
        """
        Backoff for the given 1-indexed attempt, capped and jittered.
        """
        exponent = max(attempt - 1, 0)
        base = self._config.initial_backoff_ms * (2**exponent)
        capped = min(base, self._config.max_backoff_ms)
        jitter = (
            random.randint(0, self._config.jitter_ms)
            if self._config.jitter_ms > 0
            else 0
        )
        return capped + jitter

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        context: Optional[dict[str, Any]] = None,
    ) -> T:
        """
        Run `operation` until it succeeds, fails non-retriably, or the retry
        budget is spent.

        Parameters
        ----------
        operation : Callable[[], Awaitable[T]]
            Zero-argument async callable that opens its own transaction and
            reads every document it touches.
        operation_name : str
            Stable identifier for metrics/logging (e.g., "rewards.grant").
        context : Optional[dict[str, Any]]
            Additional structured context for logs.

        Raises
        ------
        ContentionError
            When a retriable error persists for `max_attempts` attempts.
        Exception
            Any non-retriable error, unchanged.
        """
        ctx_extra = context.copy() if context else {}
        ctx_extra["operation"] = operation_name

        attempt = 0

        while True:
            attempt += 1

            try:
                return await operation()

            except Exception as exc:
                error_type = type(exc).__name__
                retriable = self._is_retriable(exc)

                if not retriable:
                    raise

                will_retry = attempt < self._config.max_attempts

                DatabaseMetrics.record_retry_attempt(
                    operation=operation_name,
                    attempt=attempt,
                    will_retry=will_retry,
                    error_type=error_type,
                )

                if not will_retry:
                    DatabaseMetrics.record_retry_give_up(
                        operation=operation_name,
                        attempt=attempt,
                        error_type=error_type,
                    )
                    logger.error(
                        "Database operation retries exhausted",
                        extra={
                            **ctx_extra,
                            "attempt": attempt,
                            "error_type": error_type,
                            "max_attempts": self._config.max_attempts,
                        },
                    )
                    raise ContentionError(operation_name, attempt) from exc

                backoff_ms = self._compute_backoff_ms(attempt)

                logger.info(
                    "Database operation conflicted; retrying",
                    extra={
                        **ctx_extra,
                        "attempt": attempt,
                        "error_type": error_type,
                        "backoff_ms": backoff_ms,
                    },
                )

                await asyncio.sleep(backoff_ms / 1000.0)
