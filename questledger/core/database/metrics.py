"""
Database Metrics - backend-agnostic observability facade.

Purpose
-------
Centralized metrics facade for engine lifecycle, health checks, transactions,
optimistic-concurrency conflicts and retries.

Architecture Notes
------------------
- AbstractDatabaseMetricsBackend defines the contract.
- DatabaseMetrics is a static facade that delegates to the configured backend.
- The default backend keeps in-process counters (readable via `snapshot()`),
  which is what tests and health endpoints consume. A Prometheus/StatsD
  backend can be plugged in with `configure_backend()`.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any, Dict

from questledger.core.logging.logger import get_logger

logger = get_logger(__name__)


class AbstractDatabaseMetricsBackend(ABC):
    """Contract for database metrics sinks."""

    @abstractmethod
    def increment(self, metric: str, value: int = 1, **tags: Any) -> None:
        ...

    @abstractmethod
    def observe(self, metric: str, value: float, **tags: Any) -> None:
        ...

    @abstractmethod
    def snapshot(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    def reset(self) -> None:
        ...


class InMemoryDatabaseMetricsBackend(AbstractDatabaseMetricsBackend):
    """Counter/summary backend kept in process memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Counter[str] = Counter()
        self._durations: Dict[str, list[float]] = {}

    def increment(self, metric: str, value: int = 1, **tags: Any) -> None:
        with self._lock:
            self._counters[metric] += value
            error_type = tags.get("error_type")
            if error_type:
                self._counters[f"{metric}.{error_type}"] += value

    def observe(self, metric: str, value: float, **tags: Any) -> None:
        with self._lock:
            samples = self._durations.setdefault(metric, [])
            samples.append(value)
            if len(samples) > 1000:
                del samples[: len(samples) - 1000]

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            durations = {
                name: {
                    "count": len(samples),
                    "avg_ms": round(sum(samples) / len(samples), 3) if samples else 0.0,
                    "max_ms": round(max(samples), 3) if samples else 0.0,
                }
                for name, samples in self._durations.items()
            }
            return {"counters": dict(self._counters), "durations": durations}

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._durations.clear()


class DatabaseMetrics:
    """
    Static facade for database metrics.

    Infrastructure code calls these classmethods to emit metrics; the
    configured backend decides where they go.
    """

    _backend: AbstractDatabaseMetricsBackend = InMemoryDatabaseMetricsBackend()

    # ------------------------------------------------------------------------
    # Backend Configuration
    # ------------------------------------------------------------------------

    @classmethod
    def configure_backend(cls, backend: AbstractDatabaseMetricsBackend) -> None:
        cls._backend = backend
        logger.info(
            "Database metrics backend configured",
            extra={"backend_class": type(backend).__name__},
        )

    @classmethod
    def snapshot(cls) -> Dict[str, Any]:
        return cls._backend.snapshot()

    @classmethod
    def counter(cls, metric: str) -> int:
        return int(cls._backend.snapshot()["counters"].get(metric, 0))

    @classmethod
    def reset(cls) -> None:
        cls._backend.reset()

    # ------------------------------------------------------------------------
    # Engine Lifecycle
    # ------------------------------------------------------------------------

    @classmethod
    def record_engine_initialized(cls, *, url_scheme: str, pool_class: str) -> None:
        cls._backend.increment("engine.initialized", url_scheme=url_scheme, pool_class=pool_class)

    @classmethod
    def record_engine_initialization_failed(cls, *, config_error: bool) -> None:
        cls._backend.increment("engine.initialization_failed", config_error=config_error)

    @classmethod
    def record_engine_shutdown(cls) -> None:
        cls._backend.increment("engine.shutdown")

    @classmethod
    def record_health_check(cls, *, success: bool, duration_ms: float) -> None:
        cls._backend.increment("health_check.success" if success else "health_check.failure")
        cls._backend.observe("health_check.duration", duration_ms)

    # ------------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------------

    @classmethod
    def record_transaction_started(cls) -> None:
        cls._backend.increment("transaction.started")

    @classmethod
    def record_transaction_committed(cls, *, duration_ms: float) -> None:
        cls._backend.increment("transaction.committed")
        cls._backend.observe("transaction.duration", duration_ms)

    @classmethod
    def record_transaction_rolled_back(cls, *, duration_ms: float, error_type: str) -> None:
        cls._backend.increment("transaction.rolled_back", error_type=error_type)
        cls._backend.observe("transaction.duration", duration_ms)

    # ------------------------------------------------------------------------
    # Retries
    # ------------------------------------------------------------------------

    @classmethod
    def record_retry_attempt(
        cls,
        *,
        operation: str,
        attempt: int,
        will_retry: bool,
        error_type: str,
    ) -> None:
        cls._backend.increment("retry.attempt", error_type=error_type)
        logger.debug(
            "Retry attempt recorded",
            extra={
                "operation": operation,
                "attempt": attempt,
                "will_retry": will_retry,
                "error_type": error_type,
            },
        )

    @classmethod
    def record_retry_give_up(cls, *, operation: str, attempt: int, error_type: str) -> None:
        cls._backend.increment("retry.give_up", error_type=error_type)
        logger.debug(
            "Retry give-up recorded",
            extra={"operation": operation, "attempt": attempt, "error_type": error_type},
        )
