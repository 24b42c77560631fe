"""
Unit tests for DatabaseRetryPolicy.

Operations are plain coroutines that raise the SQLAlchemy errors a lost
optimistic race produces; no database is involved.
"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from questledger.core.database.metrics import DatabaseMetrics
from questledger.core.database.retry_policy import DatabaseRetryConfig, DatabaseRetryPolicy
from questledger.modules.shared.exceptions import ContentionError, NotFoundError


def _policy(max_attempts: int = 3) -> DatabaseRetryPolicy:
    return DatabaseRetryPolicy(
        DatabaseRetryConfig(
            max_attempts=max_attempts, initial_backoff_ms=0, max_backoff_ms=0, jitter_ms=0
        )
    )


class FlakyOperation:
    """Raises `error` for the first `failures` calls, then returns "ok"."""

    def __init__(self, error: Exception, failures: int) -> None:
        self.error = error
        self.failures = failures
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


@pytest.mark.asyncio
class TestRetryPolicy:
    """Retry classification and budget."""

    async def test_retries_stale_data_until_success(self):
        """A lost version race is re-run from scratch."""
        # Arrange
        operation = FlakyOperation(StaleDataError("version mismatch"), failures=2)

        # Act
        result = await _policy(max_attempts=3).execute(operation, operation_name="test.stale")

        # Assert
        assert result == "ok"
        assert operation.calls == 3

    async def test_retries_integrity_error(self):
        """A duplicate receipt insert is retriable."""
        operation = FlakyOperation(
            IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")), failures=1
        )

        assert await _policy().execute(operation, operation_name="test.integrity") == "ok"
        assert operation.calls == 2

    async def test_retries_operational_error(self):
        operation = FlakyOperation(
            OperationalError("UPDATE", {}, Exception("database is locked")), failures=1
        )

        assert await _policy().execute(operation, operation_name="test.locked") == "ok"

    async def test_exhausted_budget_raises_contention(self):
        """Persistent conflicts surface as ContentionError with the cause chained."""
        # Arrange
        operation = FlakyOperation(StaleDataError("always"), failures=100)

        # Act
        with pytest.raises(ContentionError) as exc_info:
            await _policy(max_attempts=4).execute(operation, operation_name="test.exhausted")

        # Assert
        assert operation.calls == 4
        assert exc_info.value.attempts == 4
        assert exc_info.value.operation == "test.exhausted"
        assert exc_info.value.is_retryable is True
        assert isinstance(exc_info.value.__cause__, StaleDataError)

    async def test_domain_errors_not_retried(self):
        """NotFoundError propagates on the first attempt."""
        operation = FlakyOperation(NotFoundError("UserProgress", "u1"), failures=100)

        with pytest.raises(NotFoundError):
            await _policy().execute(operation, operation_name="test.domain")

        assert operation.calls == 1

    async def test_records_retry_metrics(self):
        DatabaseMetrics.reset()
        operation = FlakyOperation(StaleDataError("once"), failures=1)

        await _policy().execute(operation, operation_name="test.metrics")

        assert DatabaseMetrics.counter("retry.attempt") == 1
        assert DatabaseMetrics.counter("retry.attempt.StaleDataError") == 1
        assert DatabaseMetrics.counter("retry.give_up") == 0


class TestRetryConfig:
    """Configuration validation and backoff computation."""

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            DatabaseRetryConfig(max_attempts=0, initial_backoff_ms=1, max_backoff_ms=1, jitter_ms=0)

    def test_rejects_negative_backoff(self):
        with pytest.raises(ValueError):
            DatabaseRetryConfig(max_attempts=1, initial_backoff_ms=-1, max_backoff_ms=1, jitter_ms=0)

    def test_backoff_doubles_and_caps(self):
        """min(initial * 2^(attempt-1), max) without jitter."""
        policy = DatabaseRetryPolicy(
            DatabaseRetryConfig(
                max_attempts=5, initial_backoff_ms=10, max_backoff_ms=35, jitter_ms=0
            )
        )

        assert [policy._compute_backoff_ms(n) for n in (1, 2, 3, 4)] == [10, 20, 35, 35]

    def test_from_config_reads_config(self, testing_config):
        policy = DatabaseRetryPolicy.from_config()

        assert policy.config.max_attempts == testing_config.DATABASE_RETRY_MAX_ATTEMPTS
