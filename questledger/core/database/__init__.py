"""
Database subsystem for questledger.

Provides the async SQLAlchemy engine, session/transaction management, the
optimistic retry runner and metrics. Also exports the ORM base and mixins
used by the model definitions.
"""

from questledger.core.database.base import Base, JSONDocument, TimestampMixin, utc_now
from questledger.core.database.metrics import (
    AbstractDatabaseMetricsBackend,
    DatabaseMetrics,
    InMemoryDatabaseMetricsBackend,
)
from questledger.core.database.retry_policy import (
    DatabaseRetryConfig,
    DatabaseRetryPolicy,
)
from questledger.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    # ORM Base & Mixins
    "Base",
    "JSONDocument",
    "TimestampMixin",
    "utc_now",
    # Main service
    "DatabaseService",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
    # Retry
    "DatabaseRetryConfig",
    "DatabaseRetryPolicy",
    # Metrics
    "DatabaseMetrics",
    "AbstractDatabaseMetricsBackend",
    "InMemoryDatabaseMetricsBackend",
]
