"""
Database Service
================

Purpose
-------
Owns the process-wide async engine and hands out sessions. Every ledger,
progression and lobby write goes through `get_transaction()`.

Transaction Model
-----------------
- `get_transaction()` commits on normal exit and rolls back on any
  exception, which is re-raised unchanged.
- Concurrency control is optimistic. Mutable aggregates carry a `version`
  column, so a lost race surfaces at commit as `StaleDataError` (or
  `IntegrityError` for a duplicate insert). Callers wrap the whole
  transaction in `DatabaseRetryPolicy.execute()`, which re-runs it from a
  fresh read. No row locks are taken.
- `get_session()` is for reads; it never commits.

Engines
-------
- PostgreSQL (asyncpg): `AsyncAdaptedQueuePool`, `SET LOCAL statement_timeout`
  per transaction.
- SQLite (aiosqlite): `NullPool`, WAL journal, busy timeout. A lock wait that
  outlasts the timeout raises `OperationalError`, which the retry policy
  treats as a conflict.

Usage
-----
>>> await DatabaseService.initialize()
>>> async with DatabaseService.get_transaction() as session:
...     progress = await session.get(UserProgress, user_id)
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Dict, Optional, Type

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool, Pool

from questledger.core.config.config import Config
from questledger.core.database.base import Base
from questledger.core.database.metrics import DatabaseMetrics
from questledger.core.logging.logger import get_logger

logger = get_logger(__name__)


class DatabaseInitializationError(RuntimeError):
    """DATABASE_URL missing or engine creation failed."""


class DatabaseNotInitializedError(RuntimeError):
    """A session was requested before `initialize()`."""


@dataclass(frozen=True)
class EngineSettings:
    """Engine parameters captured once at `initialize()`."""

    url: str
    echo: bool
    pooled: bool
    pool_size: int
    max_overflow: int
    pool_recycle: int
    pool_timeout: int
    statement_timeout_ms: int
    sqlite_timeout: int

    @classmethod
    def from_config(cls, database_url: Optional[str] = None) -> "EngineSettings":
        url = database_url or Config.DATABASE_URL
        if not isinstance(url, str) or not url:
            raise DatabaseInitializationError("DATABASE_URL must be a non-empty string")

        return cls(
            url=url,
            echo=Config.DATABASE_ECHO,
            pooled=not (url.startswith("sqlite") or Config.is_testing()),
            pool_size=Config.DATABASE_POOL_SIZE,
            max_overflow=Config.DATABASE_MAX_OVERFLOW,
            pool_recycle=Config.DATABASE_POOL_RECYCLE,
            pool_timeout=Config.DATABASE_POOL_TIMEOUT,
            statement_timeout_ms=Config.DATABASE_STATEMENT_TIMEOUT_MS,
            sqlite_timeout=Config.DATABASE_SQLITE_TIMEOUT,
        )

    @property
    def scheme(self) -> str:
        return self.url.split(":", 1)[0]

    @property
    def is_postgres(self) -> bool:
        return self.scheme.startswith("postgresql")

    @property
    def is_sqlite(self) -> bool:
        return self.scheme.startswith("sqlite")

    @property
    def pool_class(self) -> Type[Pool]:
        return AsyncAdaptedQueuePool if self.pooled else NullPool

    def engine_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"echo": self.echo, "poolclass": self.pool_class}
        if self.pooled:
            kwargs.update(
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
                pool_recycle=self.pool_recycle,
                pool_timeout=self.pool_timeout,
                pool_pre_ping=True,
            )
        if self.is_sqlite:
            kwargs["connect_args"] = {"timeout": self.sqlite_timeout}
        return kwargs


def _enable_sqlite_wal(engine: AsyncEngine, busy_timeout_ms: int) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        for pragma in (
            "PRAGMA journal_mode=WAL",
            f"PRAGMA busy_timeout={busy_timeout_ms}",
            "PRAGMA foreign_keys=ON",
        ):
            cursor.execute(pragma)
        cursor.close()


def _rollback_category(exc: Exception) -> str:
    if isinstance(exc, (StaleDataError, IntegrityError)):
        return "conflict"
    return type(exc).__name__


class DatabaseService:
    """
    Async engine and session management (class-level singleton).

    Lifecycle: initialize(), shutdown(), is_initialized(), create_all(),
    drop_all(). Sessions: get_session(), get_transaction(). Utilities:
    health_check(), get_pool_metrics().
    """

    _engine: Optional[AsyncEngine] = None
    _session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    _settings: Optional[EngineSettings] = None
    _lifecycle_lock: Optional[asyncio.Lock] = None

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @classmethod
    def _lock(cls) -> asyncio.Lock:
        # Created lazily so the lock binds to the running loop.
        if cls._lifecycle_lock is None:
            cls._lifecycle_lock = asyncio.Lock()
        return cls._lifecycle_lock

    @classmethod
    def _reset_state(cls) -> None:
        cls._engine = None
        cls._session_factory = None
        cls._settings = None

    @classmethod
    async def initialize(cls, database_url: Optional[str] = None) -> None:
        """
        Create the engine and session factory. No-op when already initialized.

        Raises
        ------
        DatabaseInitializationError
            Invalid configuration or engine creation failure.
        """
        async with cls._lock():
            if cls._engine is not None:
                return

            try:
                settings = EngineSettings.from_config(database_url)
                engine = create_async_engine(settings.url, **settings.engine_kwargs())
                if settings.is_sqlite:
                    _enable_sqlite_wal(engine, busy_timeout_ms=settings.sqlite_timeout * 1000)
            except Exception as exc:
                config_error = isinstance(exc, DatabaseInitializationError)
                DatabaseMetrics.record_engine_initialization_failed(config_error=config_error)
                logger.error(
                    "Database initialization failed",
                    extra={"error_type": type(exc).__name__, "config_error": config_error},
                    exc_info=True,
                )
                cls._reset_state()
                if config_error:
                    raise
                raise DatabaseInitializationError(f"Database initialization failed: {exc}") from exc

            cls._engine = engine
            cls._settings = settings
            cls._session_factory = async_sessionmaker(
                bind=engine, class_=AsyncSession, expire_on_commit=False
            )

            DatabaseMetrics.record_engine_initialized(
                url_scheme=settings.scheme, pool_class=settings.pool_class.__name__
            )
            logger.info(
                "Database initialized",
                extra={"url_scheme": settings.scheme, "pool_class": settings.pool_class.__name__},
            )

    @classmethod
    async def shutdown(cls) -> None:
        """Dispose the engine. Safe to call when not initialized."""
        async with cls._lock():
            engine = cls._engine
            if engine is None:
                return
            try:
                await engine.dispose()
            finally:
                cls._reset_state()
            DatabaseMetrics.record_engine_shutdown()
            logger.info("Database engine disposed")

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._engine is not None

    @classmethod
    def _require_engine(cls) -> AsyncEngine:
        if cls._engine is None or cls._session_factory is None:
            raise DatabaseNotInitializedError(
                "DatabaseService.initialize() must run before the database is used"
            )
        return cls._engine

    # ========================================================================
    # Schema
    # ========================================================================

    @classmethod
    async def create_all(cls) -> None:
        """Create every mapped table (embedded deployments and tests)."""
        engine = cls._require_engine()

        # Registers the mapped tables on Base.metadata.
        import questledger.database.models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema created", extra={"tables": sorted(Base.metadata.tables)})

    @classmethod
    async def drop_all(cls) -> None:
        engine = cls._require_engine()

        import questledger.database.models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.warning("Database schema dropped")

    # ========================================================================
    # Health
    # ========================================================================

    @classmethod
    async def health_check(cls) -> bool:
        """`SELECT 1` reachability check. Never raises."""
        if cls._engine is None:
            DatabaseMetrics.record_health_check(success=False, duration_ms=0.0)
            return False

        start = time.perf_counter()
        healthy = False
        try:
            async with cls._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            healthy = True
        except DBAPIError as exc:
            logger.warning(
                "Database health check failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
        finally:
            DatabaseMetrics.record_health_check(
                success=healthy, duration_ms=(time.perf_counter() - start) * 1000.0
            )
        return healthy

    @classmethod
    def get_pool_metrics(cls) -> Dict[str, int]:
        """Connection pool statistics; zeros for NullPool or no engine."""
        pool = cls._engine.pool if cls._engine is not None else None
        if not isinstance(pool, AsyncAdaptedQueuePool):
            return dict.fromkeys(
                ("pool_size", "checked_out", "checked_in", "overflow", "total_connections"), 0
            )

        checked_out = pool.checkedout()
        checked_in = pool.checkedin()
        return {
            "pool_size": pool.size(),
            "checked_out": checked_out,
            "checked_in": checked_in,
            "overflow": max(pool.overflow(), 0),
            "total_connections": checked_out + checked_in,
        }

    # ========================================================================
    # Sessions
    # ========================================================================

    @classmethod
    @asynccontextmanager
    async def get_session(cls) -> AsyncGenerator[AsyncSession, None]:
        """Session without automatic commit, for reads."""
        cls._require_engine()
        assert cls._session_factory is not None

        async with cls._session_factory() as session:
            yield session

    @classmethod
    @asynccontextmanager
    async def get_transaction(cls) -> AsyncGenerator[AsyncSession, None]:
        """
        Atomic write transaction.

        Optimistic version checks fire at commit. Any exception rolls the
        transaction back and propagates unchanged.
        """
        cls._require_engine()
        assert cls._session_factory is not None and cls._settings is not None
        settings = cls._settings

        start = time.perf_counter()
        DatabaseMetrics.record_transaction_started()

        async with cls._session_factory() as session:
            try:
                if settings.is_postgres:
                    await session.execute(
                        text(f"SET LOCAL statement_timeout = {settings.statement_timeout_ms}")
                    )
                yield session
                await session.commit()
            except Exception as exc:
                await session.rollback()
                cls._record_rollback(exc, (time.perf_counter() - start) * 1000.0)
                raise

            DatabaseMetrics.record_transaction_committed(
                duration_ms=(time.perf_counter() - start) * 1000.0
            )

    @staticmethod
    def _record_rollback(exc: Exception, duration_ms: float) -> None:
        category = _rollback_category(exc)
        DatabaseMetrics.record_transaction_rolled_back(
            duration_ms=duration_ms, error_type=category
        )
        extra = {"error_type": type(exc).__name__, "duration_ms": duration_ms}

        if category == "conflict":
            logger.info("Concurrent modification detected; rolled back", extra=extra)
        elif isinstance(exc, OperationalError):
            logger.warning("Operational error in transaction; rolled back", extra=extra)
        elif isinstance(exc, DBAPIError):
            logger.error("Database error in transaction; rolled back", extra=extra, exc_info=exc)
        else:
            logger.debug("Transaction aborted; rolled back", extra=extra)
