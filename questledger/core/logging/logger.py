"""
questledger logging subsystem.

Purpose
-------
Single entry point for engine observability:

- Every record carries the operation context (user, lobby, challenge,
  correlation id) taken from a ContextVar, so a retried transaction logs
  under the same correlation id as its first attempt.
- Records are handed to a bounded queue and written by a background
  QueueListener; a full queue drops the record and counts it instead of
  blocking the event loop.
- Output is JSON in production (and in the optional daily file), plain or
  colored text on a developer console.

Public API
----------
get_logger(), LogContext, set_log_context(), get_log_context(),
clear_log_context(), get_logging_health(), setup_logging(),
shutdown_logging().

Settings are read from `Config` when `setup_logging()` runs, so calling
`shutdown_logging()` then `setup_logging()` after `Config.reload()` picks up
new values.
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

from questledger.core.config.config import Config

_INITIALIZED_FLAG = "_questledger_logging_initialized"

# Fields promoted to top-level keys of a JSON record.
CONTEXT_FIELDS = ("user_id", "lobby_id", "challenge_id", "correlation_id", "component", "operation")

_log_context: ContextVar[Dict[str, Any]] = ContextVar("questledger_log_context", default={})


# ============================================================================
# Settings
# ============================================================================


@dataclass(frozen=True)
class LogSettings:
    """Snapshot of the logging-related `Config` values."""

    level: int
    environment: str
    json_output: bool
    colors: bool
    to_file: bool
    logs_dir: Path
    console_format: str = "%(asctime)s | %(levelname)-8s | %(name)-36s | %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    file_name: str = "questledger_daily.json.log"
    file_backups: int = 1
    queue_size: int = 10_000

    @classmethod
    def from_config(cls) -> "LogSettings":
        environment = str(Config.ENVIRONMENT).lower()
        production = environment == "production"
        json_output = production if Config.LOG_JSON is None else bool(Config.LOG_JSON)
        level_name = Config.LOG_LEVEL if isinstance(Config.LOG_LEVEL, str) else "INFO"

        return cls(
            level=getattr(logging, level_name.upper(), logging.INFO),
            environment=environment,
            json_output=json_output,
            colors=not (production or json_output) and sys.stdout.isatty(),
            to_file=bool(Config.LOG_TO_FILE),
            logs_dir=Path(Config.LOGS_DIR).resolve(),
        )


# ============================================================================
# Health
# ============================================================================


@dataclass
class _QueueStats:
    enqueued: int = 0
    dropped: int = 0
    handler_errors: int = 0


@dataclass(frozen=True)
class LoggingHealth:
    initialized: bool
    queue_size: int
    queue_max_size: int
    records_enqueued: int
    records_dropped: int
    listener_errors: int


@dataclass
class _LoggingState:
    settings: Optional[LogSettings] = None
    log_queue: Optional["queue.Queue[logging.LogRecord]"] = None
    listener: Optional[QueueListener] = None
    stats: _QueueStats = field(default_factory=_QueueStats)


_state = _LoggingState()


# ============================================================================
# Filters & Formatters
# ============================================================================


class ContextFilter(logging.Filter):
    """Copy the active log context onto each record (explicit extras win)."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context = _log_context.get({})
        for key in ("user_id", "lobby_id", "challenge_id", "operation"):
            if not hasattr(record, key):
                setattr(record, key, context.get(key, "N/A"))
        record.correlation_id = context.get("correlation_id") or "N/A"
        record.component = context.get("component") or record.name.rsplit(".", 1)[-1]
        return True


class ColoredFormatter(logging.Formatter):
    """Level-colored console text for interactive terminals."""

    RESET = "\033[0m"
    LEVEL_COLORS: Dict[str, str] = {
        "DEBUG": "\033[90m",
        "INFO": "\033[94m",
        "WARNING": "\033[93m",
        "ERROR": "\033[91m",
        "CRITICAL": "\033[1;91m",
    }

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        color = self.LEVEL_COLORS.get(record.levelname)
        if color is None:
            return super().format(record)

        plain = record.levelname
        record.levelname = f"{color}{plain}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


# Attributes every LogRecord has; anything else came in through `extra=`.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record; `extra=` fields are nested under "extra"."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None and value != "N/A":
                payload[name] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and key not in CONTEXT_FIELDS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra

        return json.dumps(payload, ensure_ascii=False, default=str)


# ============================================================================
# Queue plumbing
# ============================================================================


class LedgerQueueHandler(QueueHandler):
    """Non-blocking enqueue; drops and counts records when the queue is full."""

    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        _state.stats.enqueued += 1
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            _state.stats.dropped += 1
            sys.stderr.write("questledger: log queue full, record dropped\n")


class LedgerQueueListener(QueueListener):
    def handleError(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        _state.stats.handler_errors += 1
        sys.stderr.write("questledger: log handler failed on a record\n")


def _build_handlers(settings: LogSettings) -> List[logging.Handler]:
    console = logging.StreamHandler(sys.stdout)
    if settings.json_output:
        console.setFormatter(JSONFormatter())
    else:
        formatter_cls = ColoredFormatter if settings.colors else logging.Formatter
        console.setFormatter(
            formatter_cls(fmt=settings.console_format, datefmt=settings.date_format)
        )
    handlers: List[logging.Handler] = [console]

    if settings.to_file:
        settings.logs_dir.mkdir(parents=True, exist_ok=True)
        daily = TimedRotatingFileHandler(
            filename=str(settings.logs_dir / settings.file_name),
            when="midnight",
            backupCount=settings.file_backups,
            encoding="utf-8",
            utc=True,
        )
        daily.setFormatter(JSONFormatter())
        handlers.append(daily)

    for handler in handlers:
        handler.setLevel(settings.level)
    return handlers


# ============================================================================
# Lifecycle
# ============================================================================


def setup_logging() -> None:
    """Install the queue handler on the root logger. Idempotent."""
    root = logging.getLogger()
    if getattr(root, _INITIALIZED_FLAG, False):
        return

    settings = LogSettings.from_config()
    log_queue: "queue.Queue[logging.LogRecord]" = queue.Queue(settings.queue_size)

    listener = LedgerQueueListener(log_queue, *_build_handlers(settings), respect_handler_level=True)
    listener.start()

    queue_handler = LedgerQueueHandler(log_queue)
    queue_handler.setLevel(settings.level)
    queue_handler.addFilter(ContextFilter())

    root.setLevel(settings.level)
    root.addHandler(queue_handler)

    # Quiet chatty third-party loggers unless SQL echo was asked for.
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if Config.DATABASE_ECHO else logging.WARNING
    )

    _state.settings = settings
    _state.log_queue = log_queue
    _state.listener = listener
    _state.stats = _QueueStats()
    setattr(root, _INITIALIZED_FLAG, True)

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={
            "environment": settings.environment,
            "log_level": logging.getLevelName(settings.level),
            "json": settings.json_output,
            "file_logging": settings.to_file,
            "queue_max_size": settings.queue_size,
        },
    )


def shutdown_logging() -> None:
    """Flush the queue, close handlers and detach from the root logger."""
    root = logging.getLogger()
    if not getattr(root, _INITIALIZED_FLAG, False):
        return

    logging.getLogger(__name__).info("Shutting down logging")

    listener = _state.listener
    if listener is not None:
        try:
            listener.stop()
        finally:
            for handler in listener.handlers:
                handler.flush()
                handler.close()

    for handler in [h for h in root.handlers if isinstance(h, LedgerQueueHandler)]:
        root.removeHandler(handler)

    _state.listener = None
    _state.log_queue = None
    setattr(root, _INITIALIZED_FLAG, False)


def get_logging_health() -> LoggingHealth:
    log_queue = _state.log_queue
    return LoggingHealth(
        initialized=bool(getattr(logging.getLogger(), _INITIALIZED_FLAG, False)),
        queue_size=log_queue.qsize() if log_queue is not None else 0,
        queue_max_size=log_queue.maxsize if log_queue is not None else 0,
        records_enqueued=_state.stats.enqueued,
        records_dropped=_state.stats.dropped,
        listener_errors=_state.stats.handler_errors,
    )


# ============================================================================
# Context API
# ============================================================================


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Scoped log context, usable with `with` and `async with`.

    Nested contexts inherit the enclosing fields and correlation id; the
    previous context is restored on exit.
    """

    def __init__(
        self,
        user_id: Optional[str] = None,
        lobby_id: Optional[str] = None,
        challenge_id: Optional[str] = None,
        component: Optional[str] = None,
        operation: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **extra: Any,
    ) -> None:
        parent = _log_context.get({})
        scoped = {
            "user_id": user_id,
            "lobby_id": lobby_id,
            "challenge_id": challenge_id,
            "component": component,
            "operation": operation,
        }

        self.context: Dict[str, Any] = {
            **parent,
            **{key: str(value) for key, value in scoped.items() if value is not None},
            "correlation_id": correlation_id
            or parent.get("correlation_id")
            or uuid.uuid4().hex[:8],
            **extra,
        }
        self._token: Optional[Token[Dict[str, Any]]] = None

    def __enter__(self) -> "LogContext":
        self._token = _log_context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


def get_log_context() -> Dict[str, Any]:
    return dict(_log_context.get({}))


def set_log_context(**fields: Any) -> None:
    """Merge fields into the current context (None values are ignored)."""
    updated = dict(_log_context.get({}))
    for key, value in fields.items():
        if value is None or value == "":
            continue
        updated[key] = str(value) if key in ("user_id", "lobby_id") else value
    _log_context.set(updated)


def clear_log_context() -> None:
    _log_context.set({})


setup_logging()
