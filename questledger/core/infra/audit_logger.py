"""
Audit Logger - canonical audit events for ledger transactions.

Purpose
-------
Shape audit records for committed ledger operations (reward grants,
progression resets and repairs) into a single canonical schema and publish
them on the EventBus as "audit.transaction.logged". A separate consumer
subscribes and persists them; this class never writes to the database.

Design Notes
------------
- Called only after the owning transaction has committed.
- Never raises. The owning operation has already committed, so a payload
  that fails validation or a failed publish is logged and counted, and the
  record is dropped.
- Metrics are kept in a module-level AuditMetrics instance.

Usage
-----
    await AuditLogger.log(
        user_id="u-42",
        transaction_type="reward_grant",
        details={...},
        context="rewards.grant",
        bus=self.event_bus,
    )
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from questledger.core.clock import utc_now
from questledger.core.event import EventBus, EventPayload, event_bus
from questledger.core.logging.logger import get_logger
from questledger.core.validation import TransactionValidator
from questledger.modules.shared.exceptions import ValidationError

logger = get_logger(__name__)


@dataclass
class AuditMetrics:
    """In-memory counters for audit event production."""

    events_emitted: int = 0
    validation_errors: int = 0
    publish_errors: int = 0
    total_log_time_ms: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        total_events = max(self.events_emitted, 1)
        error_events = self.validation_errors + self.publish_errors
        return {
            "events_emitted": self.events_emitted,
            "validation_errors": self.validation_errors,
            "publish_errors": self.publish_errors,
            "total_errors": error_events,
            "error_rate_percent": round(error_events / total_events * 100.0, 2),
            "avg_log_time_ms": round(self.total_log_time_ms / total_events, 3),
        }


_metrics = AuditMetrics()


class AuditLogger:
    """
    Write-only audit trail producer.

    Every record has the shape::

        {timestamp, user_id, transaction_type, details, context, meta}
    """

    EVENT_NAME: str = "audit.transaction.logged"

    @classmethod
    async def log(
        cls,
        *,
        user_id: str,
        transaction_type: str,
        details: Mapping[str, Any],
        context: Optional[str] = None,
        meta: Optional[Mapping[str, Any]] = None,
        bus: Optional[EventBus] = None,
        validate: bool = True,
    ) -> bool:
        """
        Publish a canonical audit transaction event.

        Returns True when the record was published. A record that fails
        validation is logged, counted and dropped.
        """
        start_time = time.perf_counter()
        target = bus if bus is not None else event_bus

        try:
            if validate:
                sanitized_details = TransactionValidator.validate_transaction(
                    transaction_type=transaction_type,
                    details=dict(details),
                )
                validated_context = TransactionValidator.validate_context(context)
            else:
                sanitized_details = dict(details)
                validated_context = context or "unknown"

            payload: EventPayload = {
                "timestamp": utc_now().isoformat(),
                "user_id": str(user_id),
                "transaction_type": transaction_type,
                "details": sanitized_details,
                "context": validated_context,
                "meta": dict(meta) if meta is not None else {},
            }

            await target.publish(cls.EVENT_NAME, payload)

            elapsed_ms = (time.perf_counter() - start_time) * 1000
            _metrics.events_emitted += 1
            _metrics.total_log_time_ms += elapsed_ms

            logger.info(
                "Audit event emitted",
                extra={
                    "event_name": cls.EVENT_NAME,
                    "user_id": str(user_id),
                    "transaction_type": transaction_type,
                    "context": validated_context,
                    "log_time_ms": round(elapsed_ms, 3),
                },
            )
            return True

        except ValidationError as exc:
            _metrics.validation_errors += 1
            logger.error(
                "Audit validation failed",
                extra={
                    "user_id": str(user_id),
                    "transaction_type": transaction_type,
                    "validation_error": str(exc),
                },
            )
            return False

        except Exception as exc:
            _metrics.publish_errors += 1
            logger.error(
                "Failed to publish audit event",
                extra={
                    "user_id": str(user_id),
                    "transaction_type": transaction_type,
                    "context": context,
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            return False

    @classmethod
    def get_metrics(cls) -> Dict[str, Any]:
        return _metrics.as_dict()

    @classmethod
    def reset_metrics(cls) -> None:
        global _metrics
        _metrics = AuditMetrics()
