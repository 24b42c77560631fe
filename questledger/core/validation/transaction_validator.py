"""
Validation and sanitization of audit transaction payloads.

Enforces a size limit per details payload, scrubs PII-like keys, and checks
required fields for the transaction types the engine emits. Unknown types
are allowed by default so new audit producers do not need a schema first.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, NoReturn, Optional, Set

from questledger.core.logging.logger import get_logger
from questledger.modules.shared.exceptions import ValidationError

logger = get_logger(__name__)


def _raise_validation_error(field_name: str, value: Any, message: str) -> NoReturn:
    logger.debug(
        "Transaction validation failed",
        extra={
            "field_name": field_name,
            "raw_value": repr(value),
            "reason": message,
        },
    )
    raise ValidationError(field_name, message)


class TransactionValidator:
    """Stateless validator for audit transaction details."""

    MAX_DETAILS_SIZE_BYTES: int = 10 * 1024

    REQUIRED_FIELDS: Dict[str, Set[str]] = {
        "reward_grant": {"challenge_id", "granted", "vault_clipped", "applied_to"},
        "progression_reset": {"chapters_cleared", "claims_deleted"},
        "progression_repair": {"challenges_repaired", "chapters_repaired"},
    }

    PII_FIELDS: Set[str] = {
        "email",
        "ip_address",
        "password",
        "token",
        "api_key",
        "secret",
    }

    @staticmethod
    def validate_transaction(
        transaction_type: str,
        details: Dict[str, Any],
        allow_unknown_types: bool = True,
    ) -> Dict[str, Any]:
        """
        Validate and sanitize transaction details.

        Raises:
            ValidationError: on a missing type, oversize payload, missing
            required fields or (when disallowed) an unknown type.
        """
        if not transaction_type or not isinstance(transaction_type, str):
            _raise_validation_error(
                "transaction_type", transaction_type, "Transaction type is required"
            )
        if len(transaction_type) > 100:
            _raise_validation_error(
                "transaction_type",
                transaction_type,
                "Transaction type too long (max 100 characters)",
            )
        if not isinstance(details, dict):
            _raise_validation_error("details", details, "Transaction details must be a dictionary")

        size_bytes = len(json.dumps(details, default=str).encode("utf-8"))
        if size_bytes > TransactionValidator.MAX_DETAILS_SIZE_BYTES:
            _raise_validation_error(
                "details",
                f"{size_bytes / 1024:.1f}KB",
                f"Transaction details too large ({size_bytes / 1024:.1f}KB exceeds "
                f"{TransactionValidator.MAX_DETAILS_SIZE_BYTES // 1024}KB limit)",
            )

        sanitized = TransactionValidator._scrub_pii(details)

        required = TransactionValidator.REQUIRED_FIELDS.get(transaction_type)
        if required is not None:
            missing = required - sanitized.keys()
            if missing:
                _raise_validation_error(
                    "details",
                    sanitized,
                    f"Missing required fields for {transaction_type}: "
                    f"{', '.join(sorted(missing))}",
                )
        elif not allow_unknown_types:
            _raise_validation_error(
                "transaction_type",
                transaction_type,
                f"Unknown transaction type: {transaction_type}",
            )

        return sanitized

    @staticmethod
    def _scrub_pii(details: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively redact PII-like keys in dicts and lists of dicts."""
        sanitized: Dict[str, Any] = {}

        for key, value in details.items():
            lower_key = key.lower()
            if any(pii in lower_key for pii in TransactionValidator.PII_FIELDS):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = TransactionValidator._scrub_pii(value)
            elif isinstance(value, list):
                cleaned: List[Any] = [
                    TransactionValidator._scrub_pii(item) if isinstance(item, dict) else item
                    for item in value
                ]
                sanitized[key] = cleaned
            else:
                sanitized[key] = value

        return sanitized

    @staticmethod
    def validate_context(context: Optional[str]) -> str:
        if context is None:
            return "unknown"
        if not isinstance(context, str):
            _raise_validation_error("context", context, "Context must be a string")
        if len(context) > 500:
            _raise_validation_error("context", context, "Context too long (max 500 characters)")
        return context
