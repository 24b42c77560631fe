"""
Input validation for identifiers and amounts entering the engine.

All validators:
- Are stateless and deterministic
- Return the validated (normalized) value on success
- Raise ValidationError on failure, before any transaction starts
"""

from __future__ import annotations

import re
from typing import Any, NoReturn, Optional

from questledger.core.logging.logger import get_logger
from questledger.modules.shared.exceptions import ValidationError

logger = get_logger(__name__)

MAX_IDENTIFIER_LENGTH = 128
_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_.:@\-]+$")


def _raise_validation_error(field_name: str, value: Any, message: str) -> NoReturn:
    logger.debug(
        "Input validation failed",
        extra={
            "field_name": field_name,
            "raw_value": repr(value),
            "reason": message,
        },
    )
    raise ValidationError(field_name, message)


class InputValidator:
    """Centralized input validation."""

    # =========================================================================
    # INTEGER VALIDATION
    # =========================================================================

    @staticmethod
    def validate_integer(
        value: Any,
        field_name: str,
        min_value: Optional[int] = None,
        max_value: Optional[int] = None,
        *,
        strict: bool = False,
    ) -> int:
        """
        Validate and convert value to an integer with optional bounds.

        With `strict=True` only real integers are accepted (no strings, no
        floats, no booleans); reward amounts use this mode.
        """
        if value is None:
            _raise_validation_error(field_name, value, "Value is required")

        if isinstance(value, bool):
            _raise_validation_error(field_name, value, "Must be a whole number, got a boolean")

        if strict:
            if not isinstance(value, int):
                _raise_validation_error(
                    field_name, value, f"Must be a whole number, got '{value!r}'"
                )
            int_value = value
        else:
            if isinstance(value, float) and not value.is_integer():
                _raise_validation_error(
                    field_name, value, f"Must be a whole number, got '{value}'"
                )
            try:
                int_value = int(value)
            except (ValueError, TypeError):
                _raise_validation_error(
                    field_name, value, f"Must be a whole number, got '{value}'"
                )

        if min_value is not None and int_value < min_value:
            _raise_validation_error(
                field_name, int_value, f"Must be at least {min_value}, got {int_value}"
            )

        if max_value is not None and int_value > max_value:
            _raise_validation_error(
                field_name, int_value, f"Cannot exceed {max_value}, got {int_value}"
            )

        return int_value

    @staticmethod
    def validate_positive_integer(
        value: Any, field_name: str, max_value: Optional[int] = None
    ) -> int:
        return InputValidator.validate_integer(value, field_name, min_value=1, max_value=max_value)

    # =========================================================================
    # IDENTIFIERS
    # =========================================================================

    @staticmethod
    def validate_identifier(value: Any, field_name: str) -> str:
        """
        Validate an opaque string identifier (user id, challenge id, lobby id).

        Identifiers are trimmed, non-empty, at most 128 characters and limited
        to letters, digits and `_ . : @ -`.
        """
        if value is None:
            _raise_validation_error(field_name, value, "Value is required")
        if not isinstance(value, str):
            _raise_validation_error(field_name, value, "Must be a string")

        str_value = value.strip()
        if not str_value:
            _raise_validation_error(field_name, value, "Cannot be empty")
        if len(str_value) > MAX_IDENTIFIER_LENGTH:
            _raise_validation_error(
                field_name, value, f"Cannot exceed {MAX_IDENTIFIER_LENGTH} characters"
            )
        if not _IDENTIFIER_RE.match(str_value):
            _raise_validation_error(field_name, value, "Contains invalid characters")

        return str_value

    @staticmethod
    def validate_user_id(value: Any) -> str:
        return InputValidator.validate_identifier(value, "user_id")

    @staticmethod
    def validate_chapter_id(value: Any) -> int:
        return InputValidator.validate_integer(value, "chapter_id", min_value=1, strict=True)
