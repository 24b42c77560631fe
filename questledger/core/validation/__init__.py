"""
Validation helpers for inputs and audit payloads.
"""

from questledger.core.validation.input_validator import InputValidator
from questledger.core.validation.transaction_validator import TransactionValidator

__all__ = ["InputValidator", "TransactionValidator"]
