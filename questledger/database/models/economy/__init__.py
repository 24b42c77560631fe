"""
Economy domain ORM models.

Exports:
- PlayerBalance
- RewardClaim
- Vault
"""

from .balance import PlayerBalance
from .reward_claim import RewardClaim
from .vault import Vault

__all__ = ["PlayerBalance", "RewardClaim", "Vault"]
