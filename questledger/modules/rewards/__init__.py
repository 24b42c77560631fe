"""
Reward ledger: exactly-once grants with vault clipping and canonical items.
"""

from questledger.modules.rewards.items import canonical_item_id, vault_capacity_for_level
from questledger.modules.rewards.partition import PartitionedRewards, partition_rewards
from questledger.modules.rewards.results import GrantResult, RewardSnapshot
from questledger.modules.rewards.service import RewardLedgerService

__all__ = [
    "GrantResult",
    "PartitionedRewards",
    "RewardLedgerService",
    "RewardSnapshot",
    "canonical_item_id",
    "partition_rewards",
    "vault_capacity_for_level",
]
