"""
Reward ledger result objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Tuple


@dataclass(frozen=True)
class RewardSnapshot:
    """
    Nominal value of one grant: what the challenge was worth, independent of
    vault clipping. Stored verbatim on the receipt and replayed on re-grant.
    """

    xp: int = 0
    currency: int = 0
    rare_currency: int = 0
    items: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RewardSnapshot":
        return cls(
            xp=int(data.get("xp", 0) or 0),
            currency=int(data.get("currency", 0) or 0),
            rare_currency=int(data.get("rare_currency", 0) or 0),
            items=tuple(data.get("items") or ()),
        )

    @property
    def is_empty(self) -> bool:
        return not (self.xp or self.currency or self.rare_currency or self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "xp": self.xp,
            "currency": self.currency,
            "rare_currency": self.rare_currency,
            "items": list(self.items),
        }


@dataclass(frozen=True)
class GrantResult:
    already_claimed: bool
    granted: RewardSnapshot = field(default_factory=RewardSnapshot)
    vault_clipped: int = 0
    applied_to: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "already_claimed": self.already_claimed,
            "granted": self.granted.to_dict(),
            "vault_clipped": self.vault_clipped,
            "applied_to": list(self.applied_to),
        }
