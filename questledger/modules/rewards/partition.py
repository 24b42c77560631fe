"""
Reward partitioning: turn a declared reward list into the amounts and item
ids a single grant applies.

Accepted entry shapes::

    RewardSpec(RewardKind.XP, 10)
    {"kind": "xp", "amount": 10}
    {"kind": "item", "id": "rune_of_clarity"}
    {"xp": 10}                      # single-key shorthand

An entry in none of these shapes is rejected with ValidationError. A
well-formed entry with an unknown kind is logged and skipped so catalog
evolution never breaks a grant. Every numeric amount is validated
(non-negative integer) before any transaction starts; when a numeric kind
appears more than once the first value is used.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from questledger.core.logging.logger import get_logger
from questledger.core.validation.input_validator import InputValidator
from questledger.modules.catalog.models import RewardKind, RewardSpec
from questledger.modules.rewards.items import canonical_item_id
from questledger.modules.rewards.results import RewardSnapshot
from questledger.modules.shared.exceptions import ValidationError

logger = get_logger(__name__)


@dataclass(frozen=True)
class ItemGrant:
    item_id: str
    kind: RewardKind


@dataclass(frozen=True)
class PartitionedRewards:
    xp: int = 0
    currency: int = 0
    rare_currency: int = 0
    items: Tuple[ItemGrant, ...] = ()
    skipped: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.xp or self.currency or self.rare_currency or self.items)

    def snapshot(self) -> RewardSnapshot:
        return RewardSnapshot(
            xp=self.xp,
            currency=self.currency,
            rare_currency=self.rare_currency,
            items=tuple(grant.item_id for grant in self.items),
        )


def _unpack(entry: Any) -> Tuple[str, Any]:
    if isinstance(entry, RewardSpec):
        return entry.kind.value, entry.value
    if isinstance(entry, Mapping):
        if "kind" in entry:
            kind = entry.get("kind")
            if isinstance(kind, str) and kind.strip():
                for key in ("amount", "id", "value"):
                    if key in entry:
                        return kind, entry[key]
                return kind, None
        elif len(entry) == 1:
            kind, value = next(iter(entry.items()))
            if isinstance(kind, str) and kind.strip():
                return kind, value
    raise ValidationError("rewards", f"malformed reward entry: {entry!r}")


def partition_rewards(
    rewards: Iterable[Any],
    *,
    aliases: Optional[Mapping[str, str]] = None,
) -> PartitionedRewards:
    """
    Split `rewards` into numeric totals and canonical item grants.

    Raises:
        ValidationError: On a malformed entry, a negative or non-integer amount,
            or a blank item id
    """
    numeric: Dict[RewardKind, int] = {}
    items: List[ItemGrant] = []
    seen_items: set = set()
    skipped: List[str] = []

    for entry in rewards or ():
        kind_name, value = _unpack(entry)
        try:
            kind = RewardKind(kind_name)
        except ValueError:
            skipped.append(kind_name)
            logger.warning(
                "Unsupported reward kind skipped",
                extra={"reward_kind": kind_name},
            )
            continue

        if kind.is_numeric:
            amount = InputValidator.validate_integer(value, kind.value, min_value=0, strict=True)
            if kind in numeric:
                logger.warning(
                    "Duplicate numeric reward ignored; first value wins",
                    extra={
                        "reward_kind": kind.value,
                        "kept_amount": numeric[kind],
                        "ignored_amount": amount,
                    },
                )
                continue
            numeric[kind] = amount
            continue

        if not isinstance(value, str) or not value.strip():
            raise ValidationError(kind.value, "item id must be a non-empty string")
        item_id = canonical_item_id(value, aliases)
        if item_id in seen_items:
            continue
        seen_items.add(item_id)
        items.append(ItemGrant(item_id=item_id, kind=kind))

    return PartitionedRewards(
        xp=numeric.get(RewardKind.XP, 0),
        currency=numeric.get(RewardKind.CURRENCY, 0),
        rare_currency=numeric.get(RewardKind.RARE_CURRENCY, 0),
        items=tuple(items),
        skipped=tuple(skipped),
    )
