"""
Item identity and vault sizing.

`canonical_item_id` is the single place where item ids are normalized. It is
applied when rewards are parsed and when owned items are compared, so a
historically misspelled key and its canonical form count as the same item.
"""

from __future__ import annotations

import re
from typing import Iterable, Mapping, Optional, Set

_SEPARATORS = re.compile(r"[\s_]+")
_DASH_RUNS = re.compile(r"-{2,}")


def _normalize(raw: str) -> str:
    value = _SEPARATORS.sub("-", raw.strip().lower())
    return _DASH_RUNS.sub("-", value).strip("-")


def canonical_item_id(raw: str, aliases: Optional[Mapping[str, str]] = None) -> str:
    """
    Canonical form of an item id.

    Lower-cases, turns underscores and whitespace into single dashes, then
    maps legacy spellings through `aliases` (keys and values are normalized
    the same way).

    >>> canonical_item_id("Captain_Helmet", {"captain-helmet": "captains-helmet"})
    'captains-helmet'
    """
    normalized = _normalize(raw)
    if aliases:
        for legacy, canonical in aliases.items():
            if _normalize(str(legacy)) == normalized:
                return _normalize(str(canonical))
    return normalized


def owned_item_ids(
    keys: Iterable[str], aliases: Optional[Mapping[str, str]] = None
) -> Set[str]:
    """Canonical ids of every stored item key, whatever its historical spelling."""
    return {canonical_item_id(key, aliases) for key in keys if isinstance(key, str)}


def vault_capacity_for_level(
    level: int,
    *,
    base: int = 1000,
    per_level: int = 350,
    per_level_sq: int = 50,
) -> int:
    """
    Vault capacity at `level`: base + per_level*(L-1) + per_level_sq*(L-1)^2.

    Levels below 1 are treated as level 1.
    """
    steps = max(int(level), 1) - 1
    return base + per_level * steps + per_level_sq * steps * steps
