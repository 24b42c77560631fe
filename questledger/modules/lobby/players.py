"""
PlayerRef construction.

A PlayerRef is the roster entry stored in `Lobby.players`. Identity and
profile fields come from the caller; readiness state always starts from the
configured defaults.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

DEFAULT_READINESS: Dict[str, int] = {
    "level": 1,
    "xp": 0,
    "health": 100,
    "max_health": 100,
    "shield_strength": 0,
    "max_shield_strength": 0,
}


def build_player_ref(
    user_id: str,
    profile: Optional[Mapping[str, Any]] = None,
    defaults: Optional[Mapping[str, Any]] = None,
    *,
    is_leader: bool = False,
) -> Dict[str, Any]:
    """
    Roster entry for `user_id`.

    `profile` may supply display_name, photo_url, level and xp; everything
    else is taken from `defaults` (falling back to DEFAULT_READINESS).
    """
    profile = dict(profile or {})
    base = {**DEFAULT_READINESS, **dict(defaults or {})}

    return {
        "user_id": user_id,
        "display_name": str(profile.get("display_name") or user_id),
        "photo_url": profile.get("photo_url"),
        "level": int(profile.get("level", base["level"])),
        "xp": int(profile.get("xp", base["xp"])),
        "health": int(base["health"]),
        "max_health": int(base["max_health"]),
        "shield_strength": int(base["shield_strength"]),
        "max_shield_strength": int(base["max_shield_strength"]),
        "equipped_items": {},
        "moves": [],
        "action_cards": [],
        "is_ready": False,
        "is_leader": is_leader,
    }


def find_player(players: Any, user_id: str) -> Optional[int]:
    """Index of `user_id` in a roster, or None."""
    for index, player in enumerate(players or []):
        if isinstance(player, Mapping) and player.get("user_id") == user_id:
            return index
    return None
