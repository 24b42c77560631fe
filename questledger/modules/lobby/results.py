"""
Lobby operation results. A full lobby is `JoinResult(is_full=True)`, not an
exception.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class JoinResult:
    success: bool
    already_joined: bool = False
    is_full: bool = False
    player_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LeaveResult:
    success: bool = True
    was_present: bool = False
    lobby_expired: bool = False
    player_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
