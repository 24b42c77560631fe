"""
Capacity-constrained lobby registry.
"""

from questledger.modules.lobby.players import build_player_ref
from questledger.modules.lobby.results import JoinResult, LeaveResult
from questledger.modules.lobby.service import LobbyService

__all__ = ["JoinResult", "LeaveResult", "LobbyService", "build_player_ref"]
