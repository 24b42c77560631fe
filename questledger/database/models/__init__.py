"""
Database Models Package
========================

SQLAlchemy ORM models for questledger, organized by domain:

- progression: UserProgress
- economy: PlayerBalance, Vault, RewardClaim
- social: Lobby
- enums: shared enumerations

All models are schema-only. Mutable aggregates carry a `version` column used
as SQLAlchemy's `version_id_col` for optimistic concurrency.
"""

from questledger.core.database.base import Base

from . import enums
from .economy import PlayerBalance, RewardClaim, Vault
from .enums import LobbyStatus
from .progression import UserProgress
from .social import Lobby

__all__ = [
    "Base",
    "UserProgress",
    "PlayerBalance",
    "Vault",
    "RewardClaim",
    "Lobby",
    "LobbyStatus",
    "enums",
]
