"""
Lobby - capacity-constrained group of players. Schema only.

`players` is an ordered list of PlayerRef dicts, unique by `user_id`, with
len(players) <= max_players. The first entry is the host at creation.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from questledger.core.database.base import Base, JSONDocument, TimestampMixin
from questledger.database.models.enums import LobbyStatus


class Lobby(Base, TimestampMixin):
    __tablename__ = "lobbies"
    __table_args__ = (
        CheckConstraint("max_players >= 1", name="max_players_positive"),
        Index("ix_lobbies_status_last_activity", "status", "last_activity_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LobbyStatus.WAITING.value
    )
    host_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    max_players: Mapped[int] = mapped_column(Integer, nullable=False)

    players: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONDocument, nullable=False, default=list
    )

    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, doc="Optimistic locking version"
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Lobby id={self.id!r} status={self.status!r} "
            f"players={len(self.players or [])}/{self.max_players}>"
        )
