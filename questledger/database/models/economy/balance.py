"""
PlayerBalance - numeric balances and owned items for a user.
Schema only.

`items` maps canonical item id to
{"granted_by_challenge": str, "granted_at": iso8601, "kind": "item" | "ability"}.
Historically stored documents may still carry non-canonical keys; readers
canonicalize before comparing.
"""

from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from questledger.core.database.base import Base, JSONDocument, TimestampMixin


class PlayerBalance(Base, TimestampMixin):
    __tablename__ = "player_balances"
    __table_args__ = (
        CheckConstraint("xp >= 0", name="xp_non_negative"),
        CheckConstraint("currency >= 0", name="currency_non_negative"),
        CheckConstraint("rare_currency >= 0", name="rare_currency_non_negative"),
        CheckConstraint("level >= 1", name="level_positive"),
    )

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)

    xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rare_currency: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    items: Mapped[Dict[str, Any]] = mapped_column(
        JSONDocument, nullable=False, default=dict
    )

    version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, doc="Optimistic locking version"
    )

    __mapper_args__ = {"version_id_col": version}
