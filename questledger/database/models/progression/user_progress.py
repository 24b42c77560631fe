"""
UserProgress - per-user chapter/challenge progression document.
Schema only.

`chapters` maps str(chapter_id) to::

    {
        "is_active": bool,
        "is_completed": bool,
        "unlocked_at": iso8601 | None,
        "completed_at": iso8601 | None,
        "challenges": {challenge_id: {"is_completed": bool, "completed_at": iso8601 | None}},
    }

A challenge key being present means the challenge is unlocked.
"""

from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from questledger.core.database.base import Base, JSONDocument, TimestampMixin


class UserProgress(Base, TimestampMixin):
    __tablename__ = "user_progress"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)

    chapters: Mapped[Dict[str, Any]] = mapped_column(
        JSONDocument, nullable=False, default=dict
    )

    version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, doc="Optimistic locking version"
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<UserProgress user_id={self.user_id!r} chapters={len(self.chapters or {})} v{self.version}>"
