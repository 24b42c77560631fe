"""
Vault - capped currency store. Schema only.

Invariant: 0 <= current_currency <= capacity after every write.
"""

from __future__ import annotations

from sqlalchemy import CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from questledger.core.database.base import Base, TimestampMixin


class Vault(Base, TimestampMixin):
    __tablename__ = "vaults"
    __table_args__ = (
        CheckConstraint("current_currency >= 0", name="current_non_negative"),
        CheckConstraint("current_currency <= capacity", name="within_capacity"),
    )

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)

    current_currency: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)

    version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, doc="Optimistic locking version"
    )

    __mapper_args__ = {"version_id_col": version}
