"""
RewardClaim - idempotency receipt for challenge rewards.
==========================================================

One row per (user_id, challenge_id). The composite primary key makes a
second concurrent insert fail at the database, so the losing transaction is
rolled back and re-run, where it finds this receipt and replays it.

Rows are written once and never updated. The only deletion path is the
administrative progression reset.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from questledger.core.database.base import Base, JSONDocument


class RewardClaim(Base):
    __tablename__ = "reward_claims"
    __table_args__ = (Index("ix_reward_claims_claimed_at", "claimed_at"),)

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    challenge_id: Mapped[str] = mapped_column(String(128), primary_key=True)

    claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    challenge_title: Mapped[Optional[str]] = mapped_column(String(255))

    rewards_snapshot: Mapped[Dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        doc="Nominal amounts granted: {xp, currency, rare_currency, items}",
    )

    applied_to: Mapped[List[str]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=list,
        doc="Balance documents written by the grant",
    )

    def __repr__(self) -> str:
        return f"<RewardClaim user_id={self.user_id!r} challenge_id={self.challenge_id!r}>"
