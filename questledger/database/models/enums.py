"""
Database Model Enums
====================

Declarative schema helpers shared by models and services.
"""

from __future__ import annotations

import enum


class LobbyStatus(str, enum.Enum):
    """
    Lobby lifecycle.

    waiting -> starting -> in_progress; waiting|starting -> expired when the
    host leaves or the lobby sits empty past the staleness window. Nothing
    leaves `expired`.
    """

    WAITING = "waiting"
    STARTING = "starting"
    IN_PROGRESS = "in_progress"
    EXPIRED = "expired"

    @classmethod
    def joinable(cls) -> frozenset["LobbyStatus"]:
        return frozenset({cls.WAITING, cls.STARTING})

    @classmethod
    def active(cls) -> frozenset["LobbyStatus"]:
        return frozenset({cls.WAITING, cls.STARTING, cls.IN_PROGRESS})
