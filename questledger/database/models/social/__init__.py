"""
Social domain ORM models.
"""

from .lobby import Lobby

__all__ = ["Lobby"]
