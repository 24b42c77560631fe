"""
Progression domain ORM models.
"""

from .user_progress import UserProgress

__all__ = ["UserProgress"]
