"""
Result objects returned by ProgressionService.

"Already done" is a flag on a successful result, never an exception.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class ProgressionResult:
    already_completed: bool = False
    challenge_unlocked: Optional[str] = None
    chapter_completed: bool = False
    chapter_unlocked: Optional[int] = None

    @property
    def changed(self) -> bool:
        return not self.already_completed

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RepairResult:
    """
    Outcome of a repair sweep.

    `errors` holds per-chapter anomalies that were logged and skipped.
    """

    challenges_repaired: int = 0
    chapters_repaired: int = 0
    errors: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def repaired(self) -> bool:
        return bool(self.challenges_repaired or self.chapters_repaired)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "challenges_repaired": self.challenges_repaired,
            "chapters_repaired": self.chapters_repaired,
            "errors": list(self.errors),
        }
