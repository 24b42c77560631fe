"""
Immutable chapter/challenge definitions.

The catalog is loaded once and never mutated; every lookup the progression
state machine and reward ledger need is answered from here.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple, Union


class RewardKind(str, enum.Enum):
    """Kinds of reward a challenge can grant."""

    XP = "xp"
    CURRENCY = "currency"
    RARE_CURRENCY = "rare_currency"
    ITEM = "item"
    ABILITY = "ability"

    @property
    def is_numeric(self) -> bool:
        return self in NUMERIC_KINDS


NUMERIC_KINDS = frozenset({RewardKind.XP, RewardKind.CURRENCY, RewardKind.RARE_CURRENCY})
ITEM_KINDS = frozenset({RewardKind.ITEM, RewardKind.ABILITY})


@dataclass(frozen=True)
class RewardSpec:
    """
    One reward line: a numeric amount for xp/currency/rare_currency, or an
    item id for item/ability.
    """

    kind: RewardKind
    value: Union[int, str]

    def to_dict(self) -> Dict[str, Any]:
        if self.kind.is_numeric:
            return {"kind": self.kind.value, "amount": self.value}
        return {"kind": self.kind.value, "id": self.value}


@dataclass(frozen=True)
class ChallengeDefinition:
    id: str
    title: str
    rewards: Tuple[RewardSpec, ...] = ()
    requirements: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ChapterDefinition:
    id: int
    title: str
    challenges: Tuple[ChallengeDefinition, ...] = ()

    @property
    def challenge_ids(self) -> Tuple[str, ...]:
        return tuple(challenge.id for challenge in self.challenges)

    def index_of(self, challenge_id: str) -> Optional[int]:
        for index, challenge in enumerate(self.challenges):
            if challenge.id == challenge_id:
                return index
        return None


@dataclass(frozen=True)
class ChapterCatalog:
    """
    Ordered, read-only view over all chapter definitions.

    Chapters are keyed by integer id; challenges keep their definition order,
    which is also their unlock order.
    """

    chapters: Mapping[int, ChapterDefinition]
    always_eligible_chapter_ids: FrozenSet[int] = frozenset({1, 2})
    _challenge_index: Mapping[str, int] = field(default_factory=dict, repr=False)

    @classmethod
    def build(
        cls,
        chapters: Iterable[ChapterDefinition],
        always_eligible: Iterable[int] = (1, 2),
    ) -> "ChapterCatalog":
        ordered = sorted(chapters, key=lambda chapter: chapter.id)
        by_id = {chapter.id: chapter for chapter in ordered}
        index = {
            challenge.id: chapter.id for chapter in ordered for challenge in chapter.challenges
        }
        return cls(
            chapters=MappingProxyType(by_id),
            always_eligible_chapter_ids=frozenset(int(cid) for cid in always_eligible),
            _challenge_index=MappingProxyType(index),
        )

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    def chapter_ids(self) -> Tuple[int, ...]:
        return tuple(self.chapters.keys())

    def has_chapter(self, chapter_id: int) -> bool:
        return chapter_id in self.chapters

    def chapter(self, chapter_id: int) -> Optional[ChapterDefinition]:
        return self.chapters.get(chapter_id)

    def challenge(self, chapter_id: int, challenge_id: str) -> Optional[ChallengeDefinition]:
        chapter = self.chapters.get(chapter_id)
        if chapter is None:
            return None
        index = chapter.index_of(challenge_id)
        return chapter.challenges[index] if index is not None else None

    def contains(self, chapter_id: int, challenge_id: str) -> bool:
        return self._challenge_index.get(challenge_id) == chapter_id

    def chapter_of(self, challenge_id: str) -> Optional[int]:
        return self._challenge_index.get(challenge_id)

    def first_challenge_id(self, chapter_id: int) -> Optional[str]:
        chapter = self.chapters.get(chapter_id)
        if chapter is None or not chapter.challenges:
            return None
        return chapter.challenges[0].id

    def next_challenge_id(self, chapter_id: int, challenge_id: str) -> Optional[str]:
        """The challenge after `challenge_id` in definition order, if any."""
        chapter = self.chapters.get(chapter_id)
        if chapter is None:
            return None
        index = chapter.index_of(challenge_id)
        if index is None or index + 1 >= len(chapter.challenges):
            return None
        return chapter.challenges[index + 1].id

    def next_chapter(self, chapter_id: int) -> Optional[ChapterDefinition]:
        """Chapter `chapter_id + 1` when it is defined."""
        return self.chapters.get(chapter_id + 1)

    def is_always_eligible(self, chapter_id: int) -> bool:
        return chapter_id in self.always_eligible_chapter_ids

    def rewards_for(self, challenge_id: str) -> Tuple[RewardSpec, ...]:
        chapter_id = self._challenge_index.get(challenge_id)
        if chapter_id is None:
            return ()
        challenge = self.challenge(chapter_id, challenge_id)
        return challenge.rewards if challenge is not None else ()
