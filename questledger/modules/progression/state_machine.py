"""
Progression state machine: pure transitions over a progress document.

The document is the `UserProgress.chapters` JSON map::

    {"1": {"is_active": True, "is_completed": False,
           "unlocked_at": "...", "completed_at": None,
           "challenges": {"ep1-get-letter": {"is_completed": True,
                                             "completed_at": "..."}}}}

Every function here takes the current document and returns a NEW document;
inputs are never mutated, so a caller that loses a concurrency race can
simply discard the result and recompute from a fresh read. No I/O, no clock:
`now` is passed in.

Rules
-----
- A challenge key being present means "unlocked"; `is_completed` marks done.
  Older records that carry `status: "approved"` instead also count as done.
- A chapter is completed iff every challenge in its definition is completed.
  An empty chapter never completes.
- Completing a chapter deactivates it and activates chapter `id + 1` (when
  defined), seeding that chapter's first challenge.
- Always-eligible chapters are forced active whenever one of their
  challenges completes.
"""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from questledger.core.clock import to_iso
from questledger.modules.catalog.models import ChapterCatalog, ChapterDefinition
from questledger.modules.progression.results import ProgressionResult, RepairResult

ProgressDocument = Dict[str, Any]


def chapter_key(chapter_id: int) -> str:
    return str(chapter_id)


def new_chapter_entry(*, is_active: bool, unlocked_at: Optional[str]) -> Dict[str, Any]:
    return {
        "is_active": is_active,
        "is_completed": False,
        "unlocked_at": unlocked_at,
        "completed_at": None,
        "challenges": {},
    }


def new_challenge_entry() -> Dict[str, Any]:
    return {"is_completed": False, "completed_at": None}


def is_challenge_completed(entry: Optional[Mapping[str, Any]]) -> bool:
    if not entry:
        return False
    return entry.get("is_completed") is True or entry.get("status") == "approved"


def chapter_is_complete(
    chapter_entry: Optional[Mapping[str, Any]], definition: ChapterDefinition
) -> bool:
    """True iff every challenge in `definition` is completed in `chapter_entry`."""
    if not definition.challenges or not chapter_entry:
        return False
    challenges = chapter_entry.get("challenges") or {}
    return all(
        is_challenge_completed(challenges.get(challenge_id))
        for challenge_id in definition.challenge_ids
    )


def initial_document(catalog: ChapterCatalog, now: datetime) -> ProgressDocument:
    """Fresh record for a new account: only the first chapter is seeded."""
    chapter_ids = catalog.chapter_ids()
    if not chapter_ids:
        return {}

    first_chapter = chapter_ids[0]
    entry = new_chapter_entry(is_active=True, unlocked_at=to_iso(now))
    first_challenge = catalog.first_challenge_id(first_chapter)
    if first_challenge is not None:
        entry["challenges"][first_challenge] = new_challenge_entry()
    return {chapter_key(first_chapter): entry}


def _ensure_chapter(document: ProgressDocument, chapter_id: int) -> Dict[str, Any]:
    key = chapter_key(chapter_id)
    entry = document.get(key)
    if not isinstance(entry, dict):
        entry = new_chapter_entry(is_active=False, unlocked_at=None)
        document[key] = entry
    if not isinstance(entry.get("challenges"), dict):
        entry["challenges"] = {}
    return entry


def _seed_challenge(chapter_entry: Dict[str, Any], challenge_id: str) -> bool:
    """Create an unlocked entry for `challenge_id`; True when newly created."""
    challenges = chapter_entry["challenges"]
    if challenge_id in challenges:
        return False
    challenges[challenge_id] = new_challenge_entry()
    return True


def _complete_chapter(
    document: ProgressDocument,
    catalog: ChapterCatalog,
    chapter_id: int,
    stamp: str,
    *,
    keep_completed_at: bool = False,
) -> Tuple[Optional[int], bool]:
    """
    Mark `chapter_id` completed and unlock its successor.

    Returns (unlocked chapter id or None, whether the successor's first
    challenge entry was newly created).
    """
    entry = _ensure_chapter(document, chapter_id)
    entry["is_completed"] = True
    entry["is_active"] = False
    if not (keep_completed_at and entry.get("completed_at")):
        entry["completed_at"] = stamp

    next_chapter = catalog.next_chapter(chapter_id)
    if next_chapter is None:
        return None, False

    next_entry = _ensure_chapter(document, next_chapter.id)
    next_entry["is_active"] = True
    if not next_entry.get("unlocked_at"):
        next_entry["unlocked_at"] = stamp

    seeded = False
    first_challenge = catalog.first_challenge_id(next_chapter.id)
    if first_challenge is not None:
        first_entry = next_entry["challenges"].get(first_challenge)
        if not is_challenge_completed(first_entry):
            seeded = _seed_challenge(next_entry, first_challenge)

    return next_chapter.id, seeded


def apply_completion(
    document: Mapping[str, Any],
    catalog: ChapterCatalog,
    chapter_id: int,
    challenge_id: str,
    now: datetime,
) -> Tuple[ProgressDocument, ProgressionResult]:
    """
    Record `challenge_id` as completed and cascade unlocks.

    The caller guarantees `catalog.contains(chapter_id, challenge_id)`.
    When the challenge is already completed the original document is
    returned unchanged with `already_completed=True`.
    """
    current_chapter = document.get(chapter_key(chapter_id))
    current_challenges = (
        current_chapter.get("challenges") or {} if isinstance(current_chapter, dict) else {}
    )
    if is_challenge_completed(current_challenges.get(challenge_id)):
        return dict(document), ProgressionResult(already_completed=True)

    updated: ProgressDocument = copy.deepcopy(dict(document))
    stamp = to_iso(now)
    assert stamp is not None

    chapter_existed = isinstance(current_chapter, dict)
    was_completed = chapter_existed and current_chapter.get("is_completed") is True

    entry = _ensure_chapter(updated, chapter_id)
    if catalog.is_always_eligible(chapter_id):
        entry["is_active"] = True
        if not entry.get("unlocked_at"):
            entry["unlocked_at"] = stamp
    elif not chapter_existed:
        entry["is_active"] = False
    else:
        entry["is_active"] = bool(entry.get("is_active", False))

    challenge_entry = dict(entry["challenges"].get(challenge_id) or {})
    challenge_entry.update({"is_completed": True, "completed_at": stamp})
    entry["challenges"][challenge_id] = challenge_entry

    challenge_unlocked: Optional[str] = None
    next_challenge = catalog.next_challenge_id(chapter_id, challenge_id)
    if next_challenge is not None:
        next_entry = entry["challenges"].get(next_challenge)
        if not is_challenge_completed(next_entry) and _seed_challenge(entry, next_challenge):
            challenge_unlocked = next_challenge

    chapter_completed = False
    chapter_unlocked: Optional[int] = None
    definition = catalog.chapter(chapter_id)
    if definition is not None and not was_completed and chapter_is_complete(entry, definition):
        chapter_completed = True
        chapter_unlocked, _ = _complete_chapter(updated, catalog, chapter_id, stamp)

    return updated, ProgressionResult(
        already_completed=False,
        challenge_unlocked=challenge_unlocked,
        chapter_completed=chapter_completed,
        chapter_unlocked=chapter_unlocked,
    )


def repair(
    document: Mapping[str, Any],
    catalog: ChapterCatalog,
    now: datetime,
) -> Tuple[ProgressDocument, RepairResult]:
    """
    Converge a progress document toward the invariants.

    Walks the catalog in order:
    - a completed challenge whose successor has no entry gets one;
    - a chapter whose challenges are all completed but which is not marked
      completed is completed (and its successor unlocked);
    - a completed chapter whose defined successor is missing entirely gets
      the successor unlocked.

    Chapters present in the document but absent from the catalog are
    reported in `errors` and left untouched. Running `repair` on its own
    output yields zero repairs.
    """
    updated: ProgressDocument = copy.deepcopy(dict(document))
    stamp = to_iso(now)
    assert stamp is not None

    challenges_repaired = 0
    chapters_repaired = 0
    errors: List[str] = []

    for key, value in updated.items():
        try:
            known = catalog.has_chapter(int(key))
        except (TypeError, ValueError):
            known = False
        if not known:
            errors.append(f"chapter {key!r} is not defined in the catalog")
        elif not isinstance(value, dict):
            errors.append(f"chapter {key!r} progress is not a mapping")

    for chapter_id in catalog.chapter_ids():
        key = chapter_key(chapter_id)
        entry = updated.get(key)
        if not isinstance(entry, dict):
            continue

        definition = catalog.chapter(chapter_id)
        assert definition is not None
        challenges = entry.get("challenges")
        if not isinstance(challenges, dict):
            challenges = {}
            entry["challenges"] = challenges

        for index, challenge in enumerate(definition.challenges[:-1]):
            if not is_challenge_completed(challenges.get(challenge.id)):
                continue
            successor = definition.challenges[index + 1].id
            if _seed_challenge(entry, successor):
                challenges_repaired += 1

        if chapter_is_complete(entry, definition):
            if entry.get("is_completed") is not True:
                _, seeded = _complete_chapter(
                    updated, catalog, chapter_id, stamp, keep_completed_at=True
                )
                chapters_repaired += 1
                challenges_repaired += int(seeded)
            else:
                next_chapter = catalog.next_chapter(chapter_id)
                if next_chapter is not None and chapter_key(next_chapter.id) not in updated:
                    next_entry = _ensure_chapter(updated, next_chapter.id)
                    next_entry["is_active"] = True
                    next_entry["unlocked_at"] = stamp
                    first_challenge = catalog.first_challenge_id(next_chapter.id)
                    if first_challenge is not None and _seed_challenge(next_entry, first_challenge):
                        challenges_repaired += 1
                    chapters_repaired += 1

    return updated, RepairResult(
        challenges_repaired=challenges_repaired,
        chapters_repaired=chapters_repaired,
        errors=tuple(errors),
    )


def is_consistent(document: Mapping[str, Any], catalog: ChapterCatalog) -> bool:
    """Chapter completion flags agree with challenge completion everywhere."""
    for chapter_id in catalog.chapter_ids():
        entry = document.get(chapter_key(chapter_id))
        if not isinstance(entry, dict):
            continue
        definition = catalog.chapter(chapter_id)
        assert definition is not None
        if (entry.get("is_completed") is True) != chapter_is_complete(entry, definition):
            return False
    return True
