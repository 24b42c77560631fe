"""
Catalog loader: parse chapter definitions from YAML into a ChapterCatalog.

The default document is `Config.CATALOG_PATH` (config/catalog/chapters.yaml).
Malformed definitions raise CatalogError at load time so a bad deploy fails
fast instead of corrupting progress later.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

import yaml

from questledger.core.config.config import Config
from questledger.core.config.manager import ConfigManager
from questledger.core.logging.logger import get_logger
from questledger.modules.catalog.models import (
    ChallengeDefinition,
    ChapterCatalog,
    ChapterDefinition,
    RewardKind,
    RewardSpec,
)

logger = get_logger(__name__)

_catalog: Optional[ChapterCatalog] = None


class CatalogError(RuntimeError):
    """Raised when the chapter catalog is missing or malformed."""


def _parse_reward(raw: Any, where: str) -> RewardSpec:
    if not isinstance(raw, dict):
        raise CatalogError(f"{where}: reward must be a mapping, got {type(raw).__name__}")

    kind_name = raw.get("kind")
    try:
        kind = RewardKind(kind_name)
    except ValueError as exc:
        raise CatalogError(f"{where}: unknown reward kind {kind_name!r}") from exc

    if kind.is_numeric:
        amount = raw.get("amount")
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise CatalogError(f"{where}: {kind.value} amount must be an integer")
        if amount < 0:
            raise CatalogError(f"{where}: {kind.value} amount must be non-negative")
        return RewardSpec(kind, amount)

    item_id = raw.get("id")
    if not isinstance(item_id, str) or not item_id.strip():
        raise CatalogError(f"{where}: {kind.value} reward needs a non-empty id")
    return RewardSpec(kind, item_id.strip())


def _parse_chapter(raw: Any, seen_challenges: Set[str]) -> ChapterDefinition:
    if not isinstance(raw, dict):
        raise CatalogError("chapter entries must be mappings")

    chapter_id = raw.get("id")
    if isinstance(chapter_id, bool) or not isinstance(chapter_id, int) or chapter_id < 1:
        raise CatalogError(f"chapter id must be a positive integer, got {chapter_id!r}")

    challenges: List[ChallengeDefinition] = []
    for raw_challenge in raw.get("challenges") or []:
        if not isinstance(raw_challenge, dict):
            raise CatalogError(f"chapter {chapter_id}: challenge entries must be mappings")

        challenge_id = raw_challenge.get("id")
        if not isinstance(challenge_id, str) or not challenge_id.strip():
            raise CatalogError(f"chapter {chapter_id}: challenge id is required")
        if challenge_id in seen_challenges:
            raise CatalogError(f"duplicate challenge id {challenge_id!r}")
        seen_challenges.add(challenge_id)

        where = f"chapter {chapter_id} / {challenge_id}"
        rewards = tuple(
            _parse_reward(reward, where) for reward in raw_challenge.get("rewards") or []
        )
        challenges.append(
            ChallengeDefinition(
                id=challenge_id,
                title=str(raw_challenge.get("title") or challenge_id),
                rewards=rewards,
                requirements=tuple(str(r) for r in raw_challenge.get("requirements") or []),
            )
        )

    return ChapterDefinition(
        id=chapter_id,
        title=str(raw.get("title") or f"Chapter {chapter_id}"),
        challenges=tuple(challenges),
    )


def parse_catalog(data: Dict[str, Any], always_eligible: Iterable[int] = (1, 2)) -> ChapterCatalog:
    """Build a catalog from an already-parsed document."""
    if not isinstance(data, dict) or not isinstance(data.get("chapters"), list):
        raise CatalogError("catalog document must contain a 'chapters' list")

    seen_challenges: Set[str] = set()
    chapters: Dict[int, ChapterDefinition] = {}
    for raw_chapter in data["chapters"]:
        chapter = _parse_chapter(raw_chapter, seen_challenges)
        if chapter.id in chapters:
            raise CatalogError(f"duplicate chapter id {chapter.id}")
        chapters[chapter.id] = chapter

    return ChapterCatalog.build(chapters.values(), always_eligible=always_eligible)


def load_catalog(
    path: Optional[Path] = None,
    always_eligible: Optional[Iterable[int]] = None,
) -> ChapterCatalog:
    """
    Load and validate the catalog YAML.

    Raises
    ------
    CatalogError
        If the file is unreadable or any definition is malformed.
    """
    catalog_path = Path(path) if path is not None else Path(Config.CATALOG_PATH)
    if always_eligible is None:
        always_eligible = ConfigManager.get("progression.always_eligible_chapters", [1, 2])

    try:
        with catalog_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except (OSError, yaml.YAMLError) as exc:
        logger.error(
            "Failed to read catalog",
            extra={"catalog_path": str(catalog_path), "error_type": type(exc).__name__},
        )
        raise CatalogError(f"cannot read catalog {catalog_path}: {exc}") from exc

    catalog = parse_catalog(data, always_eligible=always_eligible)

    logger.info(
        "Catalog loaded",
        extra={
            "catalog_path": str(catalog_path),
            "chapters": len(catalog.chapters),
            "challenges": sum(len(ch.challenges) for ch in catalog.chapters.values()),
        },
    )
    return catalog


def get_catalog() -> ChapterCatalog:
    """Process-wide catalog, loaded on first use."""
    global _catalog
    if _catalog is None:
        _catalog = load_catalog()
    return _catalog


def reset_catalog_cache() -> None:
    global _catalog
    _catalog = None
