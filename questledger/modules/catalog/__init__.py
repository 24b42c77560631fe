"""
Definition catalog: immutable chapters, challenges and reward specs.
"""

from questledger.modules.catalog.loader import (
    CatalogError,
    get_catalog,
    load_catalog,
    parse_catalog,
    reset_catalog_cache,
)
from questledger.modules.catalog.models import (
    ITEM_KINDS,
    NUMERIC_KINDS,
    ChallengeDefinition,
    ChapterCatalog,
    ChapterDefinition,
    RewardKind,
    RewardSpec,
)

__all__ = [
    "CatalogError",
    "ChallengeDefinition",
    "ChapterCatalog",
    "ChapterDefinition",
    "ITEM_KINDS",
    "NUMERIC_KINDS",
    "RewardKind",
    "RewardSpec",
    "get_catalog",
    "load_catalog",
    "parse_catalog",
    "reset_catalog_cache",
]
