"""
Unit tests for the chapter catalog loader and lookups.
"""

import pytest

from questledger.modules.catalog import (
    CatalogError,
    RewardKind,
    RewardSpec,
    load_catalog,
    parse_catalog,
)


class TestCatalogLookups:
    """Lookups over the shipped catalog."""

    def test_chapters_in_order(self, catalog):
        assert catalog.chapter_ids() == (1, 2, 3)

    def test_first_and_next_challenge(self, catalog):
        """Definition order is unlock order."""
        assert catalog.first_challenge_id(1) == "ep1-get-letter"
        assert catalog.next_challenge_id(1, "ep1-get-letter") == "ep1-truth-metal-choice"
        assert catalog.next_challenge_id(1, "ep1-enter-xiotein") is None

    def test_contains_checks_chapter_membership(self, catalog):
        """A challenge only belongs to its own chapter."""
        assert catalog.contains(1, "ep1-get-letter") is True
        assert catalog.contains(2, "ep1-get-letter") is False
        assert catalog.contains(1, "no-such-challenge") is False

    def test_chapter_of(self, catalog):
        assert catalog.chapter_of("ch3-solo-trial") == 3
        assert catalog.chapter_of("missing") is None

    def test_next_chapter(self, catalog):
        assert catalog.next_chapter(1).id == 2
        assert catalog.next_chapter(3) is None

    def test_always_eligible(self, catalog):
        assert catalog.is_always_eligible(1)
        assert catalog.is_always_eligible(2)
        assert not catalog.is_always_eligible(3)

    def test_rewards_for_challenge(self, catalog):
        """Reward specs keep their declared kinds and values."""
        rewards = catalog.rewards_for("ep1-touch-truth-metal")

        assert RewardSpec(RewardKind.XP, 25) in rewards
        assert RewardSpec(RewardKind.ITEM, "truth_metal_currency") in rewards
        assert catalog.rewards_for("unknown") == ()

    def test_catalog_is_read_only(self, catalog):
        """The chapter mapping cannot be mutated after load."""
        with pytest.raises(TypeError):
            catalog.chapters[99] = catalog.chapter(1)


class TestCatalogParsing:
    """Validation of catalog documents."""

    def test_rejects_missing_chapters_list(self):
        with pytest.raises(CatalogError):
            parse_catalog({"episodes": []})

    def test_rejects_duplicate_challenge_ids(self):
        """Challenge ids are unique across the whole catalog."""
        data = {
            "chapters": [
                {"id": 1, "challenges": [{"id": "a"}]},
                {"id": 2, "challenges": [{"id": "a"}]},
            ]
        }

        with pytest.raises(CatalogError, match="duplicate challenge"):
            parse_catalog(data)

    def test_rejects_duplicate_chapter_ids(self):
        data = {"chapters": [{"id": 1}, {"id": 1}]}

        with pytest.raises(CatalogError, match="duplicate chapter"):
            parse_catalog(data)

    def test_rejects_negative_amount(self):
        """Negative reward amounts fail at load time."""
        data = {
            "chapters": [
                {
                    "id": 1,
                    "challenges": [{"id": "a", "rewards": [{"kind": "xp", "amount": -5}]}],
                }
            ]
        }

        with pytest.raises(CatalogError, match="non-negative"):
            parse_catalog(data)

    def test_rejects_unknown_reward_kind(self):
        data = {
            "chapters": [
                {
                    "id": 1,
                    "challenges": [{"id": "a", "rewards": [{"kind": "gems", "amount": 1}]}],
                }
            ]
        }

        with pytest.raises(CatalogError, match="unknown reward kind"):
            parse_catalog(data)

    def test_chapters_sorted_by_id(self):
        """Chapters declared out of order are served in id order."""
        data = {"chapters": [{"id": 2, "challenges": [{"id": "b"}]}, {"id": 1}]}

        catalog = parse_catalog(data)

        assert catalog.chapter_ids() == (1, 2)
        assert catalog.chapter(1).title == "Chapter 1"

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(CatalogError):
            load_catalog(tmp_path / "absent.yaml", always_eligible=[1])
