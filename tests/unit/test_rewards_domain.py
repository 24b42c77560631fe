"""
Unit tests for reward partitioning, item canonicalization and vault sizing.
"""

import pytest

from questledger.modules.catalog.models import RewardKind, RewardSpec
from questledger.modules.rewards import (
    canonical_item_id,
    partition_rewards,
    vault_capacity_for_level,
)
from questledger.modules.rewards.items import owned_item_ids
from questledger.modules.rewards.results import GrantResult, RewardSnapshot
from questledger.modules.shared.exceptions import ValidationError

ALIASES = {"captain-helmet": "captains-helmet"}


class TestCanonicalItemId:
    """Item id normalization."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("truth_metal_currency", "truth-metal-currency"),
            ("Truth Metal  Currency", "truth-metal-currency"),
            ("--school__access--", "school-access"),
            ("rune-of-clarity", "rune-of-clarity"),
        ],
    )
    def test_normalizes_spelling(self, raw, expected):
        assert canonical_item_id(raw) == expected

    def test_alias_maps_legacy_spelling(self):
        """A legacy key resolves to the same canonical id as the new one."""
        assert canonical_item_id("Captain_Helmet", ALIASES) == "captains-helmet"
        assert canonical_item_id("captains_helmet", ALIASES) == "captains-helmet"

    def test_owned_ids_are_canonical(self):
        owned = owned_item_ids(["captain-helmet", "school_access"], ALIASES)

        assert owned == {"captains-helmet", "school-access"}


class TestVaultCapacity:
    """Capacity curve."""

    def test_level_one_is_base(self):
        assert vault_capacity_for_level(1) == 1000

    def test_curve_grows_quadratically(self):
        """base + 350*(L-1) + 50*(L-1)^2."""
        assert vault_capacity_for_level(2) == 1000 + 350 + 50
        assert vault_capacity_for_level(5) == 1000 + 350 * 4 + 50 * 16

    def test_levels_below_one_clamped(self):
        assert vault_capacity_for_level(0) == vault_capacity_for_level(1)
        assert vault_capacity_for_level(-3) == 1000

    def test_custom_parameters(self):
        assert vault_capacity_for_level(3, base=10, per_level=1, per_level_sq=0) == 12


class TestPartitionRewards:
    """Splitting reward lists into totals and item grants."""

    def test_single_key_shape(self):
        """{"xp": 10} style entries are accepted."""
        partitioned = partition_rewards([{"xp": 10}, {"currency": 100}])

        assert partitioned.xp == 10
        assert partitioned.currency == 100
        assert partitioned.rare_currency == 0
        assert partitioned.items == ()

    def test_kind_shape_and_reward_specs(self):
        """Explicit kind dicts and RewardSpec entries mix freely."""
        partitioned = partition_rewards(
            [
                {"kind": "rare_currency", "amount": 3},
                {"kind": "item", "id": "Rune_Of_Clarity"},
                RewardSpec(RewardKind.ABILITY, "first_combat"),
            ]
        )

        assert partitioned.rare_currency == 3
        assert [grant.item_id for grant in partitioned.items] == [
            "rune-of-clarity",
            "first-combat",
        ]
        assert partitioned.items[1].kind is RewardKind.ABILITY

    def test_unknown_kind_skipped(self):
        """Unsupported kinds are skipped, not fatal."""
        partitioned = partition_rewards([{"xp": 5}, {"gems": 9}])

        assert partitioned.xp == 5
        assert partitioned.skipped == ("gems",)

    @pytest.mark.parametrize(
        "entry",
        [
            {"xp": 10, "currency": 100},
            {},
            {"kind": None, "amount": 5},
            {"kind": "", "amount": 5},
            ("xp", 10),
            "xp",
            None,
        ],
    )
    def test_malformed_entry_rejected(self, entry):
        """Entries in no accepted shape fail instead of being skipped."""
        with pytest.raises(ValidationError) as exc_info:
            partition_rewards([{"xp": 5}, entry])

        assert exc_info.value.field == "rewards"

    def test_negative_amount_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            partition_rewards([{"currency": -1}])

        assert exc_info.value.field == "currency"

    @pytest.mark.parametrize("bad", ["10", 1.5, True, None])
    def test_non_integer_amount_rejected(self, bad):
        """Amounts must be real integers."""
        with pytest.raises(ValidationError):
            partition_rewards([{"xp": bad}])

    def test_blank_item_id_rejected(self):
        with pytest.raises(ValidationError):
            partition_rewards([{"kind": "item", "id": "   "}])

    def test_first_numeric_value_wins(self):
        partitioned = partition_rewards([{"xp": 10}, {"xp": 99}])

        assert partitioned.xp == 10

    def test_duplicate_items_collapse_through_aliases(self):
        """Two spellings of the same item yield one grant."""
        partitioned = partition_rewards(
            [{"item": "captain_helmet"}, {"item": "captains-helmet"}], aliases=ALIASES
        )

        assert [grant.item_id for grant in partitioned.items] == ["captains-helmet"]

    def test_empty_and_zero_grants_are_empty(self):
        assert partition_rewards([]).is_empty
        assert partition_rewards([{"xp": 0}, {"currency": 0}]).is_empty

    def test_snapshot_uses_nominal_values(self):
        partitioned = partition_rewards([{"currency": 1500}, {"item": "school_access"}])

        snapshot = partitioned.snapshot()

        assert snapshot == RewardSnapshot(currency=1500, items=("school-access",))


class TestResults:
    """Result object serialization."""

    def test_snapshot_round_trip_through_dict(self):
        snapshot = RewardSnapshot(xp=10, currency=5, items=("a",))

        assert RewardSnapshot.from_dict(snapshot.to_dict()) == snapshot

    def test_grant_result_to_dict(self):
        result = GrantResult(
            already_claimed=False,
            granted=RewardSnapshot(xp=1),
            vault_clipped=4,
            applied_to=("balance", "vault"),
        )

        assert result.to_dict() == {
            "already_claimed": False,
            "granted": {"xp": 1, "currency": 0, "rare_currency": 0, "items": []},
            "vault_clipped": 4,
            "applied_to": ["balance", "vault"],
        }
