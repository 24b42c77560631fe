"""
Integration tests for RewardLedgerService.

Covers exactly-once granting under concurrency, receipt snapshot
immutability, vault clipping, item canonicalization, anomaly flagging and
account creation against a real database.
"""

import asyncio

import pytest

from questledger.core.config.manager import ConfigManager
from questledger.core.infra.audit_logger import AuditLogger
from questledger.core.database.service import DatabaseService
from questledger.database.models import PlayerBalance, Vault
from questledger.modules.shared.exceptions import NotFoundError, ValidationError


async def _balance(user_id):
    async with DatabaseService.get_session() as session:
        return await session.get(PlayerBalance, user_id)


async def _vault(user_id):
    async with DatabaseService.get_session() as session:
        return await session.get(Vault, user_id)


@pytest.mark.integration
@pytest.mark.database
class TestEnsureAccounts:
    """Balance and vault creation."""

    async def test_creates_both_documents_once(self, reward_service, recorder):
        # Arrange
        recorder.listen("rewards.accounts_created")

        # Act
        first = await reward_service.ensure_accounts("u-1")
        second = await reward_service.ensure_accounts("u-1")

        # Assert
        assert first == {"balance_created": True, "vault_created": True}
        assert second == {"balance_created": False, "vault_created": False}
        vault = await _vault("u-1")
        assert vault.capacity == 1000
        assert vault.current_currency == 0
        assert len(recorder.payloads("rewards.accounts_created")) == 1

    async def test_vault_capacity_follows_level(self, reward_service):
        await reward_service.ensure_accounts("u-5", level=5)

        vault = await _vault("u-5")
        assert vault.capacity == 1000 + 350 * 4 + 50 * 16

    async def test_invalid_level_rejected(self, reward_service):
        with pytest.raises(ValidationError):
            await reward_service.ensure_accounts("u-0", level=0)


@pytest.mark.integration
@pytest.mark.database
class TestGrantRewards:
    """Exactly-once grants."""

    async def test_first_grant_applies_and_records(self, reward_service, recorder):
        """Balance, vault and receipt move together."""
        # Arrange
        recorder.listen("rewards.granted", "audit.transaction.logged")
        await reward_service.ensure_accounts("u-1")

        # Act
        result = await reward_service.grant_rewards(
            "u-1", "ep1-get-letter", [{"xp": 10}, {"currency": 100}], challenge_title="Get Letter"
        )

        # Assert
        assert result.already_claimed is False
        assert result.granted.xp == 10
        assert result.granted.currency == 100
        assert result.vault_clipped == 0
        assert result.applied_to == ("balance", "vault")

        balance = await _balance("u-1")
        assert (balance.xp, balance.currency) == (10, 100)
        assert (await _vault("u-1")).current_currency == 100

        claim = await reward_service.get_claim("u-1", "ep1-get-letter")
        assert claim["claimed"] is True
        assert claim["challenge_title"] == "Get Letter"
        assert claim["rewards_snapshot"] == {
            "xp": 10,
            "currency": 100,
            "rare_currency": 0,
            "items": [],
        }
        assert claim["applied_to"] == ["balance", "vault"]

        assert len(recorder.payloads("rewards.granted")) == 1
        [audit] = recorder.payloads("audit.transaction.logged")
        assert audit["transaction_type"] == "reward_grant"
        assert audit["details"]["challenge_id"] == "ep1-get-letter"

    async def test_regrant_replays_original_snapshot(self, reward_service, recorder):
        """A later grant with different values changes nothing and returns the receipt."""
        # Arrange
        recorder.listen("rewards.granted")
        await reward_service.ensure_accounts("u-2")
        await reward_service.grant_rewards("u-2", "ep1-get-letter", [{"xp": 10}, {"currency": 100}])

        # Act
        replay = await reward_service.grant_rewards(
            "u-2", "ep1-get-letter", [{"xp": 999}, {"currency": 5000}]
        )

        # Assert
        assert replay.already_claimed is True
        assert replay.granted.xp == 10
        assert replay.granted.currency == 100
        assert replay.applied_to == ("balance", "vault")
        balance = await _balance("u-2")
        assert (balance.xp, balance.currency) == (10, 100)
        assert len(recorder.payloads("rewards.granted")) == 1

    async def test_concurrent_grants_apply_once(self, reward_service):
        """N racing grants for the same challenge credit the balance once."""
        # Arrange
        await reward_service.ensure_accounts("u-3")

        # Act
        results = await asyncio.gather(
            *[
                reward_service.grant_rewards("u-3", "ep1-get-letter", [{"xp": 10}, {"currency": 5}])
                for _ in range(6)
            ]
        )

        # Assert
        assert sum(1 for result in results if not result.already_claimed) == 1
        assert all(result.granted.xp == 10 for result in results)
        balance = await _balance("u-3")
        assert (balance.xp, balance.currency) == (10, 5)
        assert (await _vault("u-3")).current_currency == 5

    async def test_concurrent_grants_for_different_challenges_all_apply(self, reward_service):
        """Distinct challenges contend on the same balance and all land."""
        await reward_service.ensure_accounts("u-4")
        challenges = ["ep1-get-letter", "ep1-truth-metal-choice", "ep1-view-mst-ui", "ep2-sparring"]

        await asyncio.gather(
            *[
                reward_service.grant_rewards("u-4", challenge_id, [{"xp": 7}, {"currency": 3}])
                for challenge_id in challenges
            ]
        )

        balance = await _balance("u-4")
        assert balance.xp == 7 * len(challenges)
        assert balance.currency == 3 * len(challenges)
        for challenge_id in challenges:
            assert await reward_service.is_claimed("u-4", challenge_id) is True

    async def test_vault_clips_at_capacity(self, reward_service):
        """Currency beyond vault capacity is clipped; the receipt keeps nominal values."""
        # Arrange
        ConfigManager.set_override("vault.base_capacity", 50)
        await reward_service.ensure_accounts("u-clip")

        # Act
        result = await reward_service.grant_rewards("u-clip", "ep1-get-letter", [{"currency": 80}])

        # Assert
        assert result.vault_clipped == 30
        assert (await _vault("u-clip")).current_currency == 50
        assert (await _balance("u-clip")).currency == 80
        claim = await reward_service.get_claim("u-clip", "ep1-get-letter")
        assert claim["rewards_snapshot"]["currency"] == 80

    async def test_xp_only_grant_skips_vault(self, reward_service):
        await reward_service.ensure_accounts("u-xp")

        result = await reward_service.grant_rewards("u-xp", "ep1-get-letter", [{"xp": 3}])

        assert result.applied_to == ("balance",)
        assert (await _vault("u-xp")).version == 1

    async def test_large_grant_flagged(self, reward_service, recorder):
        """Currency above the threshold emits an anomaly but still commits."""
        recorder.listen("rewards.anomaly")
        ConfigManager.set_override("rewards.large_reward_threshold", 100)
        await reward_service.ensure_accounts("u-big")

        result = await reward_service.grant_rewards("u-big", "ch2-team-trial", [{"currency": 150}])

        assert result.already_claimed is False
        [anomaly] = recorder.payloads("rewards.anomaly")
        assert anomaly["currency"] == 150
        assert anomaly["threshold"] == 100

    async def test_items_added_with_provenance(self, reward_service):
        await reward_service.ensure_accounts("u-item")

        result = await reward_service.grant_rewards(
            "u-item", "ch3-solo-trial", [{"kind": "item", "id": "Rune_Of_Clarity"}]
        )

        assert result.granted.items == ("rune-of-clarity",)
        items = (await _balance("u-item")).items
        assert items["rune-of-clarity"]["granted_by_challenge"] == "ch3-solo-trial"
        assert items["rune-of-clarity"]["kind"] == "item"

    async def test_legacy_item_spelling_not_duplicated(self, reward_service):
        """An item owned under a legacy key is not granted again."""
        # Arrange
        await reward_service.ensure_accounts("u-legacy")
        async with DatabaseService.get_transaction() as session:
            balance = await session.get(PlayerBalance, "u-legacy")
            balance.items = {"captain-helmet": {"granted_by_challenge": "old"}}

        # Act
        result = await reward_service.grant_rewards(
            "u-legacy", "ep2-orientation", [{"item": "captains_helmet"}]
        )

        # Assert
        assert result.granted.items == ("captains-helmet",)
        assert list((await _balance("u-legacy")).items) == ["captain-helmet"]

    async def test_balance_only_account(self, reward_service):
        """A user with a balance but no vault still gets balance deltas."""
        async with DatabaseService.get_transaction() as session:
            session.add(
                PlayerBalance(user_id="u-nv", xp=0, currency=0, rare_currency=0, level=1, items={})
            )

        result = await reward_service.grant_rewards("u-nv", "ep1-get-letter", [{"currency": 10}])

        assert result.applied_to == ("balance",)
        assert (await _balance("u-nv")).currency == 10

    async def test_missing_accounts_raise(self, reward_service):
        with pytest.raises(NotFoundError):
            await reward_service.grant_rewards("nobody", "ep1-get-letter", [{"xp": 1}])

        assert await reward_service.is_claimed("nobody", "ep1-get-letter") is False

    async def test_empty_grant_writes_nothing(self, reward_service):
        await reward_service.ensure_accounts("u-empty")

        result = await reward_service.grant_rewards("u-empty", "ep1-get-letter", [{"xp": 0}])

        assert result.already_claimed is False
        assert result.granted.is_empty
        assert await reward_service.get_claim("u-empty", "ep1-get-letter") is None

    async def test_negative_amount_rejected_before_write(self, reward_service):
        await reward_service.ensure_accounts("u-neg")

        with pytest.raises(ValidationError):
            await reward_service.grant_rewards(
                "u-neg", "ep1-get-letter", [{"xp": 10}, {"currency": -5}]
            )

        assert (await _balance("u-neg")).xp == 0
        assert await reward_service.is_claimed("u-neg", "ep1-get-letter") is False

    async def test_malformed_entry_rejected_before_write(self, reward_service):
        await reward_service.ensure_accounts("u-bad")

        with pytest.raises(ValidationError):
            await reward_service.grant_rewards(
                "u-bad", "ep1-get-letter", [{"xp": 10, "currency": 100}]
            )

        assert await reward_service.is_claimed("u-bad", "ep1-get-letter") is False
        assert (await _balance("u-bad")).xp == 0


@pytest.mark.integration
@pytest.mark.database
class TestGrantAfterCommit:
    """Post-commit steps never turn a committed grant into an error."""

    async def test_oversized_audit_record_still_returns_result(self, reward_service, recorder):
        """A grant too large for the audit record is committed and returned."""
        # Arrange
        recorder.listen("rewards.granted", "audit.transaction.logged")
        await reward_service.ensure_accounts("u-hoard")
        hoard = [{"item": f"ancient-hoard-relic-number-{i:03d}"} for i in range(200)]

        # Act
        result = await reward_service.grant_rewards("u-hoard", "ep9-hoard", hoard)

        # Assert
        assert result.already_claimed is False
        assert len(result.granted.items) == 200
        assert await reward_service.is_claimed("u-hoard", "ep9-hoard") is True
        assert len((await _balance("u-hoard")).items) == 200
        assert recorder.payloads("audit.transaction.logged") == []
        assert len(recorder.payloads("rewards.granted")) == 1
        assert AuditLogger.get_metrics()["validation_errors"] == 1

    async def test_failing_bus_still_returns_result(self, reward_service, event_bus, mocker):
        await reward_service.ensure_accounts("u-bus")
        mocker.patch.object(event_bus, "publish", side_effect=RuntimeError("bus down"))

        result = await reward_service.grant_rewards("u-bus", "ep1-get-letter", [{"xp": 10}])

        assert result.granted.xp == 10
        assert (await _balance("u-bus")).xp == 10
        assert AuditLogger.get_metrics()["publish_errors"] == 1

    async def test_failing_verification_read_still_returns_result(self, reward_service, mocker):
        await reward_service.ensure_accounts("u-verify")
        mocker.patch.object(
            reward_service, "run_read", side_effect=RuntimeError("replica unavailable")
        )

        result = await reward_service.grant_rewards(
            "u-verify", "ep1-get-letter", [{"currency": 40}]
        )

        assert result.granted.currency == 40
        assert (await _vault("u-verify")).current_currency == 40
