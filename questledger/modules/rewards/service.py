"""
Reward Ledger Service
=====================

Purpose
-------
Grants a challenge's rewards exactly once per (user, challenge), no matter
how many times or how concurrently the grant is requested.

Domain
------
- Apply xp / currency / rare currency deltas to `PlayerBalance`
- Mirror currency into the capped `Vault` (excess is clipped)
- Add newly owned items with provenance
- Write the `RewardClaim` receipt in the same transaction
- Create balance and vault documents for new accounts

Design Notes
------------
- The receipt's composite primary key is the idempotency boundary: a second
  concurrent grant either loses the version check on the balance or the
  primary key on the receipt, is rolled back, re-reads, finds the receipt
  and replays its snapshot.
- The snapshot records nominal amounts; the vault clip is reported in
  `GrantResult.vault_clipped` on the first grant only.
- Post-commit verification and anomaly flagging are observability only:
  failures there are logged and never change the committed result.

Events
------
- rewards.granted
- rewards.anomaly
- rewards.accounts_created
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple

from questledger.core.clock import to_iso
from questledger.core.infra.audit_logger import AuditLogger
from questledger.core.logging.logger import LogContext, get_logger
from questledger.core.validation.input_validator import InputValidator
from questledger.database.models.economy.balance import PlayerBalance
from questledger.database.models.economy.reward_claim import RewardClaim
from questledger.database.models.economy.vault import Vault
from questledger.modules.rewards.items import owned_item_ids, vault_capacity_for_level
from questledger.modules.rewards.partition import PartitionedRewards, partition_rewards
from questledger.modules.rewards.results import GrantResult, RewardSnapshot
from questledger.modules.shared.base_repository import BaseRepository
from questledger.modules.shared.base_service import BaseService
from questledger.modules.shared.exceptions import NotFoundError

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from questledger.core.clock import ServerClock
    from questledger.core.config.manager import ConfigManager
    from questledger.core.database.retry_policy import DatabaseRetryPolicy
    from questledger.core.event.bus import EventBus


BALANCE_DOCUMENT = "balance"
VAULT_DOCUMENT = "vault"


# ============================================================================
# Repositories
# ============================================================================


class PlayerBalanceRepository(BaseRepository[PlayerBalance]):
    pass


class VaultRepository(BaseRepository[Vault]):
    pass


class RewardClaimRepository(BaseRepository[RewardClaim]):
    async def get_claim(
        self, session: AsyncSession, user_id: str, challenge_id: str
    ) -> Optional[RewardClaim]:
        return await self.get(session, (user_id, challenge_id))


@dataclass(frozen=True)
class _Applied:
    result: GrantResult
    items_added: Tuple[str, ...] = ()


# ============================================================================
# RewardLedgerService
# ============================================================================


class RewardLedgerService(BaseService):
    """
    Idempotent reward granting against shared balance documents.

    Public Methods
    --------------
    - grant_rewards() -> Apply a challenge's rewards once and write the receipt
    - is_claimed() -> Whether a receipt exists
    - get_claim() -> Stored receipt as a dict
    - ensure_accounts() -> Create balance and vault documents if missing
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        *,
        retry_policy: Optional[DatabaseRetryPolicy] = None,
        clock: Optional[ServerClock] = None,
    ) -> None:
        super().__init__(
            config_manager, event_bus, logger, retry_policy=retry_policy, clock=clock
        )

        self._balance_repo = PlayerBalanceRepository(
            model_class=PlayerBalance,
            logger=get_logger(f"{__name__}.PlayerBalanceRepository"),
        )
        self._vault_repo = VaultRepository(
            model_class=Vault,
            logger=get_logger(f"{__name__}.VaultRepository"),
        )
        self._claim_repo = RewardClaimRepository(
            model_class=RewardClaim,
            logger=get_logger(f"{__name__}.RewardClaimRepository"),
        )

    # ------------------------------------------------------------------ #
    # Config
    # ------------------------------------------------------------------ #

    @property
    def item_aliases(self) -> Dict[str, str]:
        aliases = self.get_config("rewards.item_aliases", {}) or {}
        return {str(k): str(v) for k, v in dict(aliases).items()}

    @property
    def large_reward_threshold(self) -> int:
        return self.get_int_config("rewards.large_reward_threshold", 100)

    def vault_capacity(self, level: int) -> int:
        return vault_capacity_for_level(
            level,
            base=self.get_int_config("vault.base_capacity", 1000),
            per_level=self.get_int_config("vault.capacity_per_level", 350),
            per_level_sq=self.get_int_config("vault.capacity_per_level_sq", 50),
        )

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def grant_rewards(
        self,
        user_id: str,
        challenge_id: str,
        rewards: Iterable[Any],
        *,
        challenge_title: Optional[str] = None,
    ) -> GrantResult:
        """
        Grant `rewards` for `challenge_id` at most once.

        Returns the stored snapshot with `already_claimed=True` on every call
        after the first successful one.

        Raises:
            ValidationError: Negative or malformed amounts (before any write)
            NotFoundError: Neither balance nor vault document exists
            ContentionError: Retry budget exhausted

        Example:
            >>> result = await service.grant_rewards(
            ...     "u1", "ep1-get-letter", [{"xp": 10}, {"currency": 100}]
            ... )
            >>> result.granted.currency
            100
        """
        user_id = InputValidator.validate_user_id(user_id)
        challenge_id = InputValidator.validate_identifier(challenge_id, "challenge_id")

        partitioned = partition_rewards(list(rewards or ()), aliases=self.item_aliases)

        if partitioned.is_empty:
            self.log.info(
                "No-op reward grant; nothing written",
                extra={"user_id": user_id, "challenge_id": challenge_id},
            )
            return GrantResult(already_claimed=False, granted=RewardSnapshot())

        async with LogContext(
            user_id=user_id,
            challenge_id=challenge_id,
            component="rewards",
            operation="grant_rewards",
        ):
            self.log_operation(
                "grant_rewards",
                user_id=user_id,
                challenge_id=challenge_id,
                xp=partitioned.xp,
                currency=partitioned.currency,
                rare_currency=partitioned.rare_currency,
                item_count=len(partitioned.items),
            )

            async def _txn(session: AsyncSession) -> _Applied:
                return await self._apply(
                    session, user_id, challenge_id, partitioned, challenge_title
                )

            applied = await self.run_atomic(
                _txn,
                operation_name="rewards.grant",
                context={"user_id": user_id, "challenge_id": challenge_id},
            )
            result = applied.result

            if result.already_claimed:
                self.log.info(
                    "Rewards already claimed; replaying stored snapshot",
                    extra={"user_id": user_id, "challenge_id": challenge_id},
                )
                return result

            await self._verify_grant(user_id, challenge_id, result)
            await self._flag_anomaly(user_id, challenge_id, result)

            await AuditLogger.log(
                user_id=user_id,
                transaction_type="reward_grant",
                details={
                    "challenge_id": challenge_id,
                    "granted": result.granted.to_dict(),
                    "vault_clipped": result.vault_clipped,
                    "applied_to": list(result.applied_to),
                    "items_added": list(applied.items_added),
                },
                context="rewards.grant",
                bus=self._events,
            )
            await self.emit_event(
                "rewards.granted",
                {
                    "user_id": user_id,
                    "challenge_id": challenge_id,
                    **result.to_dict(),
                },
            )

            self.log.info(
                f"Rewards granted for {challenge_id}",
                extra={
                    "user_id": user_id,
                    "challenge_id": challenge_id,
                    "vault_clipped": result.vault_clipped,
                    "applied_to": list(result.applied_to),
                    "items_added": list(applied.items_added),
                },
            )
            return result

    async def ensure_accounts(self, user_id: str, level: int = 1) -> Dict[str, bool]:
        """
        Create the balance and vault documents for `user_id` if missing.

        The vault capacity follows `vault_capacity_for_level(level)`.

        Returns:
            {"balance_created": bool, "vault_created": bool}
        """
        user_id = InputValidator.validate_user_id(user_id)
        level = InputValidator.validate_positive_integer(level, "level")
        capacity = self.vault_capacity(level)

        async def _txn(session: AsyncSession) -> Dict[str, bool]:
            created = {"balance_created": False, "vault_created": False}

            if await self._balance_repo.get(session, user_id) is None:
                self._balance_repo.add(
                    session,
                    PlayerBalance(
                        user_id=user_id, xp=0, currency=0, rare_currency=0, level=level, items={}
                    ),
                )
                created["balance_created"] = True

            if await self._vault_repo.get(session, user_id) is None:
                self._vault_repo.add(
                    session, Vault(user_id=user_id, current_currency=0, capacity=capacity)
                )
                created["vault_created"] = True

            return created

        created = await self.run_atomic(
            _txn,
            operation_name="rewards.ensure_accounts",
            context={"user_id": user_id},
        )

        if any(created.values()):
            await self.emit_event(
                "rewards.accounts_created",
                {"user_id": user_id, "level": level, "vault_capacity": capacity, **created},
            )
            self.log.info(
                "Reward accounts created",
                extra={"user_id": user_id, "vault_capacity": capacity, **created},
            )
        return created

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def is_claimed(self, user_id: str, challenge_id: str) -> bool:
        claim = await self.get_claim(user_id, challenge_id)
        return bool(claim and claim["claimed"])

    async def get_claim(self, user_id: str, challenge_id: str) -> Optional[Dict[str, Any]]:
        """Stored receipt for (user, challenge), or None."""
        user_id = InputValidator.validate_user_id(user_id)
        challenge_id = InputValidator.validate_identifier(challenge_id, "challenge_id")

        async def _read(session: AsyncSession) -> Optional[Dict[str, Any]]:
            claim = await self._claim_repo.get_claim(session, user_id, challenge_id)
            if claim is None:
                return None
            return {
                "user_id": claim.user_id,
                "challenge_id": claim.challenge_id,
                "claimed": claim.claimed,
                "claimed_at": to_iso(claim.claimed_at),
                "challenge_title": claim.challenge_title,
                "rewards_snapshot": RewardSnapshot.from_dict(claim.rewards_snapshot).to_dict(),
                "applied_to": list(claim.applied_to or []),
            }

        return await self.run_read(_read)

    # ========================================================================
    # Internals
    # ========================================================================

    async def _apply(
        self,
        session: AsyncSession,
        user_id: str,
        challenge_id: str,
        partitioned: PartitionedRewards,
        challenge_title: Optional[str],
    ) -> _Applied:
        claim = await self._claim_repo.get_claim(session, user_id, challenge_id)
        if claim is not None and claim.claimed:
            return _Applied(
                result=GrantResult(
                    already_claimed=True,
                    granted=RewardSnapshot.from_dict(claim.rewards_snapshot),
                    vault_clipped=0,
                    applied_to=tuple(claim.applied_to or ()),
                )
            )

        balance = await self._balance_repo.get(session, user_id)
        vault = await self._vault_repo.get(session, user_id)
        if balance is None and vault is None:
            raise NotFoundError("PlayerBalance", user_id)

        now = self.now()
        applied_to: List[str] = []
        items_added: List[str] = []
        vault_clipped = 0

        if balance is not None:
            balance.xp = balance.xp + partitioned.xp
            balance.currency = balance.currency + partitioned.currency
            balance.rare_currency = balance.rare_currency + partitioned.rare_currency

            if partitioned.items:
                stored = dict(balance.items or {})
                owned = owned_item_ids(stored.keys(), self.item_aliases)
                for grant in partitioned.items:
                    if grant.item_id in owned:
                        continue
                    stored[grant.item_id] = {
                        "granted_by_challenge": challenge_id,
                        "granted_at": to_iso(now),
                        "kind": grant.kind.value,
                    }
                    owned.add(grant.item_id)
                    items_added.append(grant.item_id)
                if items_added:
                    balance.items = stored

            applied_to.append(BALANCE_DOCUMENT)
        else:
            self.log.warning(
                "Balance document missing; balance deltas skipped",
                extra={"user_id": user_id, "challenge_id": challenge_id},
            )

        if vault is not None:
            if partitioned.currency > 0:
                target = vault.current_currency + partitioned.currency
                new_total = min(vault.capacity, target)
                vault_clipped = max(target - new_total, 0)
                vault.current_currency = new_total
                applied_to.append(VAULT_DOCUMENT)
        else:
            self.log.warning(
                "Vault document missing; vault mirror skipped",
                extra={"user_id": user_id, "challenge_id": challenge_id},
            )

        snapshot = partitioned.snapshot()
        self._claim_repo.add(
            session,
            RewardClaim(
                user_id=user_id,
                challenge_id=challenge_id,
                claimed=True,
                claimed_at=now,
                challenge_title=challenge_title or challenge_id,
                rewards_snapshot=snapshot.to_dict(),
                applied_to=list(applied_to),
            ),
        )

        return _Applied(
            result=GrantResult(
                already_claimed=False,
                granted=snapshot,
                vault_clipped=vault_clipped,
                applied_to=tuple(applied_to),
            ),
            items_added=tuple(items_added),
        )

    async def _verify_grant(self, user_id: str, challenge_id: str, result: GrantResult) -> None:
        """Re-read after commit and log any disagreement with what was written."""
        try:

            async def _read(session: AsyncSession) -> List[str]:
                problems: List[str] = []
                claim = await self._claim_repo.get_claim(session, user_id, challenge_id)
                if claim is None or not claim.claimed:
                    problems.append("receipt missing after commit")

                if BALANCE_DOCUMENT in result.applied_to and result.granted.items:
                    balance = await self._balance_repo.get(session, user_id)
                    owned = owned_item_ids(
                        (balance.items or {}).keys() if balance is not None else (),
                        self.item_aliases,
                    )
                    missing = [item for item in result.granted.items if item not in owned]
                    if missing:
                        problems.append(f"items missing after commit: {missing}")
                return problems

            problems = await self.run_read(_read)
        except Exception as exc:
            self.log.warning(
                "Post-commit reward verification failed to run",
                extra={
                    "user_id": user_id,
                    "challenge_id": challenge_id,
                    "error_type": type(exc).__name__,
                },
            )
            return

        for problem in problems:
            self.log.warning(
                "Post-commit reward verification mismatch",
                extra={"user_id": user_id, "challenge_id": challenge_id, "problem": problem},
            )

    async def _flag_anomaly(self, user_id: str, challenge_id: str, result: GrantResult) -> None:
        threshold = self.large_reward_threshold
        if result.granted.currency <= threshold:
            return

        self.log.warning(
            "Large reward grant flagged",
            extra={
                "user_id": user_id,
                "challenge_id": challenge_id,
                "currency": result.granted.currency,
                "threshold": threshold,
            },
        )
        await self.emit_event(
            "rewards.anomaly",
            {
                "user_id": user_id,
                "challenge_id": challenge_id,
                "currency": result.granted.currency,
                "threshold": threshold,
            },
        )

