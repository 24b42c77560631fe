"""
Progression Service
===================

Purpose
-------
Advances a user through the ordered chapter/challenge graph. Every write is
one optimistic read-modify-write of the user's `UserProgress` document,
re-run from a fresh read when a concurrent writer wins.

Domain
------
- Complete a challenge (idempotent) and cascade unlocks
- Repair documents left inconsistent by partial historical writes
- Seed the document at account creation
- Administrative reset (the only path that deletes reward receipts)

Design Notes
------------
- Transition rules live in `state_machine` as pure functions; this service
  only loads, stores and notifies.
- `NotFoundError` / `ValidationError` are raised before or inside the
  transaction and never retried.
- Events and audit records are emitted after commit, once per logical
  operation regardless of how many attempts it took.

Events
------
- progression.initialized
- progression.challenge_completed
- progression.challenge_unlocked
- progression.chapter_completed
- progression.chapter_unlocked
- progression.repaired
- progression.reset
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any, Dict, Optional

from questledger.core.clock import to_iso
from questledger.core.infra.audit_logger import AuditLogger
from questledger.core.logging.logger import LogContext, get_logger
from questledger.core.validation.input_validator import InputValidator
from questledger.database.models.economy.reward_claim import RewardClaim
from questledger.database.models.progression.user_progress import UserProgress
from questledger.modules.catalog.loader import get_catalog
from questledger.modules.progression import state_machine
from questledger.modules.progression.results import ProgressionResult, RepairResult
from questledger.modules.shared.base_repository import BaseRepository
from questledger.modules.shared.base_service import BaseService
from questledger.modules.shared.exceptions import NotFoundError, ValidationError

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from questledger.core.clock import ServerClock
    from questledger.core.config.manager import ConfigManager
    from questledger.core.database.retry_policy import DatabaseRetryPolicy
    from questledger.core.event.bus import EventBus
    from questledger.modules.catalog.models import ChapterCatalog


# ============================================================================
# Repository
# ============================================================================


class UserProgressRepository(BaseRepository[UserProgress]):
    """Repository for UserProgress documents."""

    pass


class RewardClaimRepository(BaseRepository[RewardClaim]):
    """Receipt access for the reset path."""

    async def delete_for_user(self, session: AsyncSession, user_id: str) -> int:
        return await self.delete_where(session, RewardClaim.user_id == user_id)


# ============================================================================
# ProgressionService
# ============================================================================


class ProgressionService(BaseService):
    """
    Transactional chapter/challenge progression.

    Public Methods
    --------------
    - complete_challenge() -> Mark a challenge completed and unlock what follows
    - repair_progression() -> Converge a document toward the invariants
    - initialize_progress() -> Seed a new account's document
    - get_progress() -> Read-only snapshot
    - reset_progress() -> Administrative reset to the initial state
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        *,
        catalog: Optional[ChapterCatalog] = None,
        retry_policy: Optional[DatabaseRetryPolicy] = None,
        clock: Optional[ServerClock] = None,
    ) -> None:
        super().__init__(
            config_manager, event_bus, logger, retry_policy=retry_policy, clock=clock
        )
        self._catalog = catalog if catalog is not None else get_catalog()

        self._progress_repo = UserProgressRepository(
            model_class=UserProgress,
            logger=get_logger(f"{__name__}.UserProgressRepository"),
        )
        self._claim_repo = RewardClaimRepository(
            model_class=RewardClaim,
            logger=get_logger(f"{__name__}.RewardClaimRepository"),
        )

    @property
    def catalog(self) -> ChapterCatalog:
        return self._catalog

    async def _load(self, session: AsyncSession, user_id: str) -> UserProgress:
        progress = await self._progress_repo.get(session, user_id)
        if progress is None:
            raise NotFoundError("UserProgress", user_id)
        return progress

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def complete_challenge(
        self, user_id: str, chapter_id: int, challenge_id: str
    ) -> ProgressionResult:
        """
        Mark `challenge_id` completed for `user_id`.

        Idempotent: a second call returns `already_completed=True` and writes
        nothing. Unlocks the next challenge and, when the chapter becomes
        complete, the next chapter.

        Raises:
            ValidationError: If the challenge does not belong to the chapter
            NotFoundError: If the user has no progress document
            ContentionError: If concurrent writers exhaust the retry budget

        Example:
            >>> result = await service.complete_challenge("u1", 1, "ep1-get-letter")
            >>> result.challenge_unlocked
            'ep1-truth-metal-choice'
        """
        user_id = InputValidator.validate_user_id(user_id)
        chapter_id = InputValidator.validate_chapter_id(chapter_id)
        challenge_id = InputValidator.validate_identifier(challenge_id, "challenge_id")

        if not self._catalog.contains(chapter_id, challenge_id):
            raise ValidationError(
                "challenge_id",
                f"challenge {challenge_id!r} is not part of chapter {chapter_id}",
            )

        async with LogContext(
            user_id=user_id,
            challenge_id=challenge_id,
            component="progression",
            operation="complete_challenge",
        ):
            self.log_operation(
                "complete_challenge",
                user_id=user_id,
                chapter_id=chapter_id,
                challenge_id=challenge_id,
            )

            async def _txn(session: AsyncSession) -> ProgressionResult:
                progress = await self._load(session, user_id)
                updated, outcome = state_machine.apply_completion(
                    progress.chapters or {},
                    self._catalog,
                    chapter_id,
                    challenge_id,
                    self.now(),
                )
                if not outcome.already_completed:
                    progress.chapters = updated
                return outcome

            result = await self.run_atomic(
                _txn,
                operation_name="progression.complete_challenge",
                context={"user_id": user_id, "challenge_id": challenge_id},
            )

            if result.already_completed:
                self.log.info(
                    "Challenge already completed; nothing written",
                    extra={"user_id": user_id, "chapter_id": chapter_id, "challenge_id": challenge_id},
                )
                return result

            await self._emit_completion_events(user_id, chapter_id, challenge_id, result)

            self.log.info(
                f"Challenge completed: {challenge_id}",
                extra={
                    "user_id": user_id,
                    "chapter_id": chapter_id,
                    "challenge_id": challenge_id,
                    **result.to_dict(),
                },
            )
            return result

    async def repair_progression(self, user_id: str) -> RepairResult:
        """
        Self-healing sweep over the user's document in catalog order.

        Writes only when something was repaired. Safe to run arbitrarily
        often; a second run reports zero repairs.

        Raises:
            NotFoundError: If the user has no progress document
        """
        user_id = InputValidator.validate_user_id(user_id)

        async with LogContext(user_id=user_id, component="progression", operation="repair"):
            self.log_operation("repair_progression", user_id=user_id)

            async def _txn(session: AsyncSession) -> RepairResult:
                progress = await self._load(session, user_id)
                updated, outcome = state_machine.repair(
                    progress.chapters or {}, self._catalog, self.now()
                )
                if outcome.repaired:
                    progress.chapters = updated
                return outcome

            result = await self.run_atomic(
                _txn,
                operation_name="progression.repair",
                context={"user_id": user_id},
            )

            for error in result.errors:
                self.log.warning(
                    "Progress anomaly skipped during repair",
                    extra={"user_id": user_id, "anomaly": error},
                )

            if result.repaired:
                await AuditLogger.log(
                    user_id=user_id,
                    transaction_type="progression_repair",
                    details=result.to_dict(),
                    context="progression.repair",
                    bus=self._events,
                )
                await self.emit_event(
                    "progression.repaired",
                    {"user_id": user_id, **result.to_dict()},
                )

            self.log.info(
                "Progression repair finished",
                extra={"user_id": user_id, **result.to_dict()},
            )
            return result

    async def initialize_progress(self, user_id: str) -> bool:
        """
        Create the document for a new account with only chapter 1 seeded.

        Returns False when the document already exists. A concurrent
        duplicate insert fails on the primary key and is retried, where it
        then finds the existing row.
        """
        user_id = InputValidator.validate_user_id(user_id)

        async def _txn(session: AsyncSession) -> bool:
            existing = await self._progress_repo.get(session, user_id)
            if existing is not None:
                return False
            self._progress_repo.add(
                session,
                UserProgress(
                    user_id=user_id,
                    chapters=state_machine.initial_document(self._catalog, self.now()),
                ),
            )
            return True

        created = await self.run_atomic(
            _txn,
            operation_name="progression.initialize",
            context={"user_id": user_id},
        )

        if created:
            await self.emit_event("progression.initialized", {"user_id": user_id})
            self.log.info("Progress document created", extra={"user_id": user_id})
        return created

    async def reset_progress(
        self,
        user_id: str,
        *,
        clear_reward_claims: bool = True,
        context: Optional[str] = None,
    ) -> Dict[str, int]:
        """
        Reset the document to the freshly-initialized state.

        With `clear_reward_claims` the user's reward receipts are deleted in
        the same transaction, so the challenges can be rewarded again.

        Returns:
            {"chapters_cleared": int, "claims_deleted": int}

        Raises:
            NotFoundError: If the user has no progress document
        """
        user_id = InputValidator.validate_user_id(user_id)
        self.log_operation(
            "reset_progress", user_id=user_id, clear_reward_claims=clear_reward_claims
        )

        async def _txn(session: AsyncSession) -> Dict[str, int]:
            progress = await self._load(session, user_id)
            chapters_cleared = len(progress.chapters or {})
            progress.chapters = state_machine.initial_document(self._catalog, self.now())

            claims_deleted = 0
            if clear_reward_claims:
                claims_deleted = await self._claim_repo.delete_for_user(session, user_id)

            return {"chapters_cleared": chapters_cleared, "claims_deleted": claims_deleted}

        summary = await self.run_atomic(
            _txn,
            operation_name="progression.reset",
            context={"user_id": user_id},
        )

        await AuditLogger.log(
            user_id=user_id,
            transaction_type="progression_reset",
            details=summary,
            context=context or "progression.reset",
            bus=self._events,
        )
        await self.emit_event("progression.reset", {"user_id": user_id, **summary})

        self.log.warning(
            "Progression reset",
            extra={"user_id": user_id, **summary},
        )
        return summary

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_progress(self, user_id: str) -> Dict[str, Any]:
        """
        Read-only snapshot of the user's document.

        Raises:
            NotFoundError: If the user has no progress document
        """
        user_id = InputValidator.validate_user_id(user_id)

        async def _read(session: AsyncSession) -> Dict[str, Any]:
            progress = await self._load(session, user_id)
            return {
                "user_id": progress.user_id,
                "chapters": copy.deepcopy(progress.chapters or {}),
                "version": progress.version,
                "updated_at": to_iso(progress.updated_at),
            }

        return await self.run_read(_read)

    # ========================================================================
    # Internals
    # ========================================================================

    async def _emit_completion_events(
        self,
        user_id: str,
        chapter_id: int,
        challenge_id: str,
        result: ProgressionResult,
    ) -> None:
        base = {"user_id": user_id, "chapter_id": chapter_id}

        await self.emit_event(
            "progression.challenge_completed", {**base, "challenge_id": challenge_id}
        )
        if result.challenge_unlocked is not None:
            await self.emit_event(
                "progression.challenge_unlocked",
                {**base, "challenge_id": result.challenge_unlocked},
            )
        if result.chapter_completed:
            await self.emit_event("progression.chapter_completed", base)
        if result.chapter_unlocked is not None:
            await self.emit_event(
                "progression.chapter_unlocked",
                {"user_id": user_id, "chapter_id": result.chapter_unlocked},
            )
