"""
Lobby Service
=============

Purpose
-------
Capacity-constrained group registry: admits and evicts players from lobbies
without ever exceeding `max_players` or listing a player twice.

Domain
------
- Create a lobby with the host as its first (leader) player
- Join / leave with idempotent outcomes
- Host leaving a pre-game lobby expires it
- Sweep empty, stale pre-game lobbies to `expired`
- Heartbeat, status advancement, lookups

Design Notes
------------
- Join's capacity check and append are one optimistic read-modify-write on
  the lobby row; a concurrent join that committed first bumps `version`, so
  the loser re-reads and re-checks capacity.
- `expired` is terminal. Nothing transitions out of it.
- The sweep updates lobbies one at a time without retry: a lobby that was
  modified concurrently is skipped and picked up by a later sweep.

Events
------
- lobby.created
- lobby.player_joined
- lobby.player_left
- lobby.expired
- lobby.status_changed
"""

from __future__ import annotations

import copy
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from questledger.core.clock import ensure_utc, to_iso
from questledger.core.database.service import DatabaseService
from questledger.core.logging.logger import LogContext, get_logger
from questledger.core.validation.input_validator import InputValidator
from questledger.database.models.enums import LobbyStatus
from questledger.database.models.social.lobby import Lobby
from questledger.modules.lobby.players import build_player_ref, find_player
from questledger.modules.lobby.results import JoinResult, LeaveResult
from questledger.modules.shared.base_repository import BaseRepository
from questledger.modules.shared.base_service import BaseService
from questledger.modules.shared.exceptions import (
    InvalidOperationError,
    LobbyNotJoinableError,
    NotFoundError,
)

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from questledger.core.clock import ServerClock
    from questledger.core.config.manager import ConfigManager
    from questledger.core.database.retry_policy import DatabaseRetryPolicy
    from questledger.core.event.bus import EventBus


# Forward path; any joinable status may also move to EXPIRED.
_FORWARD_TRANSITIONS: Dict[LobbyStatus, LobbyStatus] = {
    LobbyStatus.WAITING: LobbyStatus.STARTING,
    LobbyStatus.STARTING: LobbyStatus.IN_PROGRESS,
}


# ============================================================================
# Repository
# ============================================================================


class LobbyRepository(BaseRepository[Lobby]):
    """Repository for Lobby rows."""

    async def find_by_status(
        self, session: AsyncSession, statuses: frozenset
    ) -> List[Lobby]:
        return await self.find_many_where(
            session,
            Lobby.status.in_([status.value for status in statuses]),
            order_by=Lobby.created_at,
        )


# ============================================================================
# LobbyService
# ============================================================================


class LobbyService(BaseService):
    """
    Lobby roster management.

    Public Methods
    --------------
    - create_lobby() -> New waiting lobby hosted by the caller
    - join() -> Admit a player unless full or not joinable
    - leave() -> Remove a player; host leaving expires a pre-game lobby
    - sweep_expired() -> Expire empty stale pre-game lobbies
    - touch() -> Heartbeat
    - find_active_lobby_for_user() -> Lobby id the user is currently in
    - get_lobby() -> Read-only snapshot
    - advance_status() -> waiting -> starting -> in_progress
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
        self._lobby_repo = LobbyRepository(
            model_class=Lobby,
            logger=get_logger(f"{__name__}.LobbyRepository"),
        )

    # ------------------------------------------------------------------ #
    # Config
    # ------------------------------------------------------------------ #

    @property
    def default_max_players(self) -> int:
        return self.get_int_config("lobby.default_max_players", 4, minimum=1)

    @property
    def stale_window(self) -> timedelta:
        return timedelta(minutes=self.get_int_config("lobby.stale_minutes", 10, minimum=1))

    @property
    def player_defaults(self) -> Dict[str, Any]:
        return dict(self.get_config("lobby.player_defaults", {}) or {})

    async def _load(self, session: AsyncSession, lobby_id: str) -> Lobby:
        lobby = await self._lobby_repo.get(session, lobby_id)
        if lobby is None:
            raise NotFoundError("Lobby", lobby_id)
        return lobby

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def create_lobby(
        self,
        host_id: str,
        profile: Optional[Mapping[str, Any]] = None,
        *,
        max_players: Optional[int] = None,
        lobby_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a `waiting` lobby with the host as its leader.

        Raises:
            ValidationError: If max_players < 1 or an id is malformed
            InvalidOperationError: If `lobby_id` is already taken
        """
        host_id = InputValidator.validate_user_id(host_id)
        capacity = (
            self.default_max_players
            if max_players is None
            else InputValidator.validate_positive_integer(max_players, "max_players")
        )
        lobby_id = (
            InputValidator.validate_identifier(lobby_id, "lobby_id")
            if lobby_id is not None
            else uuid.uuid4().hex
        )
        host_ref = build_player_ref(host_id, profile, self.player_defaults, is_leader=True)

        async def _txn(session: AsyncSession) -> Dict[str, Any]:
            if await self._lobby_repo.get(session, lobby_id) is not None:
                raise InvalidOperationError("create_lobby", f"lobby {lobby_id} already exists")
            lobby = Lobby(
                id=lobby_id,
                status=LobbyStatus.WAITING.value,
                host_id=host_id,
                max_players=capacity,
                players=[dict(host_ref)],
                last_activity_at=self.now(),
            )
            self._lobby_repo.add(session, lobby)
            await self._lobby_repo.flush(session)
            return _lobby_to_dict(lobby)

        snapshot = await self.run_atomic(
            _txn,
            operation_name="lobby.create",
            context={"lobby_id": lobby_id, "user_id": host_id},
        )

        await self.emit_event(
            "lobby.created",
            {"lobby_id": lobby_id, "host_id": host_id, "max_players": capacity},
        )
        self.log.info(
            "Lobby created",
            extra={"lobby_id": lobby_id, "user_id": host_id, "max_players": capacity},
        )
        return snapshot

    async def join(
        self,
        lobby_id: str,
        user_id: str,
        profile: Optional[Mapping[str, Any]] = None,
    ) -> JoinResult:
        """
        Admit `user_id` into the lobby.

        Re-joining is a success with `already_joined=True`; a lobby at
        capacity yields `JoinResult(success=False, is_full=True)`.

        Raises:
            NotFoundError: If the lobby does not exist
            LobbyNotJoinableError: If the lobby is past `starting`
        """
        lobby_id = InputValidator.validate_identifier(lobby_id, "lobby_id")
        user_id = InputValidator.validate_user_id(user_id)
        player_ref = build_player_ref(user_id, profile, self.player_defaults)

        async with LogContext(
            user_id=user_id, lobby_id=lobby_id, component="lobby", operation="join"
        ):

            async def _txn(session: AsyncSession) -> JoinResult:
                lobby = await self._load(session, lobby_id)
                if LobbyStatus(lobby.status) not in LobbyStatus.joinable():
                    raise LobbyNotJoinableError(lobby_id, lobby.status)

                players = list(lobby.players or [])
                if find_player(players, user_id) is not None:
                    return JoinResult(
                        success=True, already_joined=True, player_count=len(players)
                    )
                if len(players) >= lobby.max_players:
                    return JoinResult(success=False, is_full=True, player_count=len(players))

                players.append(dict(player_ref))
                lobby.players = players
                lobby.last_activity_at = self.now()
                return JoinResult(success=True, player_count=len(players))

            result = await self.run_atomic(
                _txn,
                operation_name="lobby.join",
                context={"lobby_id": lobby_id, "user_id": user_id},
            )

            if result.is_full:
                self.log.info(
                    "Lobby full; join refused",
                    extra={"lobby_id": lobby_id, "user_id": user_id},
                )
            elif not result.already_joined:
                await self.emit_event(
                    "lobby.player_joined",
                    {"lobby_id": lobby_id, "user_id": user_id, "player_count": result.player_count},
                )
                self.log.info(
                    "Player joined lobby",
                    extra={
                        "lobby_id": lobby_id,
                        "user_id": user_id,
                        "player_count": result.player_count,
                    },
                )
            return result

    async def leave(self, lobby_id: str, user_id: str) -> LeaveResult:
        """
        Remove `user_id` from the lobby. Always succeeds.

        A host leaving a `waiting` or `starting` lobby expires it in the same
        commit.
        """
        lobby_id = InputValidator.validate_identifier(lobby_id, "lobby_id")
        user_id = InputValidator.validate_user_id(user_id)

        async def _txn(session: AsyncSession) -> LeaveResult:
            lobby = await self._lobby_repo.get(session, lobby_id)
            if lobby is None:
                return LeaveResult(success=True)

            players = list(lobby.players or [])
            index = find_player(players, user_id)
            if index is None:
                return LeaveResult(success=True, player_count=len(players))

            del players[index]
            lobby.players = players
            lobby.last_activity_at = self.now()

            expired = False
            if lobby.host_id == user_id and LobbyStatus(lobby.status) in LobbyStatus.joinable():
                lobby.status = LobbyStatus.EXPIRED.value
                expired = True

            return LeaveResult(
                success=True,
                was_present=True,
                lobby_expired=expired,
                player_count=len(players),
            )

        result = await self.run_atomic(
            _txn,
            operation_name="lobby.leave",
            context={"lobby_id": lobby_id, "user_id": user_id},
        )

        if result.was_present:
            await self.emit_event(
                "lobby.player_left",
                {"lobby_id": lobby_id, "user_id": user_id, "player_count": result.player_count},
            )
        if result.lobby_expired:
            await self.emit_event("lobby.expired", {"lobby_id": lobby_id, "reason": "host_left"})
            self.log.info(
                "Host left; lobby expired",
                extra={"lobby_id": lobby_id, "user_id": user_id},
            )
        return result

    async def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """
        Expire every `waiting`/`starting` lobby that has no players and no
        activity within the staleness window.

        Lobbies are updated one by one; one that changed concurrently is
        skipped. Returns the number of lobbies expired by this call.
        """
        now = ensure_utc(now) if now is not None else self.now()
        cutoff = now - self.stale_window

        async def _candidates(session: AsyncSession) -> List[str]:
            lobbies = await self._lobby_repo.find_by_status(session, LobbyStatus.joinable())
            return [lobby.id for lobby in lobbies if _is_stale(lobby, cutoff)]

        candidate_ids = await self.run_read(_candidates)
        expired_count = 0

        for lobby_id in candidate_ids:
            try:
                expired = await self._expire_if_stale(lobby_id, cutoff)
            except (StaleDataError, OperationalError) as exc:
                self.log.info(
                    "Lobby changed during sweep; skipped",
                    extra={"lobby_id": lobby_id, "error_type": type(exc).__name__},
                )
                continue

            if expired:
                expired_count += 1
                await self.emit_event("lobby.expired", {"lobby_id": lobby_id, "reason": "stale"})

        self.log.info(
            "Lobby sweep finished",
            extra={
                "candidates": len(candidate_ids),
                "expired_count": expired_count,
                "cutoff": to_iso(cutoff),
            },
        )
        return expired_count

    async def touch(self, lobby_id: str) -> bool:
        """Heartbeat: bump `last_activity_at`. False if the lobby is gone."""
        lobby_id = InputValidator.validate_identifier(lobby_id, "lobby_id")

        async def _txn(session: AsyncSession) -> bool:
            lobby = await self._lobby_repo.get(session, lobby_id)
            if lobby is None:
                return False
            lobby.last_activity_at = self.now()
            return True

        return await self.run_atomic(
            _txn, operation_name="lobby.touch", context={"lobby_id": lobby_id}
        )

    async def advance_status(self, lobby_id: str, new_status: Any) -> Dict[str, Any]:
        """
        Move the lobby along waiting -> starting -> in_progress, or expire a
        pre-game lobby. Setting the current status again is a no-op.

        Raises:
            NotFoundError: If the lobby does not exist
            InvalidOperationError: For any other transition, including any
                transition out of `expired`
        """
        lobby_id = InputValidator.validate_identifier(lobby_id, "lobby_id")
        try:
            target = LobbyStatus(new_status)
        except ValueError as exc:
            raise InvalidOperationError(
                "advance_status", f"unknown lobby status {new_status!r}"
            ) from exc

        async def _txn(session: AsyncSession) -> Tuple[Dict[str, Any], Optional[str]]:
            lobby = await self._load(session, lobby_id)
            current = LobbyStatus(lobby.status)
            if current == target:
                return _lobby_to_dict(lobby), None

            allowed = _FORWARD_TRANSITIONS.get(current) == target or (
                target == LobbyStatus.EXPIRED and current in LobbyStatus.joinable()
            )
            if not allowed:
                raise InvalidOperationError(
                    "advance_status",
                    f"lobby {lobby_id} cannot move from {current.value} to {target.value}",
                )

            lobby.status = target.value
            lobby.last_activity_at = self.now()
            await self._lobby_repo.flush(session)
            return _lobby_to_dict(lobby), current.value

        snapshot, previous = await self.run_atomic(
            _txn,
            operation_name="lobby.advance_status",
            context={"lobby_id": lobby_id},
        )

        if previous is not None:
            await self.emit_event(
                "lobby.status_changed",
                {"lobby_id": lobby_id, "from_status": previous, "to_status": target.value},
            )
            if target == LobbyStatus.EXPIRED:
                await self.emit_event("lobby.expired", {"lobby_id": lobby_id, "reason": "manual"})
        return snapshot

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_lobby(self, lobby_id: str) -> Dict[str, Any]:
        """
        Raises:
            NotFoundError: If the lobby does not exist
        """
        lobby_id = InputValidator.validate_identifier(lobby_id, "lobby_id")

        async def _read(session: AsyncSession) -> Dict[str, Any]:
            return _lobby_to_dict(await self._load(session, lobby_id))

        return await self.run_read(_read)

    async def find_active_lobby_for_user(self, user_id: str) -> Optional[str]:
        """Id of a waiting/starting/in_progress lobby listing `user_id`, if any."""
        user_id = InputValidator.validate_user_id(user_id)

        async def _read(session: AsyncSession) -> Optional[str]:
            lobbies = await self._lobby_repo.find_by_status(session, LobbyStatus.active())
            for lobby in lobbies:
                if find_player(lobby.players, user_id) is not None:
                    return lobby.id
            return None

        return await self.run_read(_read)

    # ========================================================================
    # Internals
    # ========================================================================

    async def _expire_if_stale(self, lobby_id: str, cutoff: datetime) -> bool:
        async with DatabaseService.get_transaction() as session:
            lobby = await self._lobby_repo.get(session, lobby_id)
            if lobby is None or LobbyStatus(lobby.status) not in LobbyStatus.joinable():
                return False
            if not _is_stale(lobby, cutoff):
                return False
            lobby.status = LobbyStatus.EXPIRED.value
            return True


def _is_stale(lobby: Lobby, cutoff: datetime) -> bool:
    if lobby.players:
        return False
    return ensure_utc(lobby.last_activity_at) < cutoff


def _lobby_to_dict(lobby: Lobby) -> Dict[str, Any]:
    players = copy.deepcopy(list(lobby.players or []))
    return {
        "id": lobby.id,
        "status": lobby.status,
        "host_id": lobby.host_id,
        "max_players": lobby.max_players,
        "players": players,
        "player_count": len(players),
        "last_activity_at": to_iso(lobby.last_activity_at),
        "version": lobby.version,
    }
