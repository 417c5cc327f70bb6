"""Per-game bridge between a single-player engine and a multiplayer room.

The adapter owns the session state for one client (room code, role, player
id) and is the error boundary of the room protocol: every public method
returns a ``SessionResult`` instead of raising, and an unreachable store
degrades multiplayer calls to logged no-ops so the game keeps running solo.
"""

import asyncio
import secrets
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any, Self

import structlog
from pydantic import BaseModel

from adapters.hooks import GameOutcome, GameSessionHooks
from rooms.exceptions import AuthorizationError, BackendUnavailableError, PlayerNotFoundError, RoomError
from rooms.lifecycle import RoomLifecycleManager, Unsubscribe
from rooms.models import GameResult, PlayerIdentity, RejectReason, RoomMeta, RoomStatus
from rooms.presence import PresenceHeartbeat
from rooms.settings import RoomSettings
from shared.logging import bind_session_context, clear_session_context
from shared.store import RoomStore

logger = structlog.get_logger()

DEFAULT_CLOSED_REASON = "Room closed"


def _cancel(task: asyncio.Future[Any]) -> None:
    if not task.done():
        task.cancel()


class SessionRole(StrEnum):
    HOST = "host"
    PLAYER = "player"


class SessionResult(BaseModel):
    ok: bool
    code: RejectReason | None = None
    reason: str | None = None
    value: Any = None

    @classmethod
    def success(cls, value: Any = None) -> Self:  # noqa: ANN401
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, code: RejectReason, reason: str) -> Self:
        return cls(ok=False, code=code, reason=reason)


class GameSessionAdapter:
    """Give a single-player game multiplayer start, score and end semantics.

    Constructed with the game's hooks and an optional store. Without a store
    every room operation is skipped and the game behaves exactly as in
    single-player mode.
    """

    def __init__(
        self,
        hooks: GameSessionHooks,
        store: RoomStore | None = None,
        settings: RoomSettings | None = None,
        *,
        player_id: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._hooks = hooks
        self._settings = settings or RoomSettings()
        self._clock = clock
        self._lifecycle = RoomLifecycleManager(store, self._settings, clock=clock) if store is not None else None
        self._heartbeat = (
            PresenceHeartbeat(self._lifecycle.touch_player, self._settings.heartbeat_interval_seconds)
            if self._lifecycle is not None
            else None
        )
        self._player_id = player_id or secrets.token_hex(8)
        self._room_code: str | None = None
        self._role: SessionRole | None = None
        self._unsubscribers: list[Unsubscribe] = []
        self._started_at: float | None = None
        self._score_sync: asyncio.Task[SessionResult] | None = None

    @property
    def player_id(self) -> str:
        return self._player_id

    @property
    def room_code(self) -> str | None:
        return self._room_code

    @property
    def role(self) -> SessionRole | None:
        return self._role

    @property
    def in_room(self) -> bool:
        return self._room_code is not None

    @property
    def lifecycle(self) -> RoomLifecycleManager | None:
        return self._lifecycle

    # --- Lobby ---

    async def create_room(self, name: str, config: dict[str, Any] | None = None) -> SessionResult:
        async def action(lifecycle: RoomLifecycleManager) -> str:
            identity = PlayerIdentity(id=self._player_id, name=name)
            room_code = await lifecycle.create_room(self._hooks.game_type, identity, config)
            await self._attach(room_code, SessionRole.HOST)
            return room_code

        return await self._run("create_room", action)

    async def join_room(self, room_code: str, name: str) -> SessionResult:
        async def action(lifecycle: RoomLifecycleManager) -> Any:  # noqa: ANN401
            room = await lifecycle.join_room(room_code, PlayerIdentity(id=self._player_id, name=name))
            await self._attach(room.code, SessionRole.PLAYER)
            return room

        return await self._run("join_room", action)

    async def set_ready(self, ready: bool = True) -> SessionResult:
        room_code = self._room_code
        if room_code is None:
            return SessionResult.failure(RejectReason.NOT_IN_ROOM, "Not in a room")
        return await self._run(
            "set_ready",
            lambda lifecycle: lifecycle.set_player_ready(room_code, self._player_id, ready=ready),
        )

    async def leave_room(self) -> SessionResult:
        room_code = self._room_code
        if room_code is None:
            return SessionResult.success()
        # Detach first so our own departure is not reported back as a closure.
        await self._detach()
        return await self._run("leave_room", lambda lifecycle: lifecycle.leave_room(room_code, self._player_id))

    # --- Game start ---

    async def init_as_host(self, room_code: str) -> SessionResult:
        """Bind this session to a room it hosts and start presence and closure tracking."""

        async def action(lifecycle: RoomLifecycleManager) -> Any:  # noqa: ANN401
            room = await lifecycle.get_room(room_code)
            if room.host_id != self._player_id:
                raise AuthorizationError("You are not the host of this room", room_code=room_code)
            await self._attach(room_code, SessionRole.HOST)
            return room

        return await self._run("init_as_host", action)

    async def start(self) -> SessionResult:
        """Host: generate and publish the game data, then start locally from the published copy."""
        room_code = self._room_code
        if room_code is None or self._role != SessionRole.HOST:
            return SessionResult.failure(RejectReason.NOT_HOST, "Only the host can start the game")

        async def action(lifecycle: RoomLifecycleManager) -> dict[str, Any]:
            published = await lifecycle.start_game(room_code, self._player_id, self._generate_game_data)
            self._unsubscribers.append(await lifecycle.watch_finalization(room_code))
            await self._begin(published)
            return published

        return await self._run("start", action)

    async def init_as_player(self, room_code: str) -> SessionResult:
        """Player: show waiting, wait for the host's game data, then start locally."""

        async def action(lifecycle: RoomLifecycleManager) -> dict[str, Any]:
            room = await lifecycle.get_room(room_code)
            if not room.has_player(self._player_id):
                raise PlayerNotFoundError(room_code, self._player_id)
            await self._attach(room_code, SessionRole.PLAYER)
            await self._hooks.on_waiting()
            # Closure detaches the session and cancels the wait with it.
            waiter = asyncio.ensure_future(lifecycle.wait_for_game_data(room_code))
            self._unsubscribers.append(lambda: _cancel(waiter))
            try:
                game_data = await waiter
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise
                raise RoomError(
                    "Room closed before the game started",
                    room_code=room_code,
                    code=RejectReason.NOT_IN_ROOM,
                ) from None
            self._unsubscribers.append(await lifecycle.watch_finalization(room_code))
            await self._begin(game_data)
            return game_data

        try:
            return await self._run("init_as_player", action)
        except TimeoutError:
            logger.warning("gave up waiting for game data", room_code=room_code, player_id=self._player_id)
            return SessionResult.failure(RejectReason.GAME_DATA_TIMEOUT, "The host did not start the game in time")

    # --- In-game ---

    async def answer_scored(self, delta: int) -> SessionResult:
        """Apply a scoring event locally and push the new total to the room in the background."""
        await self._hooks.on_answer_scored(delta)
        score = self._hooks.current_score()
        room_code = self._room_code
        if room_code is not None and self._lifecycle is not None:
            self._score_sync = asyncio.create_task(self._sync_score(room_code, score, self._score_sync))
        return SessionResult.success(score)

    async def flush_scores(self) -> None:
        """Wait until every score reported so far has reached the room."""
        if self._score_sync is not None:
            await self._score_sync

    async def end_game(self, outcome: GameOutcome) -> SessionResult:
        """Report the final result to the room, then run the game's own end behaviour."""
        elapsed = round(self._clock() - self._started_at, 3) if self._started_at is not None else None
        result = GameResult(
            score=outcome.score,
            elapsed_seconds=elapsed,
            accuracy=outcome.accuracy,
            details=outcome.details,
        )
        room_code = self._room_code
        reported = SessionResult.success(result)
        if room_code is not None:
            await self.flush_scores()
            reported = await self._run(
                "end_game",
                lambda lifecycle: lifecycle.finalize_result(room_code, self._player_id, result),
            )
            if reported.ok:
                reported = SessionResult.success(result)
        await self._hooks.on_game_end(result)
        return reported

    async def close(self) -> None:
        """Release every task and subscription without touching the room."""
        await self._detach()

    # --- Internal helpers ---

    async def _run(
        self,
        operation: str,
        action: Callable[[RoomLifecycleManager], Awaitable[Any]],
    ) -> SessionResult:
        if self._lifecycle is None:
            logger.warning("multiplayer unavailable, skipping", operation=operation)
            return SessionResult.failure(RejectReason.BACKEND_UNAVAILABLE, "Multiplayer is unavailable")
        try:
            value = await action(self._lifecycle)
        except BackendUnavailableError as e:
            logger.warning("multiplayer unavailable, skipping", operation=operation, reason=e.reason)
            return SessionResult.failure(e.code, e.reason)
        except RoomError as e:
            logger.info(
                "room operation rejected",
                operation=operation,
                room_code=e.room_code,
                code=e.code,
                reason=e.reason,
            )
            return SessionResult.failure(e.code, e.reason)
        return SessionResult.success(value)

    async def _attach(self, room_code: str, role: SessionRole) -> None:
        if self._room_code == room_code and self._role == role:
            return
        await self._detach()
        self._room_code = room_code
        self._role = role
        bind_session_context(room_code, self._player_id, role)
        lifecycle = self._lifecycle
        if lifecycle is None or self._heartbeat is None:
            return
        self._unsubscribers.append(await lifecycle.on_status_change(room_code, self._on_status_change))
        self._heartbeat.start(room_code, self._player_id)
        logger.info("session attached", room_code=room_code, player_id=self._player_id, role=role)

    async def _detach(self) -> None:
        room_code = self._room_code
        unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()
        score_sync, self._score_sync = self._score_sync, None
        if score_sync is not None and score_sync is not asyncio.current_task():
            _cancel(score_sync)
        if room_code is not None and self._heartbeat is not None:
            await self._heartbeat.stop(room_code, self._player_id)
        if self._lifecycle is not None:
            await self._lifecycle.close()
        if room_code is not None:
            clear_session_context()
        self._room_code = None
        self._role = None
        self._started_at = None

    async def _generate_game_data(self) -> dict[str, Any]:
        try:
            return await self._hooks.generate_game_data()
        except RoomError:
            raise
        except Exception as e:
            raise RoomError(f"Game data generation failed: {e}", room_code=self._room_code) from e

    async def _begin(self, game_data: dict[str, Any]) -> None:
        if self._settings.countdown_seconds > 0:
            await asyncio.sleep(self._settings.countdown_seconds)
        self._started_at = self._clock()
        if self._lifecycle is not None and self._room_code is not None:
            await self._lifecycle.mark_player_playing(self._room_code, self._player_id)
        await self._hooks.on_start(game_data)
        if self._lifecycle is not None and self._room_code is not None:
            await self._lifecycle.sync_score(self._room_code, self._player_id, 0)

    async def _sync_score(
        self,
        room_code: str,
        score: int,
        previous: asyncio.Task[SessionResult] | None,
    ) -> SessionResult:
        # Chained so totals reach the store in the order they were scored.
        if previous is not None:
            await previous
        return await self._run(
            "sync_score",
            lambda lifecycle: lifecycle.sync_score(room_code, self._player_id, score),
        )

    async def _on_status_change(self, status: RoomStatus | None, meta: RoomMeta | None) -> None:
        if status is not None and status != RoomStatus.CLOSED:
            return
        if self._room_code is None:
            return
        reason = (meta.closed_reason if meta is not None else None) or DEFAULT_CLOSED_REASON
        logger.info("room closed underneath session", room_code=self._room_code, reason=reason)
        await self._detach()
        await self._hooks.on_room_left(reason)
