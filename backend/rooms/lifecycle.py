"""Room lifecycle: creation, membership, game data publication and status transitions.

The manager is the only component that writes ``meta/status``. Every mutating
call reads a fresh snapshot, asks the validator, then issues single-path
writes in an order that keeps other clients' views consistent: the store has
no multi-path transactions, so write order is the protocol.
"""

import asyncio
import inspect
import json
import random
import secrets
import time
from collections.abc import Awaitable, Callable
from typing import Any

import pydantic
import structlog

from rooms.exceptions import (
    AlreadyInRoomError,
    AuthorizationError,
    CodeExhaustionError,
    EmptyGameDataError,
    GameDataAlreadyPublishedError,
    GameDataTooLargeError,
    InvalidTransitionError,
    PlayerNotFoundError,
    RoomError,
    RoomNotFoundError,
    TransitionError,
    ValidationError,
    error_for_reason,
)
from rooms.models import (
    GameResult,
    PlayerIdentity,
    PlayerRecord,
    PlayerStatus,
    RejectReason,
    RoomMeta,
    RoomSnapshot,
    RoomStatus,
    is_allowed_transition,
)
from rooms.settings import RoomSettings
from rooms.throttle import ScoreThrottle
from rooms.validator import (
    Verdict,
    all_players_finished,
    can_join_room,
    can_start_game,
    validate_player_name,
    validate_room_code,
    validate_room_config,
)
from shared.store import RoomStore, join_path

logger = structlog.get_logger()

ROOMS_ROOT = "rooms"

Unsubscribe = Callable[[], None]
GameDataCallback = Callable[[dict[str, Any]], Awaitable[None] | None]
StatusCallback = Callable[[RoomStatus | None, RoomMeta | None], Awaitable[None] | None]
PlayersCallback = Callable[[dict[str, PlayerRecord]], Awaitable[None] | None]

# Statuses in which the host may still publish the shared game data.
_PUBLISHABLE_STATUSES = frozenset({RoomStatus.WAITING, RoomStatus.GENERATING, RoomStatus.READY})

# Player statuses no later presence or start write may overwrite.
_TERMINAL_PLAYER_STATUSES = (PlayerStatus.FINISHED, PlayerStatus.DISCONNECTED)


def room_path(room_code: str) -> str:
    return join_path(ROOMS_ROOT, room_code)


def meta_path(room_code: str, field: str | None = None) -> str:
    base = join_path(ROOMS_ROOT, room_code, "meta")
    return base if field is None else join_path(base, field)


def players_path(room_code: str) -> str:
    return join_path(ROOMS_ROOT, room_code, "players")


def player_path(room_code: str, player_id: str, field: str | None = None) -> str:
    base = join_path(ROOMS_ROOT, room_code, "players", player_id)
    return base if field is None else join_path(base, field)


def game_data_path(room_code: str) -> str:
    return join_path(ROOMS_ROOT, room_code, "gameData")


def generate_room_code(length: int, alphabet: str, rng: random.Random) -> str:
    return "".join(rng.choice(alphabet) for _ in range(length))


async def _invoke(callback: Callable[..., Any], *args: Any) -> None:  # noqa: ANN401
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


def _raise_rejected(verdict: Verdict, room_code: str | None = None) -> None:
    if not verdict.ok:
        raise error_for_reason(verdict.code or RejectReason.INVALID_INPUT, verdict.reason or "", room_code=room_code)


class RoomLifecycleManager:
    """Drive a room through ``waiting → generating → (ready) → playing → finished → closed``.

    One manager runs inside each client. The shared store is injected, as are
    the clock (epoch seconds) and the random source for room codes, so tests
    can pin both.
    """

    def __init__(
        self,
        store: RoomStore,
        settings: RoomSettings | None = None,
        *,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or RoomSettings()
        self._clock = clock
        self._rng = rng or secrets.SystemRandom()
        self._throttle = ScoreThrottle(self._settings.score_sync_throttle_seconds, self._write_score)

    @property
    def settings(self) -> RoomSettings:
        return self._settings

    @property
    def store(self) -> RoomStore:
        return self._store

    def now(self) -> float:
        return self._clock()

    # --- Reads ---

    async def get_room(self, room_code: str) -> RoomSnapshot:
        """Read a one-shot snapshot of the room. Raises RoomNotFoundError if absent or malformed."""
        raw = await self._store.get(room_path(room_code))
        if not isinstance(raw, dict) or "meta" not in raw:
            raise RoomNotFoundError(room_code)
        try:
            return RoomSnapshot.from_store(room_code, raw)
        except pydantic.ValidationError:
            logger.warning("room snapshot is malformed", room_code=room_code)
            raise RoomNotFoundError(room_code) from None

    async def room_exists(self, room_code: str) -> bool:
        return await self._store.get(meta_path(room_code)) is not None

    # --- Creation and membership ---

    async def create_room(
        self,
        game_type: str,
        host_player: PlayerIdentity,
        config: dict[str, Any] | None = None,
    ) -> str:
        """Create a room with the host as its only player and return the room code."""
        name = validate_player_name(host_player.name)
        _raise_rejected(name)
        config_verdict = validate_room_config(config, max_players=self._settings.max_players)
        _raise_rejected(config_verdict)
        room_config = config_verdict.value

        room_code = await self._claim_code()
        now = self.now()
        meta = RoomMeta(
            status=RoomStatus.WAITING,
            host_id=host_player.id,
            game_type=game_type or "generic",
            max_players=room_config.max_players or self._settings.max_players,
            created_at=now,
            config=room_config.to_store() or None,
        )
        host = PlayerRecord(name=name.value, is_host=True, joined_at=now, last_seen=now)
        # One write for the whole subtree: a room never exists without its host.
        await self._store.set(
            room_path(room_code),
            {"meta": meta.to_store(), "players": {host_player.id: host.to_store()}},
        )
        logger.info("room created", room_code=room_code, game_type=meta.game_type, host_id=host_player.id)
        return room_code

    async def join_room(self, room_code: str, player: PlayerIdentity) -> RoomSnapshot:
        """Add a player to a waiting room. Writes only ``players/{id}``, never ``meta``."""
        code = validate_room_code(
            room_code,
            length=self._settings.room_code_length,
            alphabet=self._settings.room_code_alphabet,
        )
        _raise_rejected(code)
        room_code = code.value
        name = validate_player_name(player.name)
        _raise_rejected(name, room_code)

        room = await self.get_room(room_code)
        if room.has_player(player.id):
            raise AlreadyInRoomError("You are already in this room", room_code=room_code)
        _raise_rejected(can_join_room(room), room_code)

        now = self.now()
        record = PlayerRecord(name=name.value, joined_at=now, last_seen=now)
        await self._store.set(player_path(room_code, player.id), record.to_store())
        logger.info("player joined room", room_code=room_code, player_id=player.id)
        return room.model_copy(update={"players": {**room.players, player.id: record}})

    async def leave_room(self, room_code: str, player_id: str) -> None:
        """Remove a player. A departing host hands over to the earliest remaining joiner.

        Leaving a room that is already gone is a no-op.
        """
        try:
            room = await self.get_room(room_code)
        except RoomNotFoundError:
            return
        if not room.has_player(player_id):
            return

        await self._store.delete(player_path(room_code, player_id))
        remaining = {pid: p for pid, p in room.players.items() if pid != player_id}
        if not remaining:
            await self._store.delete(room_path(room_code))
            logger.info("last player left, room deleted", room_code=room_code)
            return

        if player_id == room.host_id:
            new_host_id = min(remaining, key=lambda pid: remaining[pid].joined_at)
            # isHost before hostId: whoever hostId names must already be marked host.
            await self._store.set(player_path(room_code, new_host_id, "isHost"), True)
            await self._store.set(meta_path(room_code, "hostId"), new_host_id)
            logger.info("host transferred", room_code=room_code, old_host=player_id, new_host=new_host_id)
        logger.info("player left room", room_code=room_code, player_id=player_id)

    async def kick_player(self, room_code: str, host_id: str, player_id: str) -> None:
        room = await self.get_room(room_code)
        if room.host_id != host_id:
            raise AuthorizationError("Only the host can remove players", room_code=room_code)
        if player_id == host_id:
            raise ValidationError("The host cannot remove themselves", room_code=room_code)
        if not room.has_player(player_id):
            raise PlayerNotFoundError(room_code, player_id)
        await self._store.delete(player_path(room_code, player_id))
        logger.info("player removed by host", room_code=room_code, player_id=player_id)

    async def set_player_ready(self, room_code: str, player_id: str, *, ready: bool) -> None:
        room = await self.get_room(room_code)
        if not room.has_player(player_id):
            raise PlayerNotFoundError(room_code, player_id)
        if room.status != RoomStatus.WAITING:
            raise TransitionError("Ready state can only change before the game starts", room_code=room_code)
        await self._store.set(player_path(room_code, player_id, "isReady"), ready)
        await self._store.set(
            player_path(room_code, player_id, "status"),
            PlayerStatus.READY if ready else PlayerStatus.ACTIVE,
        )

    async def touch_player(self, room_code: str, player_id: str) -> bool:
        """Refresh ``lastSeen``. Returns False if the player is no longer in the room."""
        if await self._store.get(player_path(room_code, player_id)) is None:
            return False
        await self._store.set(player_path(room_code, player_id, "lastSeen"), self.now())
        return True

    async def mark_player_exited(self, room_code: str, player_id: str) -> None:
        if await self._store.get(player_path(room_code, player_id)) is None:
            return
        await self._store.set(player_path(room_code, player_id, "exited"), True)

    async def mark_player_playing(self, room_code: str, player_id: str) -> None:
        """Self-write made when the local game starts."""
        record = await self._store.get(player_path(room_code, player_id))
        if not isinstance(record, dict) or record.get("status") in _TERMINAL_PLAYER_STATUSES:
            return
        await self._store.set(player_path(room_code, player_id, "status"), PlayerStatus.PLAYING)

    async def mark_player_disconnected(self, room_code: str, player_id: str) -> None:
        """Record a dropped connection. The room may now be complete without this player.

        A finished player keeps their status so their result still counts.
        """
        record = await self._store.get(player_path(room_code, player_id))
        if not isinstance(record, dict) or record.get("status") in _TERMINAL_PLAYER_STATUSES:
            return
        await self._store.set(player_path(room_code, player_id, "status"), PlayerStatus.DISCONNECTED)
        logger.info("player disconnected", room_code=room_code, player_id=player_id)
        await self.check_finalization(room_code)

    async def mark_host_disconnected(self, room_code: str) -> None:
        """Set the presence flag the reaper reads when the host's connection drops."""
        if not await self.room_exists(room_code):
            return
        await self._store.set(meta_path(room_code, "hostDisconnected"), True)

    # --- Status state machine ---

    async def set_room_status(self, room_code: str, status: RoomStatus, *, reason: str | None = None) -> None:
        """Move the room along an allowed edge. Re-writing the current status is a no-op."""
        room = await self.get_room(room_code)
        current = room.status
        if current == status:
            logger.debug("room status unchanged", room_code=room_code, status=status)
            return
        if not is_allowed_transition(current, status):
            logger.warning("illegal room transition", room_code=room_code, current=current, target=status)
            raise InvalidTransitionError(room_code, current, status)
        if status == RoomStatus.PLAYING and not room.game_data:
            logger.warning("play requested before game data", room_code=room_code)
            raise InvalidTransitionError(room_code, current, status, "game data has not been published")

        if status == RoomStatus.CLOSED:
            await self._store.set(meta_path(room_code, "closedReason"), reason or "Room closed")
        if status == RoomStatus.FINISHED and room.meta.finished_at is None:
            await self._store.set(meta_path(room_code, "finishedAt"), self.now())
        await self._store.set(meta_path(room_code, "status"), status)
        logger.info("room status changed", room_code=room_code, previous=current, status=status)

    async def publish_game_data(self, room_code: str, payload: dict[str, Any], *, host_id: str) -> dict[str, Any]:
        """Write the shared game data exactly once and return the stored payload.

        The host must start its own game from the returned value so that every
        participant runs from identical data.
        """
        room = await self.get_room(room_code)
        if room.host_id != host_id:
            raise AuthorizationError("Only the host can publish game data", room_code=room_code)
        if room.game_data:
            raise GameDataAlreadyPublishedError(room_code)
        if room.status not in _PUBLISHABLE_STATUSES:
            raise TransitionError(f"Cannot publish game data while room is {room.status}", room_code=room_code)
        if not payload:
            raise EmptyGameDataError("Game data must not be empty", room_code=room_code)

        data = {"generatedAt": self.now(), **payload}
        try:
            encoded = json.dumps(data).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Game data must be JSON-serializable: {e}", room_code=room_code) from e
        if len(encoded) > self._settings.game_data_max_bytes:
            raise GameDataTooLargeError(
                f"Game data too large: {len(encoded) / 1024:.2f} KB "
                f"(max {self._settings.game_data_max_bytes / 1024:.0f} KB)",
                room_code=room_code,
            )

        await self._store.set(game_data_path(room_code), data)
        logger.info("game data published", room_code=room_code, size_bytes=len(encoded))
        return data

    async def start_game(
        self,
        room_code: str,
        requester_id: str,
        build_payload: Callable[[], Awaitable[dict[str, Any]]],
    ) -> dict[str, Any]:
        """Host start: ``generating``, build and publish game data, then ``playing``.

        gameData is awaited before the status write; players key their start off
        both. A failed build rolls the room back to ``waiting``.
        """
        room = await self.get_room(room_code)
        verdict = can_start_game(room, requester_id, min_players=self._settings.min_players_to_start)
        if not verdict.ok:
            if verdict.code == RejectReason.ROOM_NOT_WAITING:
                raise InvalidTransitionError(room_code, room.status, RoomStatus.GENERATING, verdict.reason or "")
            _raise_rejected(verdict, room_code)

        await self.set_room_status(room_code, RoomStatus.GENERATING)
        try:
            payload = await build_payload()
            published = await self.publish_game_data(room_code, payload, host_id=requester_id)
        except Exception:
            logger.exception("game data generation failed, rolling back", room_code=room_code)
            try:
                await self.set_room_status(room_code, RoomStatus.WAITING)
            except RoomError:
                logger.warning("rollback to waiting failed", room_code=room_code)
            raise
        await self.set_room_status(room_code, RoomStatus.PLAYING)
        return published

    # --- Subscriptions ---

    async def on_game_data_update(self, room_code: str, callback: GameDataCallback) -> Unsubscribe:
        """Invoke callback once, when non-empty game data first appears.

        Returns the unsubscribe handle; callers must call it to avoid leaking
        the listener.
        """
        fired = False

        async def _on_change(value: Any) -> None:  # noqa: ANN401
            nonlocal fired
            if fired or not value:
                return
            fired = True
            await _invoke(callback, value)

        subscription = await self._store.subscribe(game_data_path(room_code), _on_change)
        return subscription.cancel

    async def wait_for_game_data(self, room_code: str, timeout: float | None = None) -> dict[str, Any]:
        """Suspend until the host publishes game data.

        Raises TimeoutError after ``timeout`` seconds (settings default; 0 waits
        forever). Cancelling the awaiting task detaches the subscription.
        """
        if timeout is None:
            timeout = self._settings.game_data_timeout_seconds
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()

        def _resolve(data: dict[str, Any]) -> None:
            if not future.done():
                future.set_result(data)

        unsubscribe = await self.on_game_data_update(room_code, _resolve)
        try:
            if timeout > 0:
                return await asyncio.wait_for(future, timeout)
            return await future
        finally:
            unsubscribe()

    async def on_status_change(self, room_code: str, callback: StatusCallback) -> Unsubscribe:
        """Invoke callback(status, meta) whenever the room status changes.

        A deleted room is reported as ``(None, None)``.
        """
        last_status: list[RoomStatus | None] = []

        async def _on_meta(raw: Any) -> None:  # noqa: ANN401
            meta = None
            if raw:
                try:
                    meta = RoomMeta.model_validate(raw)
                except pydantic.ValidationError:
                    logger.warning("ignoring malformed room meta", room_code=room_code)
                    return
            status = meta.status if meta is not None else None
            if last_status and last_status[0] == status:
                return
            last_status[:] = [status]
            await _invoke(callback, status, meta)

        subscription = await self._store.subscribe(meta_path(room_code), _on_meta)
        return subscription.cancel

    async def on_players_change(self, room_code: str, callback: PlayersCallback) -> Unsubscribe:
        async def _on_players(raw: Any) -> None:  # noqa: ANN401
            players: dict[str, PlayerRecord] = {}
            for pid, record in (raw or {}).items():
                try:
                    players[pid] = PlayerRecord.model_validate(record)
                except pydantic.ValidationError:
                    logger.debug("skipping partial player record", room_code=room_code, player_id=pid)
            await _invoke(callback, players)

        subscription = await self._store.subscribe(players_path(room_code), _on_players)
        return subscription.cancel

    # --- Scores and finalization ---

    async def sync_score(self, room_code: str, player_id: str, score: int) -> None:
        """Throttled write of a live score. Duplicate writes of one value are harmless."""
        await self._throttle.push(room_code, player_id, score)

    async def finalize_result(self, room_code: str, player_id: str, result: GameResult) -> bool:
        """Record a player's final result, then run the room finalization check.

        Returns True if the room is finished after this call.
        """
        room = await self.get_room(room_code)
        if not room.has_player(player_id):
            raise PlayerNotFoundError(room_code, player_id)
        await self._throttle.discard(room_code, player_id)

        # status last: other clients treat status=finished as "result is readable"
        await self._store.set(player_path(room_code, player_id, "result"), result.to_store())
        await self._store.set(player_path(room_code, player_id, "score"), result.score)
        await self._store.set(player_path(room_code, player_id, "finishedAt"), self.now())
        await self._store.set(player_path(room_code, player_id, "status"), PlayerStatus.FINISHED)
        logger.info("player finished", room_code=room_code, player_id=player_id, score=result.score)
        return await self.check_finalization(room_code)

    async def check_finalization(self, room_code: str) -> bool:
        """Move a playing room to finished once every counted player is finished.

        A pure predicate over the current snapshot plus an idempotent write, so
        any number of clients may run it redundantly.
        """
        try:
            room = await self.get_room(room_code)
        except RoomNotFoundError:
            return False
        if room.status == RoomStatus.FINISHED:
            return True
        if room.status != RoomStatus.PLAYING or not all_players_finished(room):
            return False
        await self.set_room_status(room_code, RoomStatus.FINISHED)
        return True

    async def watch_finalization(self, room_code: str) -> Unsubscribe:
        """Re-run the finalization check on every players change."""

        async def _on_players(_players: Any) -> None:  # noqa: ANN401
            await self.check_finalization(room_code)

        subscription = await self._store.subscribe(players_path(room_code), _on_players)
        return subscription.cancel

    async def close(self) -> None:
        """Cancel pending throttled score writes."""
        await self._throttle.close()

    # --- Internal helpers ---

    async def _claim_code(self) -> str:
        """Draw codes until one is free. The existence check precedes the claim."""
        for attempt in range(1, self._settings.code_retry_limit + 1):
            code = generate_room_code(self._settings.room_code_length, self._settings.room_code_alphabet, self._rng)
            if await self._store.get(room_path(code)) is None:
                return code
            logger.info("room code collision, redrawing", attempt=attempt)
        logger.error("room code space exhausted", attempts=self._settings.code_retry_limit)
        raise CodeExhaustionError(self._settings.code_retry_limit)

    async def _write_score(self, room_code: str, player_id: str, score: int) -> None:
        # A write to a deleted player would resurrect a partial room subtree.
        record = await self._store.get(player_path(room_code, player_id))
        if not isinstance(record, dict) or record.get("status") == PlayerStatus.FINISHED:
            return
        await self._store.set(player_path(room_code, player_id, "score"), score)
