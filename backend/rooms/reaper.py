"""Room reaper: garbage-collects abandoned rooms from the shared store.

Any client may run a reaper. Every deletion predicate is a pure function of
the current snapshot and deletion is a full subtree removal, so concurrent or
repeated sweeps converge to the same store state.
"""

import asyncio
import contextlib
import time
from collections.abc import Callable
from enum import StrEnum
from typing import Any

import pydantic
import structlog

from rooms.exceptions import BackendUnavailableError, RoomError
from rooms.lifecycle import ROOMS_ROOT, RoomLifecycleManager, player_path, room_path
from rooms.models import RoomSnapshot, RoomStatus
from rooms.settings import RoomSettings
from rooms.validator import is_room_expired
from shared.store import RoomStore

logger = structlog.get_logger()

HOST_DISCONNECTED_REASON = "Host disconnected"


class DeletionReason(StrEnum):
    EXPIRED = "expired"
    EMPTY = "empty"
    ALL_EXITED = "all_exited"
    FINISHED_INACTIVE = "finished_inactive"
    HOST_DISCONNECTED = "host_disconnected"
    MALFORMED = "malformed"


def deletion_reason(room: RoomSnapshot, *, now: float, settings: RoomSettings) -> DeletionReason | None:
    """Return why the room should be deleted, or None to keep it."""
    if is_room_expired(room, now=now, expiry_seconds=settings.room_expiry_seconds):
        return DeletionReason.EXPIRED
    if room.is_empty:
        if room.meta.host_disconnected:
            return DeletionReason.HOST_DISCONNECTED
        return DeletionReason.EMPTY
    if all(p.exited for p in room.players.values()):
        return DeletionReason.ALL_EXITED
    if (
        room.status == RoomStatus.FINISHED
        and room.meta.finished_at is not None
        and now - room.meta.finished_at > settings.finished_inactivity_seconds
    ):
        return DeletionReason.FINISHED_INACTIVE
    return None


def _parse_room(code: str, raw: Any) -> RoomSnapshot | None:  # noqa: ANN401
    """Snapshot of a raw room subtree, or None for a ghost left by a write racing a deletion."""
    if not isinstance(raw, dict):
        return None
    try:
        return RoomSnapshot.from_store(code, raw)
    except pydantic.ValidationError:
        return None


def _last_seen(record: Any) -> float | None:  # noqa: ANN401
    if not isinstance(record, dict):
        return None
    try:
        return float(record["lastSeen"])
    except (KeyError, TypeError, ValueError):
        return None


class RoomReaper:
    """Periodic sweep plus the immediate teardown paths (host disconnect, idle players)."""

    def __init__(
        self,
        store: RoomStore,
        lifecycle: RoomLifecycleManager,
        settings: RoomSettings | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._lifecycle = lifecycle
        self._settings = settings or lifecycle.settings
        self._clock = clock
        self._sweeping = False
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the recurring sweep task."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info("room reaper started", interval=self._settings.reaper_interval_seconds)

    async def stop(self) -> None:
        """Stop scheduling sweeps. A sweep already in progress runs to completion."""
        if self._task is None:
            return
        self._stop_event.set()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("room reaper stopped")

    async def sweep(self) -> list[str]:
        """Delete every room matching a deletion predicate; return the deleted codes.

        Skipped (returns an empty list) while another sweep is running.
        """
        if self._sweeping:
            logger.debug("sweep already running, skipping")
            return []
        self._sweeping = True
        try:
            return await self._sweep_once()
        except BackendUnavailableError:
            logger.warning("sweep skipped, store unavailable")
            return []
        finally:
            self._sweeping = False

    async def handle_host_disconnect(self, room_code: str) -> None:
        """Close the room so every player learns the host left, then delete it after the grace period."""
        await self._lifecycle.mark_host_disconnected(room_code)
        try:
            await self._lifecycle.set_room_status(room_code, RoomStatus.CLOSED, reason=HOST_DISCONNECTED_REASON)
        except RoomError as e:
            logger.warning("could not announce room closure", room_code=room_code, reason=e.reason)
        if self._settings.host_disconnect_grace_seconds > 0:
            await asyncio.sleep(self._settings.host_disconnect_grace_seconds)
        await self._store.delete(room_path(room_code))
        logger.info("room deleted after host disconnect", room_code=room_code)

    async def remove_inactive_players(self, room_code: str, threshold: float | None = None) -> list[str]:
        """Remove players whose lastSeen is older than ``threshold`` seconds.

        Deletes the whole room when nobody is left. Returns the removed ids.
        """
        if threshold is None:
            threshold = self._settings.inactive_player_seconds
        raw = await self._store.get(room_path(room_code))
        if not isinstance(raw, dict):
            return []
        now = self._clock()
        players: dict[str, Any] = raw.get("players") or {}
        removed = [
            pid
            for pid, record in players.items()
            if (last_seen := _last_seen(record)) is None or now - last_seen > threshold
        ]
        for pid in removed:
            await self._store.delete(player_path(room_code, pid))
            logger.info("removed inactive player", room_code=room_code, player_id=pid)
        if removed and len(removed) == len(players):
            await self._store.delete(room_path(room_code))
            logger.info("room deleted, no active players left", room_code=room_code)
        return removed

    async def stats(self) -> dict[str, int]:
        """Count rooms by cleanup-relevant category."""
        rooms = await self._store.get(ROOMS_ROOT) or {}
        now = self._clock()
        counts = {"total": 0, "expired": 0, "empty": 0, "finished": 0, "playing": 0, "malformed": 0}
        for code, raw in rooms.items():
            counts["total"] += 1
            room = _parse_room(code, raw)
            if room is None:
                counts["malformed"] += 1
                continue
            if is_room_expired(room, now=now, expiry_seconds=self._settings.room_expiry_seconds):
                counts["expired"] += 1
            if room.is_empty:
                counts["empty"] += 1
            if room.status == RoomStatus.FINISHED:
                counts["finished"] += 1
            elif room.status == RoomStatus.PLAYING:
                counts["playing"] += 1
        return counts

    async def _sweep_once(self) -> list[str]:
        rooms = await self._store.get(ROOMS_ROOT) or {}
        now = self._clock()
        deleted: list[str] = []
        for code, raw in rooms.items():
            room = _parse_room(code, raw)
            reason = DeletionReason.MALFORMED if room is None else deletion_reason(room, now=now, settings=self._settings)
            if reason is None:
                continue
            await self._store.delete(room_path(code))
            deleted.append(code)
            logger.info("room reaped", room_code=code, reason=reason)
        if deleted:
            logger.info("sweep complete", deleted=len(deleted), scanned=len(rooms))
        return deleted

    async def _sweep_loop(self) -> None:
        while not self._stop_event.is_set():
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._settings.reaper_interval_seconds)
            if self._stop_event.is_set():
                return
            try:
                await self.sweep()
            except Exception:
                logger.exception("room sweep failed")
