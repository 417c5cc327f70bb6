"""Client-side presence heartbeat.

Each client periodically refreshes its own ``players/{id}/lastSeen``. The
reaper's inactive-player removal reads those timestamps, so a closed tab
stops refreshing and eventually drops out of the room.
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable

import structlog

from rooms.exceptions import BackendUnavailableError

logger = structlog.get_logger()

# (room_code, player_id) -> Awaitable[bool]; False means the player is gone.
TouchCallback = Callable[[str, str], Awaitable[bool]]


class PresenceHeartbeat:
    """Run one lastSeen refresh loop per (room, player) the client occupies."""

    def __init__(self, touch: TouchCallback, interval: float) -> None:
        self._touch = touch
        self._interval = interval
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def start(self, room_code: str, player_id: str) -> None:
        """Start (or restart) the heartbeat for a player in a room."""
        key = f"{room_code}:{player_id}"
        existing = self._tasks.get(key)
        if existing is not None and not existing.done():
            existing.cancel()
        self._tasks[key] = asyncio.create_task(self._beat_loop(room_code, player_id))

    async def stop(self, room_code: str, player_id: str) -> None:
        task = self._tasks.pop(f"{room_code}:{player_id}", None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def is_running(self, room_code: str, player_id: str) -> bool:
        task = self._tasks.get(f"{room_code}:{player_id}")
        return task is not None and not task.done()

    async def _beat_loop(self, room_code: str, player_id: str) -> None:
        while True:
            try:
                still_present = await self._touch(room_code, player_id)
            except BackendUnavailableError:
                logger.warning("heartbeat skipped, store unavailable", room_code=room_code, player_id=player_id)
                still_present = True
            if not still_present:
                logger.info("heartbeat stopped, player left room", room_code=room_code, player_id=player_id)
                self._tasks.pop(f"{room_code}:{player_id}", None)
                return
            await asyncio.sleep(self._interval)
