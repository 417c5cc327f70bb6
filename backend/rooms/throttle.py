"""Trailing-edge throttle for live score writes."""

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from rooms.exceptions import BackendUnavailableError

logger = structlog.get_logger()

# (room_code, player_id, score) -> Awaitable[None]
ScoreWriter = Callable[[str, str, int], Awaitable[None]]


@dataclass
class _ThrottleState:
    last_write: float
    pending: int | None = None
    flush_task: asyncio.Task[None] | None = None


class ScoreThrottle:
    """Limit score writes to one per interval per player.

    The first score in a quiet period is written immediately. Scores arriving
    inside the interval replace each other, and the latest one is written when
    the interval elapses, so the store always converges to the last value.
    """

    def __init__(self, interval: float, write: ScoreWriter, clock: Callable[[], float] = time.monotonic) -> None:
        self._interval = interval
        self._write = write
        self._clock = clock
        self._states: dict[tuple[str, str], _ThrottleState] = {}

    async def push(self, room_code: str, player_id: str, score: int) -> None:
        key = (room_code, player_id)
        now = self._clock()
        state = self._states.get(key)
        idle = state is None or (state.flush_task is None and now - state.last_write >= self._interval)
        if idle:
            self._states[key] = _ThrottleState(last_write=now)
            await self._write(room_code, player_id, score)
            return

        state.pending = score
        if state.flush_task is None:
            delay = max(0.0, self._interval - (now - state.last_write))
            state.flush_task = asyncio.create_task(self._flush_later(key, delay))

    def has_pending(self, room_code: str, player_id: str) -> bool:
        state = self._states.get((room_code, player_id))
        return state is not None and state.pending is not None

    async def discard(self, room_code: str, player_id: str) -> None:
        """Drop a player's pending score (superseded by a final result)."""
        state = self._states.pop((room_code, player_id), None)
        if state is not None:
            await self._cancel(state)

    async def close(self) -> None:
        """Cancel every pending flush without writing."""
        states = list(self._states.values())
        self._states.clear()
        for state in states:
            await self._cancel(state)

    async def _flush_later(self, key: tuple[str, str], delay: float) -> None:
        await asyncio.sleep(delay)
        state = self._states.get(key)
        if state is None:
            return
        score, state.pending = state.pending, None
        state.flush_task = None
        state.last_write = self._clock()
        if score is None:
            return
        try:
            await self._write(key[0], key[1], score)
        except BackendUnavailableError:
            logger.warning("score sync skipped, store unavailable", room_code=key[0], player_id=key[1])
        except Exception:
            logger.exception("score sync failed", room_code=key[0], player_id=key[1])

    @staticmethod
    async def _cancel(state: _ThrottleState) -> None:
        task = state.flush_task
        state.flush_task = None
        state.pending = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
