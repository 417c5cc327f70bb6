"""Shared state store abstraction for room coordination.

The store is an opaque hierarchical key/value tree addressed by
slash-separated paths (``rooms/123456/meta/status``). It supports point
writes, subtree deletion, one-shot reads and path-scoped change
subscriptions. There is no multi-path atomicity: callers that need one write
to be observed before another must await them in order.
"""

from __future__ import annotations

import copy
import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import structlog

logger = structlog.get_logger()

# Receives the new value at the subscribed path (None when the path is absent).
ChangeCallback = Callable[[Any], Awaitable[None] | None]


class Subscription:
    """Handle for a path subscription. Call cancel() to detach."""

    def __init__(self, path: str, callback: ChangeCallback, on_cancel: Callable[[Subscription], None]) -> None:
        self.path = path
        self.callback = callback
        self.active = True
        self._on_cancel = on_cancel
        self._last_value: Any = None

    def cancel(self) -> None:
        """Detach the subscription. Safe to call more than once."""
        if not self.active:
            return
        self.active = False
        self._on_cancel(self)

    async def deliver(self, value: Any) -> None:  # noqa: ANN401
        """Invoke the callback if the value changed since the last delivery."""
        if not self.active or value == self._last_value:
            return
        self._last_value = copy.deepcopy(value)
        try:
            result = self.callback(value)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("store subscriber failed", path=self.path)


class RoomStore(Protocol):
    """Protocol for the shared real-time store backing all rooms."""

    async def get(self, path: str) -> Any: ...  # noqa: ANN401

    async def set(self, path: str, value: Any) -> None: ...  # noqa: ANN401

    async def delete(self, path: str) -> None: ...

    async def subscribe(self, path: str, callback: ChangeCallback) -> Subscription: ...


def split_path(path: str) -> list[str]:
    """Split a store path into its segments, rejecting empty paths."""
    parts = [p for p in path.strip("/").split("/") if p]
    if not parts:
        raise ValueError(f"Store path must not be empty: {path!r}")
    return parts


def join_path(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts)


def _paths_related(a: list[str], b: list[str]) -> bool:
    """True if one path is an ancestor of (or equal to) the other."""
    shortest = min(len(a), len(b))
    return a[:shortest] == b[:shortest]


class InMemoryRoomStore:
    """Single-process RoomStore backed by a nested dict tree.

    Mirrors real-time database semantics: writing None deletes, empty
    parents are pruned, reads return copies, and every write notifies the
    subscribers of related paths (ancestors and descendants) with the new
    value of their own path. Notifications are delivered before the write
    returns, so an awaited write is observed by all local subscribers.
    """

    def __init__(self) -> None:
        self._root: dict[str, Any] = {}
        self._subscriptions: list[Subscription] = []

    async def get(self, path: str) -> Any:  # noqa: ANN401
        return copy.deepcopy(self._lookup(split_path(path)))

    async def set(self, path: str, value: Any) -> None:  # noqa: ANN401
        parts = split_path(path)
        if value is None or value == {}:
            self._remove(parts)
        else:
            node = self._root
            for part in parts[:-1]:
                child = node.get(part)
                if not isinstance(child, dict):
                    child = {}
                    node[part] = child
                node = child
            node[parts[-1]] = copy.deepcopy(value)
        await self._notify(parts)

    async def delete(self, path: str) -> None:
        parts = split_path(path)
        if self._lookup(parts) is None:
            return
        self._remove(parts)
        await self._notify(parts)

    async def subscribe(self, path: str, callback: ChangeCallback) -> Subscription:
        """Subscribe to a path and receive its current value immediately if present."""
        subscription = Subscription(path, callback, self._subscriptions.remove)
        self._subscriptions.append(subscription)
        current = self._lookup(split_path(path))
        if current is not None:
            await subscription.deliver(copy.deepcopy(current))
        return subscription

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def _lookup(self, parts: list[str]) -> Any:  # noqa: ANN401
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def _remove(self, parts: list[str]) -> None:
        trail: list[tuple[dict[str, Any], str]] = []
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return
            trail.append((node, part))
            node = node[part]
        parent, key = trail.pop()
        del parent[key]
        # prune parents left empty by the removal
        while trail and not parent:
            parent, key = trail.pop()
            del parent[key]

    async def _notify(self, parts: list[str]) -> None:
        for subscription in list(self._subscriptions):
            sub_parts = split_path(subscription.path)
            if _paths_related(parts, sub_parts):
                await subscription.deliver(copy.deepcopy(self._lookup(sub_parts)))
