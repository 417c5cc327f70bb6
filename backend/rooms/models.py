"""Pydantic models for room state as stored in the shared store.

Store documents use camelCase keys; models expose snake_case attributes and
round-trip through ``to_store()`` / ``model_validate()``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RoomStatus(StrEnum):
    WAITING = "waiting"
    GENERATING = "generating"
    READY = "ready"
    PLAYING = "playing"
    FINISHED = "finished"
    CLOSED = "closed"


class PlayerStatus(StrEnum):
    ACTIVE = "active"
    READY = "ready"
    PLAYING = "playing"
    FINISHED = "finished"
    DISCONNECTED = "disconnected"


class RejectReason(StrEnum):
    """Why an operation was refused. Shared by verdicts, errors and session results."""

    INVALID_INPUT = "invalid_input"
    INVALID_ROOM_CODE = "invalid_room_code"
    INVALID_PLAYER_NAME = "invalid_player_name"
    INVALID_CONFIG = "invalid_config"
    ROOM_NOT_FOUND = "room_not_found"
    PLAYER_NOT_FOUND = "player_not_found"
    ROOM_NOT_WAITING = "room_not_waiting"
    ROOM_FULL = "room_full"
    NOT_HOST = "not_host"
    NOT_ENOUGH_PLAYERS = "not_enough_players"
    PLAYERS_NOT_READY = "players_not_ready"
    ALREADY_IN_ROOM = "already_in_room"
    INVALID_TRANSITION = "invalid_transition"
    GAME_DATA_ALREADY_PUBLISHED = "game_data_already_published"
    GAME_DATA_EMPTY = "game_data_empty"
    GAME_DATA_TOO_LARGE = "game_data_too_large"
    GAME_DATA_TIMEOUT = "game_data_timeout"
    CODE_EXHAUSTED = "code_exhausted"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    NOT_IN_ROOM = "not_in_room"
    INTERNAL = "internal"


# Room status edges. Writing the current status again is a no-op, not an edge.
ALLOWED_TRANSITIONS: dict[RoomStatus, frozenset[RoomStatus]] = {
    RoomStatus.WAITING: frozenset({RoomStatus.GENERATING, RoomStatus.CLOSED}),
    RoomStatus.GENERATING: frozenset(
        {RoomStatus.READY, RoomStatus.PLAYING, RoomStatus.WAITING, RoomStatus.CLOSED},
    ),
    RoomStatus.READY: frozenset({RoomStatus.PLAYING, RoomStatus.CLOSED}),
    RoomStatus.PLAYING: frozenset({RoomStatus.FINISHED, RoomStatus.CLOSED}),
    RoomStatus.FINISHED: frozenset({RoomStatus.CLOSED}),
    RoomStatus.CLOSED: frozenset(),
}


def is_allowed_transition(current: RoomStatus, target: RoomStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class StoreModel(BaseModel):
    """Base for documents persisted in the store under camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_store(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RoomConfig(StoreModel):
    """Host-chosen room options. Extra keys are per-game settings."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    max_players: int | None = None


class GameResult(StoreModel):
    """Summary a player reports on local completion."""

    score: int = 0
    elapsed_seconds: float | None = None
    accuracy: float | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class RoomMeta(StoreModel):
    status: RoomStatus
    host_id: str
    game_type: str
    max_players: int
    created_at: float
    finished_at: float | None = None
    closed_reason: str | None = None
    host_disconnected: bool | None = None
    config: dict[str, Any] | None = None


class PlayerRecord(StoreModel):
    name: str
    is_host: bool = False
    is_ready: bool = False
    status: PlayerStatus = PlayerStatus.ACTIVE
    score: int = 0
    joined_at: float
    last_seen: float
    exited: bool | None = None
    finished_at: float | None = None
    result: GameResult | None = None


class PlayerIdentity(BaseModel):
    """A client joining or creating a room: opaque id plus display name."""

    id: str = Field(min_length=1)
    name: str


class RoomSnapshot(BaseModel):
    """One-shot view of a whole room subtree."""

    code: str
    meta: RoomMeta
    players: dict[str, PlayerRecord] = Field(default_factory=dict)
    game_data: dict[str, Any] | None = None

    @classmethod
    def from_store(cls, code: str, raw: dict[str, Any]) -> RoomSnapshot:
        """Parse a raw ``rooms/{code}`` document. Raises pydantic.ValidationError if malformed."""
        return cls.model_validate(
            {
                "code": code,
                "meta": raw.get("meta"),
                "players": raw.get("players") or {},
                "game_data": raw.get("gameData") or None,
            },
        )

    @property
    def status(self) -> RoomStatus:
        return self.meta.status

    @property
    def host_id(self) -> str:
        return self.meta.host_id

    @property
    def player_count(self) -> int:
        return len(self.players)

    @property
    def is_empty(self) -> bool:
        return self.player_count == 0

    @property
    def is_full(self) -> bool:
        return self.player_count >= self.meta.max_players

    def has_player(self, player_id: str) -> bool:
        return player_id in self.players

    def active_players(self) -> dict[str, PlayerRecord]:
        """Players that still count toward finalization (not disconnected)."""
        return {pid: p for pid, p in self.players.items() if p.status != PlayerStatus.DISCONNECTED}
