"""Pure predicates deciding whether a room operation is legal.

Every function here is side-effect free and depends only on its arguments,
so redundant enforcement from several clients over the same snapshot always
reaches the same verdict.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from rooms.models import PlayerStatus, RejectReason, RoomConfig, RoomSnapshot, RoomStatus

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 50
MIN_ROOM_PLAYERS = 2

_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\s_-]+$")


@dataclass(frozen=True)
class Verdict:
    """Outcome of a validation check.

    ``value`` carries the normalised input (trimmed code or name, parsed
    config) when the check passes.
    """

    ok: bool
    code: RejectReason | None = None
    reason: str | None = None
    value: Any = None

    @classmethod
    def accept(cls, value: Any = None) -> Verdict:  # noqa: ANN401
        return cls(ok=True, value=value)

    @classmethod
    def reject(cls, code: RejectReason, reason: str) -> Verdict:
        return cls(ok=False, code=code, reason=reason)

    def __bool__(self) -> bool:
        return self.ok


def validate_room_code(code: object, *, length: int, alphabet: str) -> Verdict:
    if not isinstance(code, str) or not code.strip():
        return Verdict.reject(RejectReason.INVALID_ROOM_CODE, "Room code is required")
    trimmed = code.strip()
    if len(trimmed) != length:
        return Verdict.reject(RejectReason.INVALID_ROOM_CODE, f"Room code must be {length} characters")
    if any(ch not in alphabet for ch in trimmed):
        return Verdict.reject(RejectReason.INVALID_ROOM_CODE, "Room code contains invalid characters")
    return Verdict.accept(trimmed)


def validate_player_name(name: object) -> Verdict:
    if not isinstance(name, str) or not name.strip():
        return Verdict.reject(RejectReason.INVALID_PLAYER_NAME, "Player name is required")
    trimmed = name.strip()
    if len(trimmed) < MIN_NAME_LENGTH:
        return Verdict.reject(
            RejectReason.INVALID_PLAYER_NAME,
            f"Name must be at least {MIN_NAME_LENGTH} characters",
        )
    if len(trimmed) > MAX_NAME_LENGTH:
        return Verdict.reject(
            RejectReason.INVALID_PLAYER_NAME,
            f"Name must be {MAX_NAME_LENGTH} characters or less",
        )
    if not _NAME_PATTERN.match(trimmed):
        return Verdict.reject(RejectReason.INVALID_PLAYER_NAME, "Name contains invalid characters")
    return Verdict.accept(trimmed)


def validate_room_config(config: RoomConfig | dict[str, Any] | None, *, max_players: int) -> Verdict:
    """Validate host-chosen options. A missing config is valid and means defaults."""
    if config is None:
        return Verdict.accept(RoomConfig())
    if isinstance(config, dict):
        try:
            config = RoomConfig.model_validate(config)
        except ValueError:
            return Verdict.reject(RejectReason.INVALID_CONFIG, "Room config is malformed")
    if config.max_players is not None and not (MIN_ROOM_PLAYERS <= config.max_players <= max_players):
        return Verdict.reject(
            RejectReason.INVALID_CONFIG,
            f"Max players must be between {MIN_ROOM_PLAYERS} and {max_players}",
        )
    return Verdict.accept(config)


def can_join_room(room: RoomSnapshot) -> Verdict:
    if room.status != RoomStatus.WAITING:
        return Verdict.reject(RejectReason.ROOM_NOT_WAITING, "Game has already started or finished")
    if room.is_full:
        return Verdict.reject(
            RejectReason.ROOM_FULL,
            f"Room is full ({room.player_count}/{room.meta.max_players})",
        )
    return Verdict.accept()


def can_start_game(room: RoomSnapshot, requester_id: str, *, min_players: int) -> Verdict:
    if room.host_id != requester_id:
        return Verdict.reject(RejectReason.NOT_HOST, "Only the host can start the game")
    if room.status != RoomStatus.WAITING:
        return Verdict.reject(RejectReason.ROOM_NOT_WAITING, "Game already started or finished")
    if room.player_count < min_players:
        return Verdict.reject(
            RejectReason.NOT_ENOUGH_PLAYERS,
            f"Need at least {min_players} players to start",
        )
    if not all(p.is_ready for pid, p in room.players.items() if pid != room.host_id):
        return Verdict.reject(RejectReason.PLAYERS_NOT_READY, "Not all players are ready")
    return Verdict.accept()


def is_room_expired(room: RoomSnapshot, *, now: float, expiry_seconds: float) -> bool:
    return now - room.meta.created_at > expiry_seconds


def all_players_finished(room: RoomSnapshot) -> bool:
    """True once every player still counted by the room has reported a result.

    Disconnected players are excluded. A room with nobody left to count is
    never considered finished; the reaper deals with it instead.
    """
    active = room.active_players()
    return bool(active) and all(p.status == PlayerStatus.FINISHED for p in active.values())
