"""Typed exceptions for room coordination failures.

The lifecycle manager raises these; the session adapter catches RoomError at
its boundary and converts it into a structured SessionResult, so validation
and authorization failures never escape to game code as uncaught faults.
BackendUnavailableError is the one failure swallowed everywhere: multiplayer
is an enhancement over a working single-player mode.
"""

from rooms.models import RejectReason


class RoomError(Exception):
    """Base exception for room protocol failures.

    Attributes:
        code: Machine-readable reason, shared with validator verdicts.
        reason: Human-readable explanation, safe to show inline to players.
        room_code: The room the failure concerns, when known.

    """

    default_code = RejectReason.INTERNAL

    def __init__(self, reason: str, *, room_code: str | None = None, code: RejectReason | None = None) -> None:
        self.reason = reason
        self.room_code = room_code
        self.code = code or self.default_code
        super().__init__(reason if room_code is None else f"room {room_code}: {reason}")


class NotFoundError(RoomError):
    default_code = RejectReason.ROOM_NOT_FOUND


class RoomNotFoundError(NotFoundError):
    """The room does not exist (never created, or already reaped)."""

    def __init__(self, room_code: str) -> None:
        super().__init__("Room not found", room_code=room_code)


class PlayerNotFoundError(NotFoundError):
    default_code = RejectReason.PLAYER_NOT_FOUND

    def __init__(self, room_code: str, player_id: str) -> None:
        self.player_id = player_id
        super().__init__(f"Player {player_id} is not in this room", room_code=room_code)


class ValidationError(RoomError):
    """Malformed user input: room code, player name, config or payload."""

    default_code = RejectReason.INVALID_INPUT


class InvalidRoomCodeError(ValidationError):
    default_code = RejectReason.INVALID_ROOM_CODE


class InvalidPlayerNameError(ValidationError):
    default_code = RejectReason.INVALID_PLAYER_NAME


class InvalidRoomConfigError(ValidationError):
    default_code = RejectReason.INVALID_CONFIG


class GameDataTooLargeError(ValidationError):
    default_code = RejectReason.GAME_DATA_TOO_LARGE


class EmptyGameDataError(ValidationError):
    default_code = RejectReason.GAME_DATA_EMPTY


class TransitionError(RoomError):
    """An operation does not fit the room's current state.

    Indicates a protocol or ordering bug rather than user error.
    """

    default_code = RejectReason.INVALID_TRANSITION


class InvalidTransitionError(TransitionError):
    """A room status edge outside the lifecycle state machine."""

    def __init__(self, room_code: str, current: str | None, target: str, detail: str = "") -> None:
        self.current = current
        self.target = target
        reason = f"Cannot move room from {current} to {target}"
        if detail:
            reason = f"{reason}: {detail}"
        super().__init__(reason, room_code=room_code)


class RoomNotJoinableError(TransitionError):
    default_code = RejectReason.ROOM_NOT_WAITING


class GameDataAlreadyPublishedError(TransitionError):
    """gameData is write-once; a second publish would split the room's view."""

    default_code = RejectReason.GAME_DATA_ALREADY_PUBLISHED

    def __init__(self, room_code: str) -> None:
        super().__init__("Game data has already been published", room_code=room_code)


class CapacityError(RoomError):
    default_code = RejectReason.ROOM_FULL


class RoomFullError(CapacityError):
    pass


class NotEnoughPlayersError(CapacityError):
    default_code = RejectReason.NOT_ENOUGH_PLAYERS


class AuthorizationError(RoomError):
    """A non-host attempted a host-only write."""

    default_code = RejectReason.NOT_HOST


class PlayersNotReadyError(RoomError):
    default_code = RejectReason.PLAYERS_NOT_READY


class AlreadyInRoomError(RoomError):
    default_code = RejectReason.ALREADY_IN_ROOM


class CodeExhaustionError(RoomError):
    """Every drawn room code collided with an existing room."""

    default_code = RejectReason.CODE_EXHAUSTED

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Could not generate a unique room code after {attempts} attempts")


class BackendUnavailableError(RoomError):
    """The shared store cannot be reached."""

    default_code = RejectReason.BACKEND_UNAVAILABLE


_ERRORS_BY_REASON: dict[RejectReason, type[RoomError]] = {
    RejectReason.INVALID_INPUT: ValidationError,
    RejectReason.INVALID_ROOM_CODE: InvalidRoomCodeError,
    RejectReason.INVALID_PLAYER_NAME: InvalidPlayerNameError,
    RejectReason.INVALID_CONFIG: InvalidRoomConfigError,
    RejectReason.ROOM_NOT_WAITING: RoomNotJoinableError,
    RejectReason.ROOM_FULL: RoomFullError,
    RejectReason.NOT_HOST: AuthorizationError,
    RejectReason.NOT_ENOUGH_PLAYERS: NotEnoughPlayersError,
    RejectReason.PLAYERS_NOT_READY: PlayersNotReadyError,
    RejectReason.ALREADY_IN_ROOM: AlreadyInRoomError,
}


def error_for_reason(code: RejectReason, reason: str, *, room_code: str | None = None) -> RoomError:
    """Build the exception matching a rejected validator verdict."""
    error_cls = _ERRORS_BY_REASON.get(code, RoomError)
    return error_cls(reason, room_code=room_code, code=code)
