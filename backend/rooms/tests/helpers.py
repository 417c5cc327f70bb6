"""Builders for room snapshots used across room tests."""

from rooms.models import PlayerRecord, PlayerStatus, RoomMeta, RoomSnapshot, RoomStatus

NOW = 1_700_000_000.0


def make_player(
    name: str = "Player",
    *,
    is_host: bool = False,
    is_ready: bool = False,
    status: PlayerStatus = PlayerStatus.ACTIVE,
    joined_at: float = NOW,
    last_seen: float = NOW,
    exited: bool | None = None,
    score: int = 0,
) -> PlayerRecord:
    return PlayerRecord(
        name=name,
        is_host=is_host,
        is_ready=is_ready,
        status=status,
        joined_at=joined_at,
        last_seen=last_seen,
        exited=exited,
        score=score,
    )


def make_room(
    *,
    code: str = "123456",
    status: RoomStatus = RoomStatus.WAITING,
    host_id: str = "host-1",
    players: dict[str, PlayerRecord] | None = None,
    max_players: int = 10,
    created_at: float = NOW,
    finished_at: float | None = None,
    host_disconnected: bool | None = None,
    game_data: dict | None = None,
) -> RoomSnapshot:
    """Build a room snapshot; defaults to a waiting room holding only its host."""
    if players is None:
        players = {host_id: make_player("Host", is_host=True)}
    return RoomSnapshot(
        code=code,
        meta=RoomMeta(
            status=status,
            host_id=host_id,
            game_type="expression-puzzle",
            max_players=max_players,
            created_at=created_at,
            finished_at=finished_at,
            host_disconnected=host_disconnected,
        ),
        players=players,
        game_data=game_data,
    )


async def put_room(store, room: RoomSnapshot) -> None:
    """Write a snapshot into the store as a whole room document."""
    doc = {"meta": room.meta.to_store()}
    if room.players:
        doc["players"] = {pid: p.to_store() for pid, p in room.players.items()}
    if room.game_data:
        doc["gameData"] = room.game_data
    await store.set(f"rooms/{room.code}", doc)
