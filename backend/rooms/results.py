"""Final standings for a finished room."""

from pydantic import BaseModel

from rooms.models import PlayerRecord, PlayerStatus


class Standing(BaseModel):
    rank: int
    player_id: str
    name: str
    score: int
    elapsed_seconds: float | None = None
    accuracy: float | None = None


def rank_results(players: dict[str, PlayerRecord]) -> list[Standing]:
    """Rank finished players by score (high first), breaking ties on elapsed time (fast first).

    Equal score and time share a rank.
    """
    finished = [(pid, p) for pid, p in players.items() if p.status == PlayerStatus.FINISHED]

    def sort_key(item: tuple[str, PlayerRecord]) -> tuple[int, float]:
        _, player = item
        elapsed = player.result.elapsed_seconds if player.result else None
        return (-player.score, elapsed if elapsed is not None else float("inf"))

    finished.sort(key=sort_key)
    standings: list[Standing] = []
    previous_key: tuple[int, float] | None = None
    for position, item in enumerate(finished, start=1):
        pid, player = item
        key = sort_key(item)
        rank = standings[-1].rank if key == previous_key else position
        previous_key = key
        standings.append(
            Standing(
                rank=rank,
                player_id=pid,
                name=player.name,
                score=player.score,
                elapsed_seconds=player.result.elapsed_seconds if player.result else None,
                accuracy=player.result.accuracy if player.result else None,
            ),
        )
    return standings


def pending_players(players: dict[str, PlayerRecord]) -> list[str]:
    """Names of connected players still playing, for the "waiting for others" view."""
    return [
        p.name
        for p in players.values()
        if p.status not in (PlayerStatus.FINISHED, PlayerStatus.DISCONNECTED)
    ]
