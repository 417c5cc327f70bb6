from typing import Any

from adapters.hooks import GameSessionHooks
from rooms.models import GameResult


class FakeGameHooks(GameSessionHooks):
    """Expression-puzzle stand-in that records every hook call."""

    def __init__(self, game_type: str = "expression-puzzle", puzzles: int = 3) -> None:
        self._game_type = game_type
        self._puzzles = puzzles
        self.score = 0
        self.calls: list[str] = []
        self.started_with: dict[str, Any] | None = None
        self.result: GameResult | None = None
        self.left_reason: str | None = None
        self.fail_generation = False

    @property
    def game_type(self) -> str:
        return self._game_type

    async def generate_game_data(self) -> dict[str, Any]:
        self.calls.append("generate_game_data")
        if self.fail_generation:
            raise RuntimeError("puzzle generator crashed")
        return {"puzzles": [{"numbers": [i, i + 1, i + 2, i + 3], "target": 24} for i in range(self._puzzles)]}

    async def on_waiting(self) -> None:
        self.calls.append("on_waiting")

    async def on_start(self, game_data: dict[str, Any]) -> None:
        self.calls.append("on_start")
        self.started_with = game_data
        self.score = 0

    def current_score(self) -> int:
        return self.score

    async def on_answer_scored(self, delta: int) -> None:
        self.calls.append("on_answer_scored")
        self.score += delta

    async def on_game_end(self, result: GameResult) -> None:
        self.calls.append("on_game_end")
        self.result = result

    async def on_room_left(self, reason: str) -> None:
        self.calls.append("on_room_left")
        self.left_reason = reason


__all__ = ["FakeGameHooks"]
