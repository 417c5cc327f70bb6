"""Strategy interface a single-player game implements to join multiplayer rooms."""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from rooms.models import GameResult


class GameOutcome(BaseModel):
    """What a game reports when its local run ends."""

    score: int = 0
    correct: int | None = None
    total: int | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def accuracy(self) -> float | None:
        if not self.total or self.correct is None:
            return None
        return round(self.correct / self.total * 100, 1)


class GameSessionHooks(ABC):
    """
    Game-side half of a multiplayer session.

    The adapter drives these; the game never touches the room store. The same
    engine runs solo when no room is attached, so every hook must also make
    sense in single-player mode.
    """

    @property
    @abstractmethod
    def game_type(self) -> str:
        """Stable identifier stored in room meta (e.g. ``expression-puzzle``)."""
        ...

    @abstractmethod
    async def generate_game_data(self) -> dict[str, Any]:
        """
        Build the shared problem set. Called on the host only.
        """
        ...

    @abstractmethod
    async def on_start(self, game_data: dict[str, Any]) -> None:
        """
        Start the local engine from the published game data.
        """
        ...

    @abstractmethod
    def current_score(self) -> int:
        """Score the engine currently shows."""
        ...

    @abstractmethod
    async def on_answer_scored(self, delta: int) -> None:
        """
        Apply a scoring event to the local engine.
        """
        ...

    @abstractmethod
    async def on_game_end(self, result: GameResult) -> None:
        """
        Run the engine's own end-of-game behaviour.
        """
        ...

    async def on_waiting(self) -> None:
        """Show a waiting state while the host prepares the game."""
        return

    async def on_room_left(self, reason: str) -> None:
        """React to the room closing underneath the session."""
        return
