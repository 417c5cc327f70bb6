import pytest

from adapters.session import GameSessionAdapter
from adapters.tests.mocks import FakeGameHooks
from rooms.settings import RoomSettings
from rooms.tests.mocks import FakeClock
from shared.store import InMemoryRoomStore


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return RoomSettings(
        countdown_seconds=0,
        host_disconnect_grace_seconds=0,
        score_sync_throttle_seconds=0,
        game_data_timeout_seconds=1,
    )


@pytest.fixture
def store():
    return InMemoryRoomStore()


@pytest.fixture
async def make_session(store, settings, clock):
    """Factory for adapters sharing one store, closed at teardown."""
    sessions = []

    def _make(player_id: str, hooks: FakeGameHooks | None = None) -> GameSessionAdapter:
        session = GameSessionAdapter(hooks or FakeGameHooks(), store, settings, player_id=player_id, clock=clock)
        sessions.append(session)
        return session

    yield _make
    for session in sessions:
        await session.close()
