import random

import pytest

from rooms.lifecycle import RoomLifecycleManager
from rooms.models import PlayerIdentity
from rooms.settings import RoomSettings
from rooms.tests.helpers import NOW
from rooms.tests.mocks import FakeClock, RecordingRoomStore


@pytest.fixture
def clock():
    return FakeClock(NOW)


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
    return RecordingRoomStore()


@pytest.fixture
async def lifecycle(store, settings, clock):
    manager = RoomLifecycleManager(store, settings, clock=clock, rng=random.Random(1234))
    yield manager
    await manager.close()


@pytest.fixture
def host():
    return PlayerIdentity(id="host-1", name="Alice")


@pytest.fixture
def guests():
    return [PlayerIdentity(id="guest-1", name="Bob"), PlayerIdentity(id="guest-2", name="Carol")]
