from rooms.tests.mocks.clock import FakeClock
from rooms.tests.mocks.stores import RecordingRoomStore, UnavailableRoomStore

__all__ = ["FakeClock", "RecordingRoomStore", "UnavailableRoomStore"]
