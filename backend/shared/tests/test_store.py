"""Tests for the in-memory shared state store."""

import pytest

from shared.store import InMemoryRoomStore, join_path, split_path


@pytest.fixture
def store():
    return InMemoryRoomStore()


class TestPaths:
    def test_split_ignores_surrounding_slashes(self):
        assert split_path("/rooms/123456/meta/") == ["rooms", "123456", "meta"]

    def test_split_rejects_empty_path(self):
        with pytest.raises(ValueError, match="must not be empty"):
            split_path("//")

    def test_join(self):
        assert join_path("rooms", "123456", "players") == "rooms/123456/players"


class TestReadWrite:
    async def test_get_missing_path_returns_none(self, store):
        assert await store.get("rooms/000000") is None

    async def test_set_creates_intermediate_nodes(self, store):
        await store.set("rooms/123456/meta/status", "waiting")

        assert await store.get("rooms/123456") == {"meta": {"status": "waiting"}}

    async def test_get_returns_a_copy(self, store):
        await store.set("rooms/123456/meta", {"status": "waiting"})

        snapshot = await store.get("rooms/123456/meta")
        snapshot["status"] = "closed"

        assert await store.get("rooms/123456/meta/status") == "waiting"

    async def test_writing_none_deletes_and_prunes_empty_parents(self, store):
        await store.set("rooms/123456/players/p1/score", 5)
        await store.set("rooms/123456/players/p1/score", None)

        assert await store.get("rooms/123456") is None
        assert await store.get("rooms") is None

    async def test_writing_empty_dict_deletes(self, store):
        await store.set("rooms/123456/gameData", {"q": 1})
        await store.set("rooms/123456/gameData", {})

        assert await store.get("rooms/123456/gameData") is None

    async def test_delete_keeps_siblings(self, store):
        await store.set("rooms/111111/meta/status", "waiting")
        await store.set("rooms/222222/meta/status", "playing")

        await store.delete("rooms/111111")

        assert await store.get("rooms") == {"222222": {"meta": {"status": "playing"}}}

    async def test_delete_missing_path_is_noop(self, store):
        await store.delete("rooms/999999")

        assert await store.get("rooms") is None


class TestSubscriptions:
    async def test_subscribe_delivers_current_value(self, store):
        await store.set("rooms/123456/meta/status", "waiting")
        seen = []

        await store.subscribe("rooms/123456/meta/status", seen.append)

        assert seen == ["waiting"]

    async def test_subscribe_to_missing_path_delivers_nothing(self, store):
        seen = []

        await store.subscribe("rooms/123456/gameData", seen.append)

        assert seen == []

    async def test_descendant_write_notifies_ancestor_subscriber(self, store):
        seen = []
        await store.subscribe("rooms/123456/players", seen.append)

        await store.set("rooms/123456/players/p1/score", 3)

        assert seen == [{"p1": {"score": 3}}]

    async def test_ancestor_delete_notifies_descendant_subscriber_with_none(self, store):
        await store.set("rooms/123456/meta/status", "playing")
        seen = []
        await store.subscribe("rooms/123456/meta", seen.append)

        await store.delete("rooms/123456")

        assert seen == [{"status": "playing"}, None]

    async def test_unrelated_write_does_not_notify(self, store):
        seen = []
        await store.subscribe("rooms/123456/meta", seen.append)

        await store.set("rooms/123456/players/p1/score", 1)
        await store.set("rooms/654321/meta/status", "waiting")

        assert seen == []

    async def test_unchanged_value_is_not_redelivered(self, store):
        seen = []
        await store.subscribe("rooms/123456/meta/status", seen.append)

        await store.set("rooms/123456/meta/status", "waiting")
        await store.set("rooms/123456/meta/status", "waiting")

        assert seen == ["waiting"]

    async def test_async_callbacks_are_awaited_before_write_returns(self, store):
        seen = []

        async def on_change(value):
            seen.append(value)

        await store.subscribe("rooms/123456/gameData", on_change)
        await store.set("rooms/123456/gameData", {"seed": 7})

        assert seen == [{"seed": 7}]

    async def test_cancel_detaches_and_is_idempotent(self, store):
        seen = []
        subscription = await store.subscribe("rooms/123456/meta", seen.append)

        subscription.cancel()
        subscription.cancel()
        await store.set("rooms/123456/meta/status", "waiting")

        assert seen == []
        assert store.subscription_count == 0

    async def test_failing_subscriber_does_not_break_writer(self, store):
        seen = []

        def broken(_value):
            raise RuntimeError("boom")

        await store.subscribe("rooms/123456/meta", broken)
        await store.subscribe("rooms/123456/meta", seen.append)

        await store.set("rooms/123456/meta/status", "waiting")

        assert seen == [{"status": "waiting"}]
        assert await store.get("rooms/123456/meta/status") == "waiting"
