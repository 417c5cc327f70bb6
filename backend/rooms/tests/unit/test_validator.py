"""Tests for the pure room validation predicates."""

import random

import pytest

from rooms.models import PlayerStatus, RejectReason, RoomConfig, RoomStatus
from rooms.tests.helpers import NOW, make_player, make_room
from rooms.validator import (
    all_players_finished,
    can_join_room,
    can_start_game,
    is_room_expired,
    validate_player_name,
    validate_room_code,
    validate_room_config,
)

DIGITS = "0123456789"


def random_room(rng: random.Random):
    """Random snapshot: any status, up to 12 players, random readiness, host sometimes absent."""
    max_players = rng.randint(2, 10)
    players = {}
    for i in range(rng.randint(0, 12)):
        players[f"p{i}"] = make_player(f"Player {i}", is_ready=rng.random() < 0.7, is_host=i == 0)
    host_id = "p0" if rng.random() < 0.8 else "outsider"
    return make_room(
        status=rng.choice(list(RoomStatus)),
        host_id=host_id,
        players=players,
        max_players=max_players,
    )


class TestValidateRoomCode:
    def test_accepts_and_trims(self):
        verdict = validate_room_code(" 123456 ", length=6, alphabet=DIGITS)

        assert verdict.ok
        assert verdict.value == "123456"

    @pytest.mark.parametrize(("code", "message"), [("", "required"), (None, "required"), ("12345", "6 characters")])
    def test_rejects_missing_or_wrong_length(self, code, message):
        verdict = validate_room_code(code, length=6, alphabet=DIGITS)

        assert not verdict
        assert verdict.code == RejectReason.INVALID_ROOM_CODE
        assert message in verdict.reason

    def test_rejects_characters_outside_alphabet(self):
        verdict = validate_room_code("12A456", length=6, alphabet=DIGITS)

        assert verdict.reason == "Room code contains invalid characters"


class TestValidatePlayerName:
    def test_accepts_and_trims(self):
        verdict = validate_player_name("  Bob_the-2nd ")

        assert verdict.ok
        assert verdict.value == "Bob_the-2nd"

    @pytest.mark.parametrize(
        ("name", "message"),
        [
            ("", "required"),
            ("   ", "required"),
            ("B", "at least 2"),
            ("x" * 51, "50 characters or less"),
            ("Bob!", "invalid characters"),
            ("<script>", "invalid characters"),
        ],
    )
    def test_rejects(self, name, message):
        verdict = validate_player_name(name)

        assert verdict.code == RejectReason.INVALID_PLAYER_NAME
        assert message in verdict.reason


class TestValidateRoomConfig:
    def test_missing_config_means_defaults(self):
        verdict = validate_room_config(None, max_players=10)

        assert verdict.ok
        assert verdict.value == RoomConfig()

    def test_keeps_per_game_extras(self):
        verdict = validate_room_config({"maxPlayers": 4, "difficulty": "hard"}, max_players=10)

        assert verdict.value.max_players == 4
        assert verdict.value.to_store() == {"maxPlayers": 4, "difficulty": "hard"}

    @pytest.mark.parametrize("max_players", [1, 11])
    def test_rejects_capacity_out_of_range(self, max_players):
        verdict = validate_room_config({"maxPlayers": max_players}, max_players=10)

        assert verdict.code == RejectReason.INVALID_CONFIG

    def test_rejects_malformed_config(self):
        verdict = validate_room_config({"maxPlayers": "lots"}, max_players=10)

        assert verdict.code == RejectReason.INVALID_CONFIG


class TestCanJoinRoom:
    def test_waiting_room_with_space(self):
        assert can_join_room(make_room())

    def test_full_room(self):
        room = make_room(max_players=2, players={"a": make_player(), "b": make_player()})

        verdict = can_join_room(room)

        assert verdict.code == RejectReason.ROOM_FULL
        assert verdict.reason == "Room is full (2/2)"

    def test_started_room(self):
        assert can_join_room(make_room(status=RoomStatus.PLAYING)).code == RejectReason.ROOM_NOT_WAITING

    def test_matches_definition_for_random_snapshots(self):
        rng = random.Random(20240601)
        for _ in range(500):
            room = random_room(rng)
            expected = room.status == RoomStatus.WAITING and room.player_count < room.meta.max_players
            assert bool(can_join_room(room)) is expected


class TestCanStartGame:
    def _ready_room(self, **overrides):
        players = {
            "host-1": make_player("Host", is_host=True),
            "guest-1": make_player("Bob", is_ready=True),
        }
        return make_room(players=players, **overrides)

    def test_host_with_ready_players(self):
        assert can_start_game(self._ready_room(), "host-1", min_players=2)

    def test_host_readiness_is_not_required(self):
        room = self._ready_room()

        assert not room.players["host-1"].is_ready
        assert can_start_game(room, "host-1", min_players=2)

    def test_non_host(self):
        assert can_start_game(self._ready_room(), "guest-1", min_players=2).code == RejectReason.NOT_HOST

    def test_not_enough_players(self):
        room = make_room()

        assert can_start_game(room, "host-1", min_players=2).code == RejectReason.NOT_ENOUGH_PLAYERS

    def test_unready_player(self):
        room = self._ready_room()
        room.players["guest-2"] = make_player("Carol")

        assert can_start_game(room, "host-1", min_players=2).code == RejectReason.PLAYERS_NOT_READY

    def test_already_started(self):
        room = self._ready_room(status=RoomStatus.GENERATING)

        assert can_start_game(room, "host-1", min_players=2).code == RejectReason.ROOM_NOT_WAITING

    def test_matches_definition_for_random_snapshots(self):
        rng = random.Random(7)
        for _ in range(500):
            room = random_room(rng)
            requester = rng.choice(["p0", "p1", "outsider"])
            min_players = rng.randint(1, 4)
            expected = (
                requester == room.host_id
                and room.status == RoomStatus.WAITING
                and room.player_count >= min_players
                and all(p.is_ready for pid, p in room.players.items() if pid != room.host_id)
            )
            assert bool(can_start_game(room, requester, min_players=min_players)) is expected


class TestIsRoomExpired:
    def test_expired_strictly_after_window(self):
        room = make_room(created_at=NOW)

        assert not is_room_expired(room, now=NOW + 7200, expiry_seconds=7200)
        assert is_room_expired(room, now=NOW + 7201, expiry_seconds=7200)


class TestAllPlayersFinished:
    def test_all_finished(self):
        room = make_room(
            status=RoomStatus.PLAYING,
            players={"a": make_player(status=PlayerStatus.FINISHED), "b": make_player(status=PlayerStatus.FINISHED)},
        )

        assert all_players_finished(room)

    def test_disconnected_players_are_not_waited_for(self):
        room = make_room(
            players={
                "a": make_player(status=PlayerStatus.FINISHED),
                "b": make_player(status=PlayerStatus.DISCONNECTED),
            },
        )

        assert all_players_finished(room)

    def test_one_still_playing(self):
        room = make_room(
            players={"a": make_player(status=PlayerStatus.FINISHED), "b": make_player(status=PlayerStatus.PLAYING)},
        )

        assert not all_players_finished(room)

    def test_nobody_left_is_not_finished(self):
        room = make_room(players={"a": make_player(status=PlayerStatus.DISCONNECTED)})

        assert not all_players_finished(room)
