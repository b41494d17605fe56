"""Tests for the websocket message handlers, driven without a network."""

import sys
import os
import asyncio
import json
import random
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from shared.constants import MessageType, Role
from shared.protocol import create_message
from server.game_service import GameService
from server.registry import RoomRegistry
from server.server import GameServer


class FakeWebSocket:
    """Collects everything the server sends to one connection."""

    remote_address = ("local", 0)

    def __init__(self):
        self.sent: list[dict] = []

    async def send(self, message: str):
        self.sent.append(json.loads(message))

    def of_type(self, msg_type: MessageType) -> list[dict]:
        return [m["payload"] for m in self.sent if m["type"] == msg_type.value]

    def last(self) -> dict:
        return self.sent[-1]


class ScriptedWebSocket(FakeWebSocket):
    """Delivers queued client messages, then disconnects."""

    def __init__(self, incoming: list[str]):
        super().__init__()
        self._incoming = list(incoming)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._incoming:
            raise StopAsyncIteration
        return self._incoming.pop(0)


class Harness:
    def __init__(self):
        self.server = GameServer(game_service=GameService(RoomRegistry(), rng=random.Random(0)))
        self.sockets: dict[str, FakeWebSocket] = {}

    def connect(self, ref: str) -> FakeWebSocket:
        ws = FakeWebSocket()
        self.sockets[ref] = ws
        self.server.connections[ref] = ws
        return ws

    def send(self, ref: str, msg_type: MessageType, payload: dict = None):
        asyncio.run(self.server.handle_message(ref, create_message(msg_type, payload)))

    def send_raw(self, ref: str, raw: str):
        asyncio.run(self.server.handle_message(ref, raw))

    def create_room(self, ref="fac") -> dict:
        self.connect(ref)
        self.send(ref, MessageType.CREATE_ROOM)
        return self.sockets[ref].of_type(MessageType.ROOM_CREATED)[-1]["room"]

    def join(self, ref: str, passcode: str, name: str) -> FakeWebSocket:
        ws = self.connect(ref)
        self.send(ref, MessageType.JOIN_ROOM, {"passcode": passcode, "player_name": name})
        return ws

    def started_room(self, num_players=4) -> dict:
        room = self.create_room()
        for i in range(num_players):
            self.join(f"p{i}", room["passcode"], f"Player{i}")
        self.send("fac", MessageType.START_GAME)
        return room


def error_of(ws: FakeWebSocket) -> str:
    last = ws.last()
    assert last["type"] == MessageType.ERROR.value
    return last["payload"]["message"]


class TestLobby:
    def test_create_room(self):
        h = Harness()
        room = h.create_room()
        assert len(room["passcode"]) == 6
        assert room["is_facilitator"] is True
        assert room["players"] == []

    def test_join_and_notify(self):
        h = Harness()
        room = h.create_room()
        h.join("p1", room["passcode"].lower(), "  Alice ")
        joined = h.sockets["p1"].of_type(MessageType.ROOM_JOINED)[-1]
        assert joined["player"]["name"] == "Alice"
        assert joined["room"]["is_facilitator"] is False
        notice = h.sockets["fac"].of_type(MessageType.PLAYER_JOINED)[-1]
        assert notice["player"]["name"] == "Alice"

    def test_duplicate_name_rejected(self):
        h = Harness()
        room = h.create_room()
        h.join("p1", room["passcode"], "Alice")
        ws = h.join("p2", room["passcode"], "ALICE")
        assert error_of(ws) == "Player name already taken in this room"

    def test_bad_inputs_rejected(self):
        h = Harness()
        room = h.create_room()
        assert "required" in error_of(h.join("p1", room["passcode"], "   "))
        assert "at most 20" in error_of(h.join("p2", room["passcode"], "x" * 21))
        assert error_of(h.join("p3", "AB1", "Bob")) == "Invalid passcode format"
        assert "Invalid passcode" in error_of(h.join("p4", "ZZZZZZ", "Bob"))

    def test_non_string_inputs_rejected(self):
        h = Harness()
        room = h.create_room()
        ws = h.connect("p1")
        h.send("p1", MessageType.JOIN_ROOM, {"passcode": 123456, "player_name": "Alice"})
        assert error_of(ws) == "Invalid passcode format"
        h.send("p1", MessageType.JOIN_ROOM, {"passcode": room["passcode"], "player_name": 42})
        assert error_of(ws) == "Passcode and player name are required"
        h.send("p1", MessageType.JOIN_ROOM, {"player_name": 42})
        assert error_of(ws) == "Passcode and player name are required"
        assert h.server.game.get_room(room["id"]).players == []

    def test_connection_in_one_room_only(self):
        h = Harness()
        room = h.create_room()
        h.send("fac", MessageType.JOIN_ROOM, {"passcode": room["passcode"], "player_name": "Me"})
        assert error_of(h.sockets["fac"]) == "Already in a room"

    def test_cannot_join_started_room(self):
        h = Harness()
        room = h.started_room()
        ws = h.join("late", room["passcode"], "Late")
        assert "already started" in error_of(ws)

    def test_player_leaves(self):
        h = Harness()
        room = h.create_room()
        h.join("p1", room["passcode"], "Alice")
        h.join("p2", room["passcode"], "Bob")
        h.send("p1", MessageType.LEAVE_ROOM)
        left = h.sockets["fac"].of_type(MessageType.PLAYER_LEFT)[-1]
        assert left["player"]["name"] == "Alice"
        assert [p["name"] for p in left["players"]] == ["Bob"]

    def test_facilitator_leaving_closes_room(self):
        h = Harness()
        room = h.create_room()
        h.join("p1", room["passcode"], "Alice")
        h.send("fac", MessageType.LEAVE_ROOM)
        assert h.sockets["p1"].of_type(MessageType.ROOM_CLOSED) == [{"room_id": room["id"]}]
        assert h.server.game.get_room(room["id"]) is None

    def test_disconnect_closes_facilitators_room(self):
        h = Harness()
        ws = ScriptedWebSocket([create_message(MessageType.CREATE_ROOM)])
        asyncio.run(h.server.handle_connection(ws))
        room = ws.of_type(MessageType.ROOM_CREATED)[-1]["room"]
        assert h.server.game.get_room(room["id"]) is None
        assert h.server.connections == {}

    def test_room_info_hides_roles_from_players(self):
        h = Harness()
        h.started_room()
        h.send("p0", MessageType.GET_ROOM_INFO)
        info = h.sockets["p0"].of_type(MessageType.ROOM_INFO)[-1]["room"]
        assert all("role" not in p for p in info["players"])
        h.send("fac", MessageType.GET_ROOM_INFO)
        info = h.sockets["fac"].of_type(MessageType.ROOM_INFO)[-1]["room"]
        assert all(p["role"] for p in info["players"])


class TestGameFlow:
    def test_start_requires_four(self):
        h = Harness()
        room = h.create_room()
        for i in range(3):
            h.join(f"p{i}", room["passcode"], f"Player{i}")
        h.send("fac", MessageType.START_GAME)
        assert error_of(h.sockets["fac"]) == "Need at least 4 players to start the game"

    def test_only_facilitator_starts(self):
        h = Harness()
        room = h.create_room()
        for i in range(4):
            h.join(f"p{i}", room["passcode"], f"Player{i}")
        h.send("p0", MessageType.START_GAME)
        assert error_of(h.sockets["p0"]) == "Only the facilitator can start the game"

    def test_start_sends_private_roles(self):
        h = Harness()
        h.started_room(5)
        roles = {}
        for i in range(5):
            ws = h.sockets[f"p{i}"]
            assert ws.of_type(MessageType.GAME_STARTED)
            assigned = ws.of_type(MessageType.ROLE_ASSIGNED)
            assert len(assigned) == 1
            roles[f"p{i}"] = assigned[0]
        wolves = [r for r in roles.values() if r["role"] == Role.WEREWOLF.value]
        assert len(wolves) == 2
        for wolf in wolves:
            assert len(wolf["werewolves"]) == 1
        assert all("werewolves" not in r for r in roles.values() if r["role"] != "werewolf")
        assert not h.sockets["fac"].of_type(MessageType.ROLE_ASSIGNED)

    def test_second_start_rejected(self):
        h = Harness()
        h.started_room()
        h.send("fac", MessageType.START_GAME)
        assert error_of(h.sockets["fac"]) == "Failed to start game"

    def test_change_phase_broadcast(self):
        h = Harness()
        h.started_room()
        h.send("fac", MessageType.CHANGE_PHASE, {"phase": "night"})
        assert h.sockets["p1"].of_type(MessageType.PHASE_CHANGED)[-1]["phase"] == "night"

    def test_change_phase_before_start_rejected(self):
        h = Harness()
        h.create_room()
        h.send("fac", MessageType.CHANGE_PHASE, {"phase": "night"})
        assert error_of(h.sockets["fac"]) == "Cannot change phase now"

    def test_kill_and_revive(self):
        h = Harness()
        room = h.started_room()
        target = h.server.game.get_room(room["id"]).players[0]
        h.send("fac", MessageType.KILL_PLAYER, {"player_id": target.id})
        assert h.sockets["p2"].of_type(MessageType.PLAYER_KILLED)[-1]["player"]["is_dead"] is True
        h.send("fac", MessageType.REVIVE_PLAYER, {"player_id": target.id})
        assert h.sockets["p2"].of_type(MessageType.PLAYER_REVIVED)[-1]["player"]["is_dead"] is False

    def test_kill_unknown_player(self):
        h = Harness()
        h.started_room()
        h.send("fac", MessageType.KILL_PLAYER, {"player_id": "ghost"})
        assert error_of(h.sockets["fac"]) == "Action not permitted"

    def test_werewolf_chat_at_night(self):
        h = Harness()
        room = h.started_room(5)
        game_room = h.server.game.get_room(room["id"])
        wolves = [p for p in game_room.players if p.role == Role.WEREWOLF]
        villager = next(p for p in game_room.players if p.role == Role.VILLAGER)
        sender = wolves[0].connection_ref

        h.send(sender, MessageType.WEREWOLF_CHAT, {"message": "too early"})
        assert error_of(h.sockets[sender]) == "Werewolves can only talk at night"

        h.send("fac", MessageType.CHANGE_PHASE, {"phase": "night"})
        h.send(sender, MessageType.WEREWOLF_CHAT, {"message": "the baker"})
        for wolf in wolves:
            assert h.sockets[wolf.connection_ref].of_type(MessageType.WEREWOLF_MESSAGE)[-1]["message"] == "the baker"
        assert h.sockets["fac"].of_type(MessageType.WEREWOLF_MESSAGE)
        assert not h.sockets[villager.connection_ref].of_type(MessageType.WEREWOLF_MESSAGE)

        h.send(villager.connection_ref, MessageType.WEREWOLF_CHAT, {"message": "hi"})
        assert error_of(h.sockets[villager.connection_ref]) == "Only living werewolves can use this chat"

        # Non-text chat is dropped quietly
        before = len(h.sockets["fac"].sent)
        h.send(sender, MessageType.WEREWOLF_CHAT, {"message": 7})
        assert len(h.sockets["fac"].sent) == before
        assert h.sockets[sender].last()["type"] != MessageType.ERROR.value

        h.send("fac", MessageType.KILL_PLAYER, {"player_id": wolves[0].id})
        h.send(sender, MessageType.WEREWOLF_CHAT, {"message": "from the grave"})
        assert error_of(h.sockets[sender]) == "Only living werewolves can use this chat"
        assert h.sockets["fac"].of_type(MessageType.WEREWOLF_MESSAGE)[-1]["message"] == "the baker"


class TestCleanupLoop:
    def test_loop_sweeps_expired_rooms(self):
        h = Harness()
        room = h.create_room()
        h.server.game.get_room(room["id"]).created_at -= 2 * 24 * 60 * 60

        async def run_briefly():
            task = asyncio.create_task(h.server.cleanup_loop(interval=0))
            await asyncio.sleep(0.01)
            task.cancel()

        asyncio.run(run_briefly())
        assert h.server.game.get_room(room["id"]) is None
        assert h.sockets["fac"].of_type(MessageType.ROOM_CLOSED) == [
            {"room_id": room["id"], "reason": "expired"}]

    def test_fresh_rooms_get_no_notice(self):
        h = Harness()
        room = h.create_room()

        async def run_briefly():
            task = asyncio.create_task(h.server.cleanup_loop(interval=0))
            await asyncio.sleep(0.01)
            task.cancel()

        asyncio.run(run_briefly())
        assert h.server.game.get_room(room["id"]) is not None
        assert not h.sockets["fac"].of_type(MessageType.ROOM_CLOSED)

    def test_run_collects_cleanup_task_on_shutdown(self):
        server = GameServer("127.0.0.1", 0, game_service=GameService(RoomRegistry()))

        async def start_and_stop():
            task = asyncio.create_task(server.run())
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(start_and_stop())
        assert server.cleanup_task is not None
        assert server.cleanup_task.cancelled()


class TestErrors:
    def test_invalid_json(self):
        h = Harness()
        ws = h.connect("c1")
        h.send_raw("c1", "not json")
        assert error_of(ws) == "Invalid message format"

    def test_server_message_type_from_client(self):
        h = Harness()
        ws = h.connect("c1")
        h.send("c1", MessageType.ROOM_INFO)
        assert error_of(ws) == "Unsupported message type: room_info"

    def test_handler_crash_reported(self):
        h = Harness()
        ws = h.connect("c1")

        def boom(ref):
            raise RuntimeError("boom")

        h.server.game.find_room_by_connection = boom
        h.send("c1", MessageType.CREATE_ROOM)
        assert error_of(ws) == "Server error processing action"

    def test_room_info_without_room(self):
        h = Harness()
        ws = h.connect("c1")
        h.send("c1", MessageType.GET_ROOM_INFO)
        assert error_of(ws) == "Room not found"
