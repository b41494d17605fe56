"""WebSocket server: maps client messages onto the game core and fans out
notifications. Holds no game rules beyond input checks."""

import asyncio
import contextlib
import uuid
from typing import Optional
import websockets
from websockets.asyncio.server import serve, ServerConnection

from shared.constants import (
    MessageType, Phase, Role, MIN_PLAYERS, MAX_NAME_LENGTH, CLEANUP_INTERVAL,
    DEFAULT_HOST, DEFAULT_PORT,
)
from shared.models import Room
from shared.protocol import create_message, parse_message, error_message
from server.errors import GameError
from server.game_service import GameService
from server.registry import RoomRegistry
from server.ids import is_valid_passcode, normalize_passcode
from logging_config import get_logger

logger = get_logger(__name__)


def _text(payload: dict, key: str) -> str:
    """Stripped string field; anything that is not a string counts as empty."""
    value = payload.get(key)
    return value.strip() if isinstance(value, str) else ""


class GameServer:
    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT,
                 game_service: Optional[GameService] = None):
        self.host = host
        self.port = port
        self.game = game_service or GameService(RoomRegistry())
        self.connections: dict[str, ServerConnection] = {}  # connection_ref -> ws
        self.cleanup_task: Optional[asyncio.Task] = None

    async def handle_connection(self, ws: ServerConnection):
        connection_ref = uuid.uuid4().hex
        self.connections[connection_ref] = ws
        logger.info(f"New connection {connection_ref} from {ws.remote_address}")
        try:
            async for raw_message in ws:
                await self.handle_message(connection_ref, raw_message)
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            await self._handle_leave(connection_ref)
            self.connections.pop(connection_ref, None)
            logger.info(f"Connection {connection_ref} closed")

    async def handle_message(self, connection_ref: str, raw_message: str):
        try:
            msg_type, payload = parse_message(raw_message)
        except (ValueError, TypeError) as e:
            logger.warning(f"Parse error from {connection_ref}: {e}")
            await self.send_to(connection_ref, error_message("Invalid message format"))
            return

        logger.debug(f"Received {msg_type.value} from {connection_ref}")
        handler = self._handlers().get(msg_type)
        if handler is None:
            await self.send_to(connection_ref, error_message(
                f"Unsupported message type: {msg_type.value}"))
            return
        try:
            await handler(connection_ref, payload)
        except Exception:
            logger.exception(f"Error handling {msg_type.value} from {connection_ref}")
            await self.send_to(connection_ref, error_message("Server error processing action"))

    def _handlers(self) -> dict:
        return {
            MessageType.CREATE_ROOM: self._handle_create,
            MessageType.JOIN_ROOM: self._handle_join,
            MessageType.LEAVE_ROOM: self._handle_leave_request,
            MessageType.START_GAME: self._handle_start,
            MessageType.CHANGE_PHASE: self._handle_change_phase,
            MessageType.KILL_PLAYER: self._handle_kill,
            MessageType.REVIVE_PLAYER: self._handle_revive,
            MessageType.WEREWOLF_CHAT: self._handle_werewolf_chat,
            MessageType.GET_ROOM_INFO: self._handle_room_info,
        }

    # --- Sending ---

    async def send_to(self, connection_ref: str, message: str):
        ws = self.connections.get(connection_ref)
        if ws is None:
            return
        try:
            await ws.send(message)
        except websockets.exceptions.ConnectionClosed:
            logger.debug(f"Dropped message to closed connection {connection_ref}")

    async def broadcast(self, refs: list[str], message: str, exclude: str = None):
        for ref in refs:
            if ref != exclude:
                await self.send_to(ref, message)

    def _room_view(self, room: Room, connection_ref: str) -> dict:
        """Roles are only visible to the facilitator."""
        is_facilitator = room.facilitator_ref == connection_ref
        view = room.to_dict(include_roles=is_facilitator)
        view["is_facilitator"] = is_facilitator
        return view

    def _player_list(self, room: Room) -> list[dict]:
        return [p.to_dict() for p in room.players]

    # --- Lobby ---

    async def _handle_create(self, connection_ref: str, payload: dict):
        if self.game.find_room_by_connection(connection_ref):
            await self.send_to(connection_ref, error_message("Already in a room"))
            return
        room = self.game.create_room(connection_ref)
        await self.send_to(connection_ref, create_message(
            MessageType.ROOM_CREATED, {"room": self._room_view(room, connection_ref)}))

    async def _handle_join(self, connection_ref: str, payload: dict):
        passcode = payload.get("passcode")
        player_name = _text(payload, "player_name")

        if passcode is not None and not isinstance(passcode, str):
            await self.send_to(connection_ref, error_message("Invalid passcode format"))
            return
        if not passcode or not player_name:
            await self.send_to(connection_ref, error_message(
                "Passcode and player name are required"))
            return
        if len(player_name) > MAX_NAME_LENGTH:
            await self.send_to(connection_ref, error_message(
                f"Player name must be at most {MAX_NAME_LENGTH} characters"))
            return
        if not is_valid_passcode(passcode):
            await self.send_to(connection_ref, error_message("Invalid passcode format"))
            return
        if self.game.find_room_by_connection(connection_ref):
            await self.send_to(connection_ref, error_message("Already in a room"))
            return

        room = self.game.find_room_by_passcode(normalize_passcode(passcode))
        if not room:
            await self.send_to(connection_ref, error_message(
                "Invalid passcode or game already started"))
            return
        if room.has_player_named(player_name):
            await self.send_to(connection_ref, error_message(
                "Player name already taken in this room"))
            return

        player = self.game.add_player(room, player_name, connection_ref)
        await self.broadcast(room.connection_refs(), create_message(MessageType.PLAYER_JOINED, {
            "player": player.to_dict(),
            "players": self._player_list(room),
        }), exclude=connection_ref)
        await self.send_to(connection_ref, create_message(MessageType.ROOM_JOINED, {
            "room": self._room_view(room, connection_ref),
            "player": player.to_dict(),
        }))

    async def _handle_leave_request(self, connection_ref: str, payload: dict):
        await self._handle_leave(connection_ref)

    async def _handle_leave(self, connection_ref: str):
        room = self.game.find_room_by_connection(connection_ref)
        if not room:
            return
        # Addresses must be captured before the core may delete the room
        members = room.connection_refs()
        remaining, player = self.game.remove_player(connection_ref)
        if remaining:
            await self.broadcast(remaining.connection_refs(), create_message(
                MessageType.PLAYER_LEFT, {
                    "player": player.to_dict() if player else None,
                    "players": self._player_list(remaining),
                }))
            logger.info(f"Player {player.name if player else connection_ref} left room {room.id}")
        else:
            await self.broadcast(members, create_message(
                MessageType.ROOM_CLOSED, {"room_id": room.id}), exclude=connection_ref)
            logger.info(f"Room {room.id} closed after {connection_ref} left")

    async def _handle_room_info(self, connection_ref: str, payload: dict):
        room = self.game.find_room_by_connection(connection_ref)
        if not room:
            await self.send_to(connection_ref, error_message("Room not found"))
            return
        await self.send_to(connection_ref, create_message(
            MessageType.ROOM_INFO, {"room": self._room_view(room, connection_ref)}))

    # --- Game actions ---

    async def _facilitator_room(self, connection_ref: str, action: str) -> Optional[Room]:
        room = self.game.find_room_by_connection(connection_ref)
        if not room:
            await self.send_to(connection_ref, error_message("Room not found"))
            return None
        if not self.game.is_facilitator(connection_ref, room.id):
            await self.send_to(connection_ref, error_message(
                f"Only the facilitator can {action}"))
            return None
        return room

    async def _handle_start(self, connection_ref: str, payload: dict):
        room = await self._facilitator_room(connection_ref, "start the game")
        if not room:
            return
        if len(room.eligible_players()) < MIN_PLAYERS:
            await self.send_to(connection_ref, error_message(
                f"Need at least {MIN_PLAYERS} players to start the game"))
            return

        try:
            started = self.game.start_game(connection_ref, room.id)
        except GameError as e:
            await self.send_to(connection_ref, error_message(str(e)))
            return
        if not started:
            await self.send_to(connection_ref, error_message("Failed to start game"))
            return

        await self.broadcast(started.connection_refs(), create_message(MessageType.GAME_STARTED, {
            "message": "Game has started! Check your role.",
            "phase": started.phase.value,
        }))
        wolves = self.game.get_werewolves(started.id)
        for player in started.players:
            info = {"player_id": player.id, "role": player.role.value}
            if player.role == Role.WEREWOLF:
                info["werewolves"] = [w.to_dict() for w in wolves if w.id != player.id]
            await self.send_to(player.connection_ref, create_message(MessageType.ROLE_ASSIGNED, info))
        await self.send_to(connection_ref, create_message(
            MessageType.ROOM_INFO, {"room": self._room_view(started, connection_ref)}))

    async def _handle_change_phase(self, connection_ref: str, payload: dict):
        room = await self._facilitator_room(connection_ref, "change the phase")
        if not room:
            return
        updated = self.game.change_phase(connection_ref, room.id, payload.get("phase"))
        if not updated:
            await self.send_to(connection_ref, error_message("Cannot change phase now"))
            return
        message = ("Night falls. Werewolves, choose your target..."
                   if updated.phase == Phase.NIGHT else "Day breaks. Discuss and find the werewolves!")
        await self.broadcast(updated.connection_refs(), create_message(MessageType.PHASE_CHANGED, {
            "phase": updated.phase.value,
            "message": message,
        }))

    async def _set_dead(self, connection_ref: str, payload: dict, kill: bool):
        room = await self._facilitator_room(connection_ref, "kill or revive players")
        if not room:
            return
        player_id = payload.get("player_id")
        if kill:
            updated = self.game.kill_player(connection_ref, room.id, player_id)
        else:
            updated = self.game.revive_player(connection_ref, room.id, player_id)
        if not updated:
            await self.send_to(connection_ref, error_message("Action not permitted"))
            return
        player = updated.get_player(player_id)
        msg_type = MessageType.PLAYER_KILLED if kill else MessageType.PLAYER_REVIVED
        await self.broadcast(updated.connection_refs(), create_message(msg_type, {
            "player": player.to_dict(),
            "players": self._player_list(updated),
        }))

    async def _handle_kill(self, connection_ref: str, payload: dict):
        await self._set_dead(connection_ref, payload, kill=True)

    async def _handle_revive(self, connection_ref: str, payload: dict):
        await self._set_dead(connection_ref, payload, kill=False)

    async def _handle_werewolf_chat(self, connection_ref: str, payload: dict):
        text = _text(payload, "message")
        room = self.game.find_room_by_connection(connection_ref)
        sender = self.game.get_player_by_connection(connection_ref)
        if not room or not sender or sender.role != Role.WEREWOLF or sender.is_dead:
            await self.send_to(connection_ref, error_message("Only living werewolves can use this chat"))
            return
        if room.phase != Phase.NIGHT:
            await self.send_to(connection_ref, error_message("Werewolves can only talk at night"))
            return
        if not text:
            return
        recipients = [w.connection_ref for w in self.game.get_werewolves(room.id)]
        recipients.append(room.facilitator_ref)
        await self.broadcast(recipients, create_message(MessageType.WEREWOLF_MESSAGE, {
            "from": sender.to_dict(),
            "message": text,
        }))

    # --- Lifecycle ---

    async def cleanup_loop(self, interval: float = CLEANUP_INTERVAL):
        """Sweep expired rooms forever. One pass at a time."""
        while True:
            await asyncio.sleep(interval)
            expired = self.game.expire_old_rooms()
            for room in expired:
                await self.broadcast(room.connection_refs(), create_message(
                    MessageType.ROOM_CLOSED, {"room_id": room.id, "reason": "expired"}))
            logger.debug(f"Cleanup pass removed {len(expired)} room(s)")

    async def run(self):
        self.cleanup_task = cleanup = asyncio.create_task(self.cleanup_loop())
        try:
            async with serve(self.handle_connection, self.host, self.port):
                logger.info(f"Server running on ws://{self.host}:{self.port}")
                await asyncio.Future()  # run forever
        finally:
            cleanup.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cleanup


async def main(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT):
    server = GameServer(host, port)
    await server.run()
