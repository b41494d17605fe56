"""Room and game state machine.

Every operation is synchronous and runs to completion. Actions that are not
allowed (unknown room, wrong actor, wrong state) return None and change
nothing; only InsufficientPlayers is raised.
"""

from typing import Optional, Union
from shared.constants import Phase, Role, DOCTOR_ENABLED, ROOM_MAX_AGE
from shared.models import Player, Room
from server.registry import RoomRegistry
from server.ids import new_player_id
from server.roles import assign_roles
from logging_config import get_logger

logger = get_logger(__name__)


class GameService:
    """Authoritative room/game state. Drives the room lifecycle."""

    def __init__(self, registry: RoomRegistry, with_doctor: bool = DOCTOR_ENABLED,
                 rng=None):
        self.registry = registry
        self.with_doctor = with_doctor
        self.rng = rng

    # --- Lookups ---

    def create_room(self, facilitator_ref: str) -> Room:
        return self.registry.create_room(facilitator_ref)

    def get_room(self, room_id: str) -> Optional[Room]:
        return self.registry.get_room(room_id)

    def find_room_by_passcode(self, code: str) -> Optional[Room]:
        return self.registry.find_room_by_passcode(code)

    def find_room_by_connection(self, connection_ref: str) -> Optional[Room]:
        return self.registry.find_room_by_connection(connection_ref)

    def get_player_by_connection(self, connection_ref: str) -> Optional[Player]:
        room = self.registry.find_room_by_connection(connection_ref)
        if not room:
            return None
        return room.get_player_by_connection(connection_ref)

    def is_facilitator(self, connection_ref: str, room_id: str) -> bool:
        room = self.registry.get_room(room_id)
        return room is not None and room.facilitator_ref == connection_ref

    def get_werewolves(self, room_id: str) -> list[Player]:
        room = self.registry.get_room(room_id)
        if not room or not room.started:
            return []
        return [p for p in room.players if p.role == Role.WEREWOLF]

    # --- Membership ---

    def add_player(self, room: Room, name: str, connection_ref: str) -> Player:
        """Append a player to the room.

        Preconditions (checked by the caller): the room has not started, the
        name is free in this room, and the connection is not in any room.
        """
        player = Player(id=new_player_id(), name=name, connection_ref=connection_ref)
        room.players.append(player)
        logger.info(f"Player {name} ({player.id}) joined room {room.id}")
        return player

    def remove_player(self, connection_ref: str) -> tuple[Optional[Room], Optional[Player]]:
        """Remove whoever owns this connection.

        Returns (room, player). room is None when the room was closed by the
        departure (facilitator left, or nobody is left), and both are None
        when the connection was not in any room.
        """
        room = self.registry.find_room_by_connection(connection_ref)
        if not room:
            return None, None

        player = room.get_player_by_connection(connection_ref)
        if player:
            room.players.remove(player)

        if connection_ref == room.facilitator_ref or not room.players:
            self.registry.delete_room(room.id)
            return None, player
        return room, player

    # --- Game flow ---

    def _facilitated_room(self, acting_ref: str, room_id: str) -> Optional[Room]:
        room = self.registry.get_room(room_id)
        if not room:
            logger.debug(f"Rejected: room {room_id} not found")
            return None
        if room.facilitator_ref != acting_ref:
            logger.debug(f"Rejected: {acting_ref} is not facilitator of room {room_id}")
            return None
        return room

    def start_game(self, acting_ref: str, room_id: str) -> Optional[Room]:
        room = self._facilitated_room(acting_ref, room_id)
        if not room or room.started:
            return None

        # Raises InsufficientPlayers before anything is touched
        assign_roles(room.eligible_players(), with_doctor=self.with_doctor, rng=self.rng)
        room.started = True
        room.phase = Phase.DAY
        logger.info(f"Game started in room {room.id} with {len(room.players)} players")
        return room

    def change_phase(self, acting_ref: str, room_id: str,
                     new_phase: Union[Phase, str]) -> Optional[Room]:
        room = self._facilitated_room(acting_ref, room_id)
        if not room or not room.started:
            return None
        try:
            phase = Phase(new_phase)
        except ValueError:
            logger.debug(f"Rejected: unknown phase {new_phase!r}")
            return None
        room.phase = phase
        return room

    def _set_dead(self, acting_ref: str, room_id: str, player_id: str,
                  dead: bool) -> Optional[Room]:
        room = self._facilitated_room(acting_ref, room_id)
        if not room or not room.started:
            return None
        player = room.get_player(player_id)
        if not player:
            logger.debug(f"Rejected: player {player_id} not in room {room_id}")
            return None
        player.is_dead = dead
        return room

    def kill_player(self, acting_ref: str, room_id: str, player_id: str) -> Optional[Room]:
        return self._set_dead(acting_ref, room_id, player_id, True)

    def revive_player(self, acting_ref: str, room_id: str, player_id: str) -> Optional[Room]:
        return self._set_dead(acting_ref, room_id, player_id, False)

    # --- Expiry ---

    def cleanup_old_rooms(self) -> int:
        return self.registry.sweep_expired(ROOM_MAX_AGE)

    def expire_old_rooms(self) -> list[Room]:
        """Like cleanup_old_rooms, but hands back the rooms so members can be told."""
        return self.registry.pop_expired(ROOM_MAX_AGE)
