"""In-memory room registry: owns room lifecycle."""

import time
from typing import Callable, Optional
from shared.models import Room
from server.ids import new_room_id, new_passcode, normalize_passcode
from logging_config import get_logger

logger = get_logger(__name__)


class RoomRegistry:
    """Maps room id -> Room. One instance per server process."""

    def __init__(self, clock: Callable[[], float] = time.time, rng=None):
        self.rooms: dict[str, Room] = {}
        self._clock = clock
        self._rng = rng

    def __len__(self) -> int:
        return len(self.rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self.rooms

    def _generate_passcode(self) -> str:
        in_use = {r.passcode for r in self.rooms.values() if not r.started}
        while True:
            code = new_passcode(self._rng)
            if code not in in_use:
                return code

    def create_room(self, facilitator_ref: str) -> Room:
        room = Room(
            id=new_room_id(),
            passcode=self._generate_passcode(),
            facilitator_ref=facilitator_ref,
            created_at=self._clock(),
        )
        self.rooms[room.id] = room
        logger.info(f"Room {room.id} created with passcode {room.passcode}")
        return room

    def get_room(self, room_id: str) -> Optional[Room]:
        return self.rooms.get(room_id)

    def all_rooms(self) -> list[Room]:
        return list(self.rooms.values())

    def find_room_by_passcode(self, code: str) -> Optional[Room]:
        """Only rooms that have not started are joinable by passcode."""
        code = normalize_passcode(code)
        for room in self.rooms.values():
            if room.passcode == code and not room.started:
                return room
        return None

    def find_room_by_connection(self, connection_ref: str) -> Optional[Room]:
        matches = [r for r in self.rooms.values() if r.has_connection(connection_ref)]
        if len(matches) > 1:
            logger.error(f"Connection {connection_ref} found in {len(matches)} rooms: "
                         f"{[r.id for r in matches]}")
        return matches[0] if matches else None

    def delete_room(self, room_id: str):
        if self.rooms.pop(room_id, None) is not None:
            logger.info(f"Room {room_id} deleted")

    def pop_expired(self, max_age: float) -> list[Room]:
        """Remove and return rooms older than max_age seconds."""
        now = self._clock()
        expired = [room for room in self.rooms.values()
                   if now - room.created_at > max_age]
        for room in expired:
            del self.rooms[room.id]
        if expired:
            logger.info(f"Swept {len(expired)} expired room(s)")
        return expired

    def sweep_expired(self, max_age: float) -> int:
        return len(self.pop_expired(max_age))
