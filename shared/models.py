"""Data classes for room and player state.

The server mutates these in place; clients only ever see the dictionaries
produced by ``to_dict``, which leave roles out unless asked for.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional
from shared.constants import Role, Phase


@dataclass
class Player:
    id: str
    name: str
    connection_ref: str
    role: Optional[Role] = None
    is_dead: bool = False

    def to_dict(self, include_role: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "is_dead": self.is_dead,
        }
        if include_role:
            data["role"] = self.role.value if self.role else None
        return data


@dataclass
class Room:
    id: str
    passcode: str
    facilitator_ref: str
    created_at: float
    players: list[Player] = field(default_factory=list)
    started: bool = False
    phase: Phase = Phase.DAY

    def get_player(self, player_id: str) -> Optional[Player]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def get_player_by_connection(self, connection_ref: str) -> Optional[Player]:
        for player in self.players:
            if player.connection_ref == connection_ref:
                return player
        return None

    def has_connection(self, connection_ref: str) -> bool:
        return (connection_ref == self.facilitator_ref
                or self.get_player_by_connection(connection_ref) is not None)

    def has_player_named(self, name: str) -> bool:
        """Case-insensitive name check, ignoring surrounding whitespace."""
        wanted = name.strip().lower()
        return any(p.name.lower() == wanted for p in self.players)

    def eligible_players(self) -> list[Player]:
        """Players who take part in role assignment (never the facilitator)."""
        return [p for p in self.players if p.connection_ref != self.facilitator_ref]

    def connection_refs(self) -> list[str]:
        refs = [self.facilitator_ref]
        refs.extend(p.connection_ref for p in self.players
                    if p.connection_ref != self.facilitator_ref)
        return refs

    def to_dict(self, include_roles: bool = False) -> dict:
        return {
            "id": self.id,
            "passcode": self.passcode,
            "facilitator_ref": self.facilitator_ref,
            "players": [p.to_dict(include_role=include_roles) for p in self.players],
            "started": self.started,
            "phase": self.phase.value,
        }
