"""Secret role assignment."""

import random
from shared.constants import Role, MIN_PLAYERS, LARGE_ROOM_PLAYERS
from shared.models import Player
from server.errors import InsufficientPlayers


def werewolf_count(player_count: int) -> int:
    # Only the 4-6 player range is play-tested; bigger rooms stay at two.
    return 2 if player_count >= LARGE_ROOM_PLAYERS else 1


def shuffled(items: list, rng=None) -> list:
    """Fisher-Yates over a copy: every permutation equally likely."""
    rng = rng or random
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randrange(i + 1)
        result[i], result[j] = result[j], result[i]
    return result


def assign_roles(players: list[Player], with_doctor: bool = True,
                 rng=None) -> list[Player]:
    """Give every player a role. Returns the players in dealing order.

    Werewolves take the first slots of a random permutation, then the doctor
    (if enabled), then villagers. Callers make sure this runs once per room.
    """
    if len(players) < MIN_PLAYERS:
        raise InsufficientPlayers(len(players))

    order = shuffled(players, rng)
    wolves = werewolf_count(len(order))
    doctors = 1 if with_doctor else 0
    for index, player in enumerate(order):
        if index < wolves:
            player.role = Role.WEREWOLF
        elif index < wolves + doctors:
            player.role = Role.DOCTOR
        else:
            player.role = Role.VILLAGER
    return order
