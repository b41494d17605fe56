"""Exceptions raised by the game core.

Normal "not allowed right now" outcomes are returned as None; only caller
contract violations are raised.
"""

from shared.constants import MIN_PLAYERS


class GameError(Exception):
    """Base class for errors raised by the game core."""


class InsufficientPlayers(GameError):
    def __init__(self, count: int, minimum: int = MIN_PLAYERS):
        self.count = count
        self.minimum = minimum
        super().__init__(f"Need at least {minimum} players to start the game")
