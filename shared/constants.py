"""Game constants shared between client and server."""

from enum import Enum

# Game rules
MIN_PLAYERS = 4
LARGE_ROOM_PLAYERS = 5      # werewolf count steps up from here
DOCTOR_ENABLED = True

# Rooms
PASSCODE_LENGTH = 6
PASSCODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
MAX_NAME_LENGTH = 20
ROOM_MAX_AGE = 24 * 60 * 60     # seconds
CLEANUP_INTERVAL = 60 * 60      # seconds

# Server
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 8765


class Role(str, Enum):
    VILLAGER = "villager"
    WEREWOLF = "werewolf"
    DOCTOR = "doctor"


class Phase(str, Enum):
    DAY = "day"
    NIGHT = "night"


class MessageType(str, Enum):
    # Client -> Server
    CREATE_ROOM = "create_room"
    JOIN_ROOM = "join_room"
    LEAVE_ROOM = "leave_room"
    START_GAME = "start_game"
    CHANGE_PHASE = "change_phase"
    KILL_PLAYER = "kill_player"
    REVIVE_PLAYER = "revive_player"
    WEREWOLF_CHAT = "werewolf_chat"
    GET_ROOM_INFO = "get_room_info"
    # Server -> Client
    ROOM_CREATED = "room_created"
    ROOM_JOINED = "room_joined"
    PLAYER_JOINED = "player_joined"
    PLAYER_LEFT = "player_left"
    ROOM_CLOSED = "room_closed"
    GAME_STARTED = "game_started"
    ROLE_ASSIGNED = "role_assigned"
    PHASE_CHANGED = "phase_changed"
    PLAYER_KILLED = "player_killed"
    PLAYER_REVIVED = "player_revived"
    WEREWOLF_MESSAGE = "werewolf_message"
    ROOM_INFO = "room_info"
    ERROR = "error"
