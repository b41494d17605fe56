"""Room ids, player ids and join passcodes."""

import random
import uuid
from shared.constants import PASSCODE_ALPHABET, PASSCODE_LENGTH


def new_room_id() -> str:
    return uuid.uuid4().hex


def new_player_id() -> str:
    return uuid.uuid4().hex


def new_passcode(rng=None) -> str:
    """Short shareable code. A convenience, not a secret."""
    rng = rng or random
    return ''.join(rng.choices(PASSCODE_ALPHABET, k=PASSCODE_LENGTH))


def normalize_passcode(code: str) -> str:
    if not isinstance(code, str):
        return ""
    return code.strip().upper()


def is_valid_passcode(code: str) -> bool:
    code = normalize_passcode(code)
    return len(code) == PASSCODE_LENGTH and all(c in PASSCODE_ALPHABET for c in code)
