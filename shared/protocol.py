"""Network protocol message definitions and serialization."""

import json
from shared.constants import MessageType


def create_message(msg_type: MessageType, payload: dict = None) -> str:
    """Create a JSON message string."""
    return json.dumps({
        "type": msg_type.value,
        "payload": payload or {},
    })


def parse_message(data: str) -> tuple[MessageType, dict]:
    """Parse a JSON message string into (type, payload).

    Raises ValueError (json.JSONDecodeError included) for anything that is not
    an object carrying a known message type.
    """
    msg = json.loads(data)
    if not isinstance(msg, dict):
        raise ValueError("Message must be a JSON object")
    payload = msg.get("payload") or {}
    if not isinstance(payload, dict):
        raise ValueError("Payload must be a JSON object")
    return MessageType(msg.get("type")), payload


def error_message(message: str) -> str:
    return create_message(MessageType.ERROR, {"message": message})
