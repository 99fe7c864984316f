"""
Signaling message names and JSON framing.

Every frame on the signaling WebSocket is a JSON object with a ``type`` key
naming the message and the payload fields next to it, e.g.
``{"type": "offer", "description": {...}, "to": "<connectionId>"}``.
"""
import json

from .errors import MalformedMessage, MalformedNegotiationPayload

# client -> server
JOIN_ROOM = "join-room"
# server -> client
ALL_USERS = "all-users"
USER_JOINED = "user-joined"
USER_DISCONNECTED = "user-disconnected"
ROOM_FULL = "room-full"
HOST_CHANGED = "host-changed"
# either direction, through the relay
OFFER = "offer"
ANSWER = "answer"
ICE_CANDIDATE = "ice-candidate"

# relayed kind -> name of the field carrying its opaque payload
RELAY_FIELDS = {
    OFFER: "description",
    ANSWER: "description",
    ICE_CANDIDATE: "candidate",
}


def encode(message: dict) -> str:
    return json.dumps(message)


def decode(raw) -> dict:
    """Parse one frame, raising MalformedMessage for anything unusable."""
    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedMessage(f"not JSON: {e}") from e
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        raise MalformedMessage("frame must be an object with a string 'type'")
    return message


def require_str(message: dict, field: str) -> str:
    if not isinstance(message, dict):
        raise MalformedMessage(f"expected an object carrying '{field}'")
    value = message.get(field)
    if not isinstance(value, str) or not value:
        raise MalformedMessage(f"'{message.get('type')}' needs a non-empty string '{field}'")
    return value


def relay_payload(message: dict):
    """Return the opaque payload of an offer/answer/candidate frame."""
    field = RELAY_FIELDS[message["type"]]
    if field not in message:
        raise MalformedNegotiationPayload(f"'{message['type']}' has no '{field}'")
    return message[field]


def description_to_dict(description) -> dict:
    return {"sdp": description.sdp, "type": description.type}
