"""Wire protocol: event kinds and JSON frame helpers."""

import json
from datetime import datetime, timezone
from typing import Any, Optional

from gateway_common.errors import ValidationError

# Client -> server
AUTHENTICATE = "authenticate"
JOIN = "join"
LEAVE = "leave"
MESSAGE_SEND = "message:send"
PRESENCE_QUERY = "presence:query"
PING = "ping"

# Server -> client
CONNECTED = "connected"
AUTHENTICATED = "authenticated"
JOINED = "joined"
LEFT = "left"
MESSAGE_DELIVERED = "message:delivered"
MESSAGE_RECEIPT = "message:receipt"
NOTIFICATION = "notification"
PRESENCE = "presence"
HEARTBEAT = "heartbeat"
PONG = "pong"
ERROR = "error"
SHUTDOWN = "shutdown"

# Transport-level events surfaced to client subscribers
CONNECT = "connect"
DISCONNECT = "disconnect"
CONNECT_ERROR = "connect_error"

# Close codes
CLOSE_AUTH_FAILED = 4401
CLOSE_HANDSHAKE_TIMEOUT = 4408
CLOSE_POLICY_VIOLATION = 1008
CLOSE_GOING_AWAY = 1001


def build_frame(
    frame_type: str,
    data: Optional[dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> dict[str, Any]:
    """Build a frame with the standard envelope fields."""
    frame: dict[str, Any] = {
        "type": frame_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if request_id:
        frame["request_id"] = request_id

    if data is not None:
        frame["data"] = data

    return frame


def encode_frame(frame: dict[str, Any]) -> str:
    """Serialize a frame to its JSON text form."""
    return json.dumps(frame)


def decode_frame(raw: str | bytes) -> dict[str, Any]:
    """
    Parse a raw frame received over the wire.

    Args:
        raw: Text or binary frame payload.

    Returns:
        The decoded frame. ``data`` is always present as a dict.

    Raises:
        ValidationError: If the payload is not a JSON object with a ``type``.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")

    try:
        frame = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError("Frame must be valid JSON", code="invalid_json") from e

    if not isinstance(frame, dict) or not isinstance(frame.get("type"), str):
        raise ValidationError("Frame must be an object with a 'type'", code="invalid_frame")

    data = frame.get("data")
    if data is None:
        frame["data"] = {}
    elif not isinstance(data, dict):
        raise ValidationError("Frame 'data' must be an object", code="invalid_frame")

    return frame
