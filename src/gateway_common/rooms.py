"""Room key derivation shared by client and server."""

from typing import Optional

ROOM_KEY_SEPARATOR = "-"


def direct_room_key(user_a: str, user_b: str) -> str:
    """
    Derive the room key for a direct conversation between two users.

    The key is the lexicographically sorted pair of user ids joined with
    ``ROOM_KEY_SEPARATOR``, so both participants compute the same key
    without talking to each other.

    Args:
        user_a: One participant's user id.
        user_b: The other participant's user id.

    Returns:
        The room key.

    Raises:
        ValueError: If either id is empty.
    """
    if not user_a or not user_b:
        raise ValueError("Both participant ids are required to derive a room key")
    return ROOM_KEY_SEPARATOR.join(sorted((str(user_a), str(user_b))))


def resolve_room_key(
    sender_id: str,
    recipient_id: Optional[str] = None,
    room_key: Optional[str] = None,
) -> str:
    """
    Resolve the target room of a send.

    A recipient id maps to the direct room key; an explicit room key is
    returned unchanged.

    Raises:
        ValueError: If neither or both targets are given.
    """
    if bool(recipient_id) == bool(room_key):
        raise ValueError("Exactly one of recipient_id or room_key is required")
    if recipient_id:
        return direct_room_key(sender_id, recipient_id)
    return room_key
