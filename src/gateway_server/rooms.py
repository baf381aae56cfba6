"""Room directory: room key to member connections."""

import logging
from uuid import UUID

from gateway_server.models import Connection

logger = logging.getLogger(__name__)


class RoomDirectory:
    """
    Tracks room membership.

    The directory and each Connection's ``rooms`` set are always updated
    together, in the same synchronous call. Rooms are dropped as soon as
    their last member leaves.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, dict[UUID, Connection]] = {}

    def join(self, connection: Connection, room_key: str) -> bool:
        """
        Add a connection to a room.

        Returns:
            True if membership changed, False if it was already a member.
        """
        members = self._rooms.setdefault(room_key, {})
        if connection.connection_id in members:
            return False

        members[connection.connection_id] = connection
        connection.rooms.add(room_key)
        logger.debug(f"Connection {connection.connection_id} joined room {room_key}")
        return True

    def leave(self, connection: Connection, room_key: str) -> bool:
        """
        Remove a connection from a room. Leaving a room you are not in is a no-op.

        Returns:
            True if membership changed.
        """
        connection.rooms.discard(room_key)
        members = self._rooms.get(room_key)
        if not members or connection.connection_id not in members:
            return False

        del members[connection.connection_id]
        if not members:
            self._rooms.pop(room_key, None)
        logger.debug(f"Connection {connection.connection_id} left room {room_key}")
        return True

    def leave_all(self, connection: Connection) -> int:
        """Remove a connection from every room. Returns number of rooms left."""
        rooms = list(connection.rooms)
        for room_key in rooms:
            self.leave(connection, room_key)
        return len(rooms)

    def members(self, room_key: str) -> list[Connection]:
        """Return a snapshot of the room's member connections."""
        return list(self._rooms.get(room_key, {}).values())

    def is_member(self, connection: Connection, room_key: str) -> bool:
        return connection.connection_id in self._rooms.get(room_key, {})

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    def clear(self) -> None:
        for members in self._rooms.values():
            for connection in members.values():
                connection.rooms.clear()
        self._rooms.clear()
