"""In-process presence registry: which users have live connections."""

import logging
from uuid import UUID

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """
    Maps user ids to the ids of their live connections.

    A user is online iff their set is non-empty. Empty sets are removed in
    the same call that empties them, so there is never an entry that is
    empty but still counted as online. All methods are synchronous.
    """

    def __init__(self) -> None:
        self._entries: dict[str, set[UUID]] = {}

    def add(self, user_id: str, connection_id: UUID) -> bool:
        """
        Register a live connection for a user.

        Returns:
            True if the user just came online.
        """
        connections = self._entries.get(user_id)
        came_online = not connections
        if connections is None:
            connections = self._entries[user_id] = set()
        connections.add(connection_id)

        if came_online:
            logger.info(f"User {user_id} is online")
        return came_online

    def remove(self, user_id: str, connection_id: UUID) -> bool:
        """
        Remove a connection from a user's live set.

        Returns:
            True if this was the user's last connection and they went offline.
        """
        connections = self._entries.get(user_id)
        if not connections or connection_id not in connections:
            return False

        connections.discard(connection_id)
        if connections:
            return False

        del self._entries[user_id]
        logger.info(f"User {user_id} is offline")
        return True

    def is_online(self, user_id: str) -> bool:
        """Check whether the user has at least one live connection."""
        return bool(self._entries.get(user_id))

    def connections_for(self, user_id: str) -> set[UUID]:
        """Return a snapshot of the user's live connection ids."""
        return set(self._entries.get(user_id, ()))

    def online_users(self) -> list[str]:
        """Return the ids of all online users."""
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()
