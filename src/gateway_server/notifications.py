"""Best-effort notification fan-out to a user's live connections."""

import asyncio
import logging
from typing import Callable, Optional
from uuid import UUID

from gateway_common import protocol
from gateway_common.models import Notification
from gateway_server.delivery import broadcast
from gateway_server.models import Connection
from gateway_server.presence import PresenceRegistry
from gateway_server.stores import NotificationStore

logger = logging.getLogger(__name__)

ConnectionLookup = Callable[[UUID], Optional[Connection]]


class NotificationFanout:
    """
    Pushes notifications to every live connection of the target user.

    Delivery is at most once and only while the user is online. A user with
    no live connections is a delivery miss: it is logged and counted, not
    raised. Durable copies are the notification store's job and are written
    independently of fan-out.
    """

    def __init__(
        self,
        presence: PresenceRegistry,
        lookup: ConnectionLookup,
        store: Optional[NotificationStore] = None,
    ):
        """
        Args:
            presence: Registry used to find the user's live connections.
            lookup: Resolves a connection id to its live Connection.
            store: Optional store for durable copies.
        """
        self.presence = presence
        self._lookup = lookup
        self.store = store
        self.delivery_misses = 0
        self._record_tasks: set[asyncio.Task] = set()

    def live_connections(self, user_id: str) -> list[Connection]:
        """Return the user's authenticated live connections."""
        return [
            conn
            for conn in map(self._lookup, self.presence.connections_for(user_id))
            if conn is not None and conn.is_authenticated
        ]

    async def notify(self, target_user_id: str, notification: Notification) -> int:
        """
        Deliver a notification to all of a user's live connections.

        Returns:
            Number of connections that received it. Zero means a delivery miss.
        """
        connections = self.live_connections(target_user_id)

        if not connections:
            self.delivery_misses += 1
            logger.debug(
                f"User {target_user_id} offline, notification {notification.id} "
                f"dropped from real-time path"
            )
            return 0

        frame = protocol.build_frame(protocol.NOTIFICATION, notification.to_dict())
        delivered = await broadcast(connections, frame)
        logger.info(
            f"Notification {notification.id} ({notification.type.value}) delivered "
            f"to {delivered} connection(s) of {target_user_id}"
        )
        return delivered

    def record(self, notification: Notification) -> None:
        """Ask the store for a durable copy without waiting for it."""
        if self.store is None:
            return

        task = asyncio.create_task(self._record(notification))
        self._record_tasks.add(task)
        task.add_done_callback(self._record_tasks.discard)

    async def _record(self, notification: Notification) -> None:
        try:
            await self.store.record_if_requested(notification)
        except Exception as e:
            logger.warning(f"Failed to record notification {notification.id}: {e}")

    async def drain(self) -> None:
        """Wait for outstanding durable writes (used at shutdown and in tests)."""
        if self._record_tasks:
            await asyncio.gather(*list(self._record_tasks), return_exceptions=True)
