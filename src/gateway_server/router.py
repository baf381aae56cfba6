"""Message router: validate, persist, then deliver to the room."""

import asyncio
import logging
from typing import Optional
from uuid import UUID

from gateway_common import protocol
from gateway_common.errors import PersistenceError, ValidationError
from gateway_common.models import (
    DeliveryReceipt,
    DeliveryState,
    Message,
    Notification,
    NotificationType,
    Pagination,
)
from gateway_common.rooms import resolve_room_key
from gateway_server.config import Settings, get_settings
from gateway_server.delivery import broadcast
from gateway_server.models import Connection
from gateway_server.notifications import NotificationFanout
from gateway_server.rooms import RoomDirectory
from gateway_server.stores import MessageStore

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 80


class MessageRouter:
    """
    Routes chat messages between conversation participants.

    A message is broadcast only after the store has confirmed it. The
    origin connection gets its result as a receipt, never as a broadcast.
    Failed sends are not retried here; retrying is the sender's decision.
    """

    def __init__(
        self,
        rooms: RoomDirectory,
        store: MessageStore,
        fanout: Optional[NotificationFanout] = None,
        settings: Optional[Settings] = None,
    ):
        self.rooms = rooms
        self.store = store
        self.fanout = fanout
        self.settings = settings or get_settings()

    def _validate(self, content: object) -> str:
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Message content must not be empty")
        if len(content) > self.settings.max_message_length:
            raise ValidationError(
                f"Message content exceeds {self.settings.max_message_length} characters"
            )
        return content

    async def send(
        self,
        sender: Connection,
        content: object,
        client_id: str,
        recipient_id: Optional[str] = None,
        room_key: Optional[str] = None,
    ) -> DeliveryReceipt:
        """
        Send a message from an authenticated connection.

        Args:
            sender: The origin connection.
            content: Message text; must be non-empty after trimming.
            client_id: The client's optimistic message id, echoed in the receipt.
            recipient_id: Target user for a direct message.
            room_key: Target room for a topic message.

        Returns:
            A confirmed receipt carrying the stored message, or a failed one.
        """
        if not sender.is_authenticated:
            return DeliveryReceipt.failed(client_id, "auth_failed")

        try:
            content = self._validate(content)
            for value in (recipient_id, room_key):
                if value is not None and not isinstance(value, str):
                    raise ValidationError("Message target must be a string")
            target = resolve_room_key(sender.user_id, recipient_id, room_key)
        except (ValidationError, ValueError) as e:
            logger.info(f"Rejected message from {sender.user_id}: {e}")
            return DeliveryReceipt.failed(client_id, ValidationError.code)

        message = Message(
            id=client_id,
            sender_id=sender.user_id,
            recipient_id=recipient_id,
            room_key=target,
            content=content,
        )

        try:
            confirmed = await asyncio.wait_for(
                self.store.persist(message),
                timeout=self.settings.persist_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Message store did not answer within {self.settings.persist_timeout}s, "
                f"send {client_id} failed"
            )
            return DeliveryReceipt.failed(client_id, PersistenceError.code)
        except PersistenceError as e:
            logger.error(f"Send {client_id} failed: {e}")
            return DeliveryReceipt.failed(client_id, PersistenceError.code)
        except Exception as e:
            logger.error(f"Unexpected message store error for send {client_id}: {e}", exc_info=True)
            return DeliveryReceipt.failed(client_id, PersistenceError.code)

        sender.touch()

        recipients = self._recipients(sender, target, recipient_id)
        delivered = await broadcast(
            recipients,
            protocol.build_frame(protocol.MESSAGE_DELIVERED, confirmed.to_dict()),
        )
        logger.info(
            f"Message {confirmed.id} from {sender.user_id} in room {target} "
            f"delivered to {delivered} connection(s)"
        )

        if recipient_id and recipient_id != sender.user_id:
            await self._notify_recipient(sender, confirmed)

        return DeliveryReceipt(
            client_id=client_id,
            status=DeliveryState.CONFIRMED,
            message=confirmed,
        )

    def _recipients(
        self,
        sender: Connection,
        room_key: str,
        recipient_id: Optional[str],
    ) -> list[Connection]:
        """
        Connections that get the delivered message: the room's members plus,
        for a direct message, every live connection of the recipient. Each
        connection appears once and the origin never does.
        """
        candidates = self.rooms.members(room_key)
        if recipient_id and self.fanout is not None:
            candidates += self.fanout.live_connections(recipient_id)

        recipients: dict[UUID, Connection] = {}
        for conn in candidates:
            if conn.connection_id != sender.connection_id:
                recipients.setdefault(conn.connection_id, conn)
        return list(recipients.values())

    async def _notify_recipient(self, sender: Connection, message: Message) -> None:
        if self.fanout is None or not self.settings.notify_on_direct_message:
            return

        sender_name = sender.identity.display_name or "someone"
        notification = Notification(
            target_user_id=message.recipient_id,
            type=NotificationType.MESSAGE,
            payload={
                "message": f"New message from {sender_name}",
                "message_id": message.id,
                "sender_id": message.sender_id,
                "room_key": message.room_key,
                "preview": message.content[:PREVIEW_LENGTH],
            },
        )
        self.fanout.record(notification)
        await self.fanout.notify(message.recipient_id, notification)

    async def history(self, room_key: str, pagination: Optional[Pagination] = None) -> list[Message]:
        """Return a page of the room's stored messages, oldest first."""
        return await self.store.history(room_key, pagination or Pagination())
