"""Per-event handlers for frames received from gateway clients."""

import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional
from uuid import uuid4

from gateway_common import protocol
from gateway_common.errors import GatewayError, ValidationError
from gateway_server.delivery import deliver
from gateway_server.models import Connection

if TYPE_CHECKING:
    from gateway_server.server import GatewayServer

logger = logging.getLogger(__name__)

Frame = dict[str, Any]
Handler = Callable[[Connection, Frame], Awaitable[None]]

# Frames accepted before the handshake completes
PRE_AUTH_EVENTS = frozenset({protocol.AUTHENTICATE, protocol.JOIN, protocol.LEAVE, protocol.PING})


class EventHandlers:
    """
    Routes decoded frames to the handler for their ``type``.

    Frames of one connection are handled one at a time, in arrival order.
    AuthError is not handled here: it is fatal for the connection and
    propagates to the connection loop, which closes the transport.
    """

    def __init__(self, gateway: "GatewayServer"):
        """
        Initialize the handler table.

        Args:
            gateway: Gateway whose presence, rooms and router the handlers act on.
        """
        self.gateway = gateway
        self._routes: dict[str, Handler] = {
            protocol.AUTHENTICATE: self.handle_authenticate,
            protocol.JOIN: self.handle_room_op,
            protocol.LEAVE: self.handle_room_op,
            protocol.MESSAGE_SEND: self.handle_message_send,
            protocol.PRESENCE_QUERY: self.handle_presence_query,
            protocol.PING: self.handle_ping,
        }

    @property
    def supported_events(self) -> list[str]:
        """Get list of all handled event types."""
        return list(self._routes)

    async def send_error(
        self,
        connection: Connection,
        error: GatewayError,
        request_id: Optional[str] = None,
    ) -> None:
        """Send an ``error`` frame to the connection."""
        await deliver(
            connection,
            protocol.build_frame(protocol.ERROR, error.to_dict(), request_id=request_id),
        )

    async def handle(self, connection: Connection, message: str | bytes) -> None:
        """
        Main entry point for handling one raw frame.

        Routes to the appropriate handler based on frame type.
        """
        try:
            frame = protocol.decode_frame(message)
        except ValidationError as e:
            logger.debug(f"Invalid frame from {connection.connection_id}: {e}")
            await self.send_error(connection, e)
            return

        frame_type = frame["type"]
        logger.debug(f"Received {frame_type} from {connection.connection_id}")

        if not connection.is_authenticated and frame_type not in PRE_AUTH_EVENTS:
            await self.send_error(
                connection,
                GatewayError("Authenticate before sending this event", code="not_authenticated"),
                request_id=frame.get("request_id"),
            )
            return

        handler = self._routes.get(frame_type, self.handle_unknown)
        await handler(connection, frame)

    async def handle_authenticate(self, connection: Connection, frame: Frame) -> None:
        """Bind or rotate the connection's credential."""
        credential = frame["data"].get("credential")
        await self.gateway.authenticate(connection, credential)

    async def handle_room_op(self, connection: Connection, frame: Frame) -> None:
        """Join or leave a room; queued until authentication completes."""
        room_key = frame["data"].get("room_key")
        if not isinstance(room_key, str) or not room_key.strip():
            await self.send_error(
                connection,
                ValidationError("A non-empty 'room_key' is required"),
                request_id=frame.get("request_id"),
            )
            return

        await self.gateway.request_room_op(connection, frame["type"], room_key)

    async def handle_message_send(self, connection: Connection, frame: Frame) -> None:
        """Route a chat message and answer the origin with a receipt."""
        data = frame["data"]
        client_id = frame.get("request_id") or data.get("client_id") or f"tmp-{uuid4()}"

        receipt = await self.gateway.router.send(
            connection,
            data.get("content"),
            client_id,
            recipient_id=data.get("recipient_id"),
            room_key=data.get("room_key"),
        )

        await deliver(
            connection,
            protocol.build_frame(
                protocol.MESSAGE_RECEIPT,
                receipt.to_dict(),
                request_id=frame.get("request_id"),
            ),
        )

    async def handle_presence_query(self, connection: Connection, frame: Frame) -> None:
        """Answer whether a user is online."""
        user_id = frame["data"].get("user_id")
        if not user_id:
            await self.send_error(
                connection,
                ValidationError("'user_id' is required"),
                request_id=frame.get("request_id"),
            )
            return

        await deliver(
            connection,
            protocol.build_frame(
                protocol.PRESENCE,
                {"user_id": str(user_id), "online": self.gateway.is_online(str(user_id))},
                request_id=frame.get("request_id"),
            ),
        )

    async def handle_ping(self, connection: Connection, frame: Frame) -> None:
        """Answer an application-level ping."""
        connection.touch()
        await deliver(
            connection,
            protocol.build_frame(protocol.PONG, request_id=frame.get("request_id")),
        )

    async def handle_unknown(self, connection: Connection, frame: Frame) -> None:
        """Reject unknown event types."""
        await self.send_error(
            connection,
            GatewayError(
                f"Unknown event type '{frame['type']}'. Supported: {', '.join(self.supported_events)}",
                code="unknown_event",
            ),
            request_id=frame.get("request_id"),
        )
