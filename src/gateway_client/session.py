"""Client session controller: the one gateway connection a client process owns."""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Hashable, Optional

from gateway_client.backoff import ReconnectPolicy
from gateway_client.client import GatewayConnection
from gateway_client.config import ClientSettings, get_client_settings
from gateway_client.credentials import CredentialStore, MemoryCredentialStore
from gateway_client.subscriptions import EventHandler, SubscriptionRegistry, Unsubscribe
from gateway_common import protocol
from gateway_common.errors import AuthError, GatewayError, TransportError, ValidationError
from gateway_common.models import DeliveryReceipt, Identity, Message, Notification
from gateway_common.rooms import direct_room_key

logger = logging.getLogger(__name__)

# Client-local event kinds, delivered to subscribers alongside server events
MESSAGE_OPTIMISTIC = "message:optimistic"
STATUS = "status"

Connector = Callable[..., GatewayConnection]


class ConnectionStatus(str, Enum):
    """User-facing connection status."""

    OFFLINE = "offline"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"
    AUTH_FAILED = "auth_failed"


class ClientSessionController:
    """
    Owns the client's single gateway connection and its subscribers.

    Handles:
    - Opening the connection with the current credential attached
    - Bounded reconnection on transport failure, no retry on auth failure
    - Replaying room memberships after every reconnect
    - Optimistic sends reconciled by server receipts
    - De-duplicated event subscriptions

    Errors from the network or the server become status changes and
    ``error``/``connect_error`` events; they are never raised to callers,
    except ValidationError for bad input.
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        credentials: Optional[CredentialStore] = None,
        connector: Optional[Connector] = None,
    ):
        """
        Initialize the controller.

        Args:
            settings: Client settings. Defaults to get_client_settings().
            credentials: Where the bearer token is read from.
            connector: Factory building a GatewayConnection; injectable for tests.
        """
        self.settings = settings or get_client_settings()
        self.credentials = credentials or MemoryCredentialStore()
        self._connector = connector or GatewayConnection

        self._connection: Optional[GatewayConnection] = None
        self._subscriptions = SubscriptionRegistry(self.settings.handler_timeout)
        self._policy = ReconnectPolicy(self.settings.reconnect_delays)
        self._rooms: dict[str, None] = {}  # Insertion-ordered set of joined rooms
        self._presence: dict[str, bool] = {}
        self._status = ConnectionStatus.OFFLINE

        self._connect_lock = asyncio.Lock()
        self._reconnect_task: Optional[asyncio.Task] = None
        self._events: asyncio.Queue = asyncio.Queue()
        self._dispatcher_task: Optional[asyncio.Task] = None

        self.identity: Optional[Identity] = None

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        """Check if the connection is open and authenticated."""
        return self._connection is not None and self._connection.is_authenticated

    @property
    def rooms(self) -> list[str]:
        """Rooms this session is (or will be, after reconnecting) a member of."""
        return list(self._rooms)

    @property
    def reconnect_attempts(self) -> int:
        return self._policy.attempts

    # Events

    def _start_dispatcher(self) -> None:
        if self._dispatcher_task is None or self._dispatcher_task.done():
            self._dispatcher_task = asyncio.create_task(self._dispatch_loop())

    async def _dispatch_loop(self) -> None:
        while True:
            kind, payload = await self._events.get()
            try:
                await self._subscriptions.dispatch(kind, payload)
            finally:
                self._events.task_done()

    def _emit(self, kind: str, payload: Any) -> None:
        """Queue an event for subscribers, preserving emission order."""
        self._start_dispatcher()
        self._events.put_nowait((kind, payload))

    async def flush_events(self) -> None:
        """Wait until every queued event has been handed to subscribers."""
        self._start_dispatcher()
        await self._events.join()

    def _set_status(self, status: ConnectionStatus) -> None:
        if status != self._status:
            logger.info(f"Connection status: {self._status.value} -> {status.value}")
            self._status = status
            self._emit(STATUS, status)

    def subscribe(
        self,
        event_kind: str,
        handler: EventHandler,
        owner: Optional[Hashable] = None,
    ) -> Unsubscribe:
        """
        Listen for an event kind.

        Re-subscribing with the same ``(event_kind, owner)`` replaces the
        previous handler.

        Returns:
            A function that removes this subscription.
        """
        return self._subscriptions.subscribe(event_kind, handler, owner)

    def _on_frame(self, frame: dict[str, Any]) -> None:
        """Translate a server frame into a subscriber event."""
        frame_type = frame["type"]
        data = frame["data"]

        if frame_type == protocol.MESSAGE_DELIVERED:
            self._emit(frame_type, Message.from_dict(data))
        elif frame_type == protocol.NOTIFICATION:
            self._emit(frame_type, Notification.from_dict(data))
        elif frame_type == protocol.PRESENCE:
            self._presence[data["user_id"]] = bool(data.get("online"))
            self._emit(frame_type, data)
        elif frame_type == protocol.AUTHENTICATED:
            # Credential rotation on the live connection
            self.identity = Identity.from_dict(data["identity"])
            self._emit(frame_type, self.identity)
        elif frame_type in (protocol.HEARTBEAT, protocol.PONG):
            logger.debug(f"Received {frame_type}")
        else:
            self._emit(frame_type, data)

    # Connection lifecycle

    async def _connect_once(self) -> None:
        """
        Open and authenticate a fresh connection.

        Raises:
            AuthError: If there is no credential or the server rejects it.
            TransportError: If the server is unreachable.
        """
        async with self._connect_lock:
            if self.is_connected:
                return

            self._set_status(ConnectionStatus.CONNECTING)
            connection = self._connector(
                self.settings,
                self.credentials.get_token(),
                on_frame=self._on_frame,
                on_closed=self._on_closed,
            )
            await connection.open(
                initial_frames=[
                    protocol.build_frame(protocol.JOIN, {"room_key": room_key})
                    for room_key in self._rooms
                ]
            )

            self._connection = connection
            self.identity = connection.identity
            self._policy.reset()
            self._set_status(ConnectionStatus.CONNECTED)
            self._emit(protocol.CONNECT, {"connection_id": connection.connection_id})

    def _handle_auth_failure(self, error: AuthError) -> None:
        logger.warning(f"Authentication failed ({error.code}): {error}")
        self._set_status(ConnectionStatus.AUTH_FAILED)
        self._emit(protocol.ERROR, error.to_dict())

    async def ensure_connected(self) -> bool:
        """
        Make sure the session has an authenticated connection.

        Idempotent. An explicit call restores the reconnection budget, so it
        is also how a degraded or auth-failed session is revived after the
        credential has been refreshed.

        Returns:
            True if connected when the call returns.
        """
        if self.is_connected:
            return True

        self._cancel_reconnect()
        self._policy.reset()

        try:
            await self._connect_once()
            return True
        except AuthError as e:
            self._handle_auth_failure(e)
        except TransportError as e:
            logger.warning(f"Connection failed: {e}")
            self._emit(protocol.CONNECT_ERROR, e.to_dict())
            self._start_reconnect()
        return False

    async def _on_closed(self, connection: GatewayConnection, error: GatewayError) -> None:
        if connection is not self._connection:
            return

        self._connection = None
        self._emit(protocol.DISCONNECT, error.to_dict())

        if isinstance(error, AuthError):
            self._handle_auth_failure(error)
            return

        logger.info(f"Connection lost ({error}), will attempt to reconnect...")
        self._start_reconnect()

    def _start_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._reconnect_task = None

    async def _reconnect_loop(self) -> None:
        """Retry on the fixed schedule, then settle into degraded."""
        self._set_status(ConnectionStatus.CONNECTING)

        while True:
            delay = self._policy.next_delay()
            if delay is None:
                logger.error(
                    f"Max reconnection attempts ({self._policy.max_attempts}) exceeded. "
                    "Waiting for an explicit reconnect."
                )
                self._set_status(ConnectionStatus.DEGRADED)
                return

            logger.info(
                f"Reconnect {self._policy.attempts}/{self._policy.max_attempts} "
                f"in {delay:.2f} seconds..."
            )
            await asyncio.sleep(delay)

            try:
                await self._connect_once()
                logger.info("Reconnected")
                return
            except AuthError as e:
                self._handle_auth_failure(e)
                return
            except TransportError as e:
                logger.warning(f"Reconnect attempt failed: {e}")
                self._emit(protocol.CONNECT_ERROR, e.to_dict())

    async def disconnect(self) -> None:
        """Close the connection and stop reconnecting. Subscriptions are kept."""
        self._cancel_reconnect()

        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()
            self._emit(protocol.DISCONNECT, {"code": "client_closed", "message": "Client disconnected"})

        self._set_status(ConnectionStatus.OFFLINE)

    async def close(self) -> None:
        """Disconnect, drop all subscriptions and stop event dispatch."""
        await self.disconnect()
        await self.flush_events()
        self._subscriptions.clear()

        if self._dispatcher_task is not None:
            self._dispatcher_task.cancel()
            try:
                await self._dispatcher_task
            except asyncio.CancelledError:
                pass
            self._dispatcher_task = None

    async def update_credential(self, token: Optional[str] = None) -> bool:
        """
        Rotate the credential on the live connection without reconnecting.

        Args:
            token: The refreshed token. Defaults to the credential store's.

        Returns:
            True if the rotation was sent over a live connection. A missing
            token is treated as hard-expired and disconnects the session.
        """
        token = token or self.credentials.get_token()
        if not token:
            await self.disconnect()
            self._handle_auth_failure(AuthError("Credential expired", code="auth_expired"))
            return False

        connection = self._connection
        if connection is None or not connection.is_authenticated:
            return False

        try:
            await connection.send_frame(protocol.AUTHENTICATE, {"credential": token})
        except TransportError as e:
            logger.warning(f"Could not rotate credential: {e}")
            return False
        return True

    # Rooms, messages and presence

    async def _send_room_op(self, op: str, room_key: str) -> None:
        connection = self._connection
        if connection is None:
            return
        try:
            await connection.send_frame(op, {"room_key": room_key})
        except TransportError as e:
            # Replayed from self._rooms after reconnecting
            logger.debug(f"Deferred {op} {room_key}: {e}")

    async def join(self, room_key: str) -> None:
        """Join a room now and after every reconnect."""
        if not room_key:
            raise ValidationError("room_key is required")
        self._rooms[room_key] = None
        await self._send_room_op(protocol.JOIN, room_key)

    async def leave(self, room_key: str) -> None:
        """Leave a room. Leaving a room not joined is a no-op on the server."""
        self._rooms.pop(room_key, None)
        await self._send_room_op(protocol.LEAVE, room_key)

    async def send(
        self,
        content: str,
        recipient_id: Optional[str] = None,
        room_key: Optional[str] = None,
    ) -> DeliveryReceipt:
        """
        Send a chat message optimistically.

        Emits ``message:optimistic`` immediately and ``message:receipt`` once
        the outcome is known.

        Args:
            content: Message text; must be non-empty after trimming.
            recipient_id: Target user for a direct message.
            room_key: Target room for a topic message.

        Returns:
            The receipt. Transport problems and timeouts give a failed receipt.

        Raises:
            ValidationError: For empty content or a missing/ambiguous target,
                before anything is sent.
        """
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Message content must not be empty")
        if bool(recipient_id) == bool(room_key):
            raise ValidationError("Exactly one of recipient_id or room_key is required")

        sender_id = self.identity.user_id if self.identity else ""
        if room_key:
            target = room_key
        else:
            target = direct_room_key(sender_id, recipient_id) if sender_id else ""

        message = Message(
            sender_id=sender_id,
            recipient_id=recipient_id,
            room_key=target,
            content=content,
        )
        self._emit(MESSAGE_OPTIMISTIC, message)

        receipt = await self._request_send(message, recipient_id, room_key)
        self._emit(protocol.MESSAGE_RECEIPT, receipt)
        return receipt

    async def _request_send(
        self,
        message: Message,
        recipient_id: Optional[str],
        room_key: Optional[str],
    ) -> DeliveryReceipt:
        connection = self._connection
        if connection is None or not connection.is_authenticated:
            return DeliveryReceipt.failed(message.id, TransportError.code)

        data = {"content": message.content}
        if recipient_id:
            data["recipient_id"] = recipient_id
        else:
            data["room_key"] = room_key

        try:
            reply = await connection.request(
                protocol.MESSAGE_SEND,
                data,
                timeout=self.settings.send_timeout,
                request_id=message.id,
            )
        except asyncio.TimeoutError:
            logger.warning(f"No receipt for {message.id} within {self.settings.send_timeout}s")
            return DeliveryReceipt.failed(message.id, "send_timeout")
        except TransportError as e:
            logger.warning(f"Send {message.id} failed: {e}")
            return DeliveryReceipt.failed(message.id, TransportError.code)

        if reply["type"] != protocol.MESSAGE_RECEIPT:
            return DeliveryReceipt.failed(message.id, reply["data"].get("code", "error"))
        return DeliveryReceipt.from_dict(reply["data"])

    async def is_online(self, user_id: str) -> bool:
        """
        Check whether a user is online.

        Asks the server when connected, otherwise answers from the last
        presence update seen.
        """
        connection = self._connection
        if connection is not None and connection.is_authenticated:
            try:
                reply = await connection.request(
                    protocol.PRESENCE_QUERY,
                    {"user_id": user_id},
                    timeout=self.settings.request_timeout,
                )
                if reply["type"] == protocol.PRESENCE:
                    self._presence[user_id] = bool(reply["data"].get("online"))
            except (asyncio.TimeoutError, TransportError) as e:
                logger.debug(f"Presence query for {user_id} failed: {e}")

        return self._presence.get(user_id, False)
