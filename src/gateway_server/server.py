"""Gateway connection lifecycle: handshake, presence, rooms and teardown."""

import asyncio
import logging
from typing import Optional
from urllib.parse import parse_qs, urlparse
from uuid import UUID

from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed

from gateway_common import protocol
from gateway_common.errors import AuthError, GatewayError
from gateway_common.models import ConnectionState, Identity, Notification
from gateway_server.auth import AuthVerifier, bearer_token
from gateway_server.config import Settings, get_settings
from gateway_server.delivery import broadcast, deliver
from gateway_server.handlers import EventHandlers
from gateway_server.models import Connection
from gateway_server.notifications import NotificationFanout
from gateway_server.presence import PresenceRegistry
from gateway_server.rooms import RoomDirectory
from gateway_server.router import MessageRouter
from gateway_server.stores import MessageStore, NotificationStore

logger = logging.getLogger(__name__)


class GatewayServer:
    """
    Owns every live connection and the presence and room state derived from them.

    All presence and room mutations happen in synchronous methods, so no
    other handler can observe a half-applied change.
    """

    def __init__(
        self,
        verifier: AuthVerifier,
        message_store: MessageStore,
        notification_store: Optional[NotificationStore] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the gateway with its external collaborators."""
        self.settings = settings or get_settings()
        self.verifier = verifier
        self.presence = PresenceRegistry()
        self.rooms = RoomDirectory()
        self.fanout = NotificationFanout(self.presence, self.get_connection, notification_store)
        self.router = MessageRouter(self.rooms, message_store, self.fanout, self.settings)
        self._connections: dict[UUID, Connection] = {}
        self._handlers = EventHandlers(self)

    @property
    def active_connection_count(self) -> int:
        """Return the number of active connections."""
        return len(self._connections)

    def get_connection(self, connection_id: UUID) -> Optional[Connection]:
        """Return a live connection by id."""
        return self._connections.get(connection_id)

    def is_online(self, user_id: str) -> bool:
        """Check whether the user has at least one authenticated connection."""
        return self.presence.is_online(user_id)

    def open_connection(self, websocket: ServerConnection) -> Connection:
        """Track a freshly opened transport."""
        connection = Connection(websocket=websocket)
        self._connections[connection.connection_id] = connection
        return connection

    async def authenticate(self, connection: Connection, credential: Optional[str]) -> Identity:
        """
        Authenticate a connection, or rotate the credential of an authenticated one.

        A repeated credential on an authenticated connection only refreshes
        its activity timestamp. A new credential replaces the identity; if
        the user changes, presence moves with it and the connection leaves
        every room it had joined.

        Raises:
            AuthError: If the verifier rejects the credential.
        """
        if connection.is_authenticated and credential == connection.credential:
            connection.touch()
            logger.debug(f"Duplicate authenticate on {connection.connection_id} ignored")
            return connection.identity

        identity = await self.verifier.verify(credential)

        if connection.state == ConnectionState.DISCONNECTED:
            return identity

        previous_user = connection.user_id
        went_offline = False
        if previous_user is not None and previous_user != identity.user_id:
            # Memberships belong to the previous user
            self.rooms.leave_all(connection)
            went_offline = self.presence.remove(previous_user, connection.connection_id)
        connection.identity = identity
        connection.credential = credential
        connection.state = ConnectionState.AUTHENTICATED
        connection.touch()
        came_online = self.presence.add(identity.user_id, connection.connection_id)

        if previous_user is None:
            logger.info(f"Connection {connection.connection_id} authenticated as {identity.user_id}")
        else:
            logger.info(f"Connection {connection.connection_id} rotated credential ({identity.user_id})")

        await deliver(
            connection,
            protocol.build_frame(
                protocol.AUTHENTICATED,
                {
                    "connection_id": str(connection.connection_id),
                    "identity": identity.to_dict(),
                },
            ),
        )

        if went_offline:
            await self._broadcast_presence(previous_user, online=False)
        if came_online:
            await self._broadcast_presence(identity.user_id, online=True)

        # Replay room requests made during the handshake, in call order
        while connection.pending_ops and connection.is_authenticated:
            op, room_key = connection.pending_ops.popleft()
            await self._apply_room_op(connection, op, room_key)

        return identity

    async def request_room_op(self, connection: Connection, op: str, room_key: str) -> None:
        """Apply a join/leave now, or queue it until the connection authenticates."""
        if connection.state == ConnectionState.DISCONNECTED:
            return

        if not connection.is_authenticated:
            connection.pending_ops.append((op, room_key))
            logger.debug(f"Queued {op} {room_key} on {connection.connection_id} until authenticated")
            return

        await self._apply_room_op(connection, op, room_key)

    async def _apply_room_op(self, connection: Connection, op: str, room_key: str) -> None:
        if op == protocol.JOIN:
            self.rooms.join(connection, room_key)
            ack = protocol.JOINED
        else:
            self.rooms.leave(connection, room_key)
            ack = protocol.LEFT

        await deliver(connection, protocol.build_frame(ack, {"room_key": room_key}))

    def disconnect(self, connection: Connection) -> bool:
        """
        Move a connection to Disconnected and drop it from rooms and presence.

        Returns:
            True if this was the user's last connection and they went offline.
        """
        if self._connections.pop(connection.connection_id, None) is None:
            return False

        connection.state = ConnectionState.DISCONNECTED
        connection.pending_ops.clear()
        self.rooms.leave_all(connection)
        if connection.user_id is None:
            return False
        return self.presence.remove(connection.user_id, connection.connection_id)

    async def close_connection(self, connection: Connection) -> None:
        """Disconnect and announce the user going offline if needed."""
        if self.disconnect(connection):
            await self._broadcast_presence(connection.user_id, online=False)
        logger.info(f"Connection closed: {connection.connection_id}")

    async def _broadcast_presence(self, user_id: str, online: bool) -> None:
        if not self.settings.broadcast_presence:
            return

        targets = [
            conn
            for conn in self._connections.values()
            if conn.is_authenticated and conn.user_id != user_id
        ]
        await broadcast(
            targets,
            protocol.build_frame(protocol.PRESENCE, {"user_id": user_id, "online": online}),
        )

    async def notify(self, user_id: str, notification: Notification, persist: bool = False) -> int:
        """
        Push a notification requested by an external collaborator.

        Args:
            user_id: Target user.
            notification: The notification to deliver.
            persist: Also ask the notification store for a durable copy.

        Returns:
            Number of connections that received it.
        """
        if persist:
            self.fanout.record(notification)
        return await self.fanout.notify(user_id, notification)

    async def close_all_connections(self, timeout: float = 5.0) -> None:
        """
        Gracefully close all active connections and clear presence and rooms.

        Args:
            timeout: Maximum time in seconds to wait for all connections to close.
        """
        if not self._connections:
            logger.info("No active connections to close")
            return

        logger.info(f"Closing {len(self._connections)} active connection(s)...")

        # Snapshot, since handlers remove themselves while we iterate
        connections_to_close = list(self._connections.values())

        async def close_single_connection(connection: Connection) -> None:
            try:
                await deliver(
                    connection,
                    protocol.build_frame(
                        protocol.SHUTDOWN,
                        {"message": "Server is shutting down"},
                    ),
                )
                await connection.websocket.close(protocol.CLOSE_GOING_AWAY, "Server shutting down")
                logger.debug(f"Closed connection: {connection.connection_id}")
            except ConnectionClosed:
                logger.debug(f"Connection already closed: {connection.connection_id}")
            except Exception as e:
                logger.warning(f"Error closing connection {connection.connection_id}: {e}")

        try:
            await asyncio.wait_for(
                asyncio.gather(
                    *(close_single_connection(conn) for conn in connections_to_close),
                    return_exceptions=True,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Timeout after {timeout}s while closing connections, "
                f"forcing cleanup of remaining connections"
            )

        for connection in connections_to_close:
            self.disconnect(connection)

        self.rooms.clear()
        self.presence.clear()
        await self.fanout.drain()

        logger.info("All connections closed")

    def _credential_from_request(self, websocket: ServerConnection) -> Optional[str]:
        """Read the bearer credential attached to the opening handshake."""
        request = websocket.request
        token = bearer_token(request.headers.get("Authorization"))
        if token:
            return token

        params = parse_qs(urlparse(request.path).query)
        return params.get("token", [None])[0]

    async def _handshake(self, connection: Connection, credential: Optional[str]) -> None:
        """Authenticate from the handshake credential, or wait for an authenticate frame."""
        if credential:
            await self.authenticate(connection, credential)

        while not connection.is_authenticated:
            message = await connection.websocket.recv()
            await self._handlers.handle(connection, message)

    async def _serve(self, connection: Connection) -> None:
        """Process frames from an authenticated connection until it closes."""
        websocket = connection.websocket

        while True:
            if connection.identity.is_expired(leeway=self.settings.jwt_leeway_seconds):
                raise AuthError("Credential expired", code="auth_expired")

            try:
                message = await asyncio.wait_for(
                    websocket.recv(), timeout=self.settings.recv_timeout
                )
            except asyncio.TimeoutError:
                # Idle: check the peer is still there
                logger.debug(f"Pinging idle connection {connection.connection_id}")
                pong_waiter = await websocket.ping()
                try:
                    await asyncio.wait_for(pong_waiter, timeout=self.settings.pong_timeout)
                except asyncio.TimeoutError:
                    logger.warning(
                        f"No pong response from {connection.connection_id} in "
                        f"{self.settings.pong_timeout}s, closing connection"
                    )
                    await websocket.close(protocol.CLOSE_POLICY_VIOLATION, "Pong timeout")
                    return

                await deliver(connection, protocol.build_frame(protocol.HEARTBEAT))
                continue

            await self._handlers.handle(connection, message)

    async def handle_connection(self, websocket: ServerConnection) -> None:
        """
        Handle a WebSocket connection lifecycle.

        Validates the request path, authenticates within the handshake
        timeout, processes frames, and cleans up on disconnect.
        """
        connection = self.open_connection(websocket)

        try:
            path = urlparse(websocket.request.path).path
            if not self.settings.is_valid_path(path):
                error_msg = f"Invalid path. Expected: {self.settings.ws_path}"
                logger.warning(f"Connection rejected: {error_msg}")
                await websocket.close(protocol.CLOSE_POLICY_VIOLATION, error_msg)
                return

            connection.state = ConnectionState.AUTHENTICATING
            await deliver(
                connection,
                protocol.build_frame(
                    protocol.CONNECTED,
                    {"connection_id": str(connection.connection_id)},
                ),
            )

            try:
                await asyncio.wait_for(
                    self._handshake(connection, self._credential_from_request(websocket)),
                    timeout=self.settings.handshake_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    f"Connection {connection.connection_id} did not authenticate within "
                    f"{self.settings.handshake_timeout}s"
                )
                await self._handlers.send_error(
                    connection, GatewayError("Handshake timeout", code="handshake_timeout")
                )
                await websocket.close(protocol.CLOSE_HANDSHAKE_TIMEOUT, "Handshake timeout")
                return

            await self._serve(connection)

        except AuthError as e:
            logger.info(f"Authentication failed on {connection.connection_id}: {e}")
            await self._handlers.send_error(connection, e)
            try:
                await websocket.close(protocol.CLOSE_AUTH_FAILED, str(e))
            except ConnectionClosed:
                pass

        except ConnectionClosed:
            logger.info(f"Connection closed by client: {connection.connection_id}")

        except Exception as e:
            logger.error(f"Error handling connection {connection.connection_id}: {e}", exc_info=True)

        finally:
            await self.close_connection(connection)
