"""Single-use gateway transport: open, authenticate, read frames, close."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional
from uuid import uuid4

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from gateway_client.config import ClientSettings
from gateway_common import protocol
from gateway_common.errors import AuthError, GatewayError, TransportError, ValidationError
from gateway_common.models import ConnectionState, Identity

logger = logging.getLogger(__name__)

AUTH_ERROR_CODES = frozenset({"auth_failed", "auth_expired", "no_credential"})

# Called for every server frame that is not a reply to a pending request
FrameCallback = Callable[[dict[str, Any]], None]
# Called once when the transport closes without close() having been called
ClosedCallback = Callable[["GatewayConnection", GatewayError], Awaitable[None]]


class GatewayConnection:
    """
    One physical connection to the gateway.

    The bearer credential is attached to the opening handshake, so the
    server authenticates before any frame is exchanged. An instance is
    single use: once Disconnected, a new instance is needed to reconnect.
    """

    def __init__(
        self,
        settings: ClientSettings,
        credential: Optional[str],
        on_frame: Optional[FrameCallback] = None,
        on_closed: Optional[ClosedCallback] = None,
    ):
        """
        Initialize the connection.

        Args:
            settings: Client configuration settings.
            credential: Bearer token to authenticate with.
            on_frame: Callback for server-pushed frames.
            on_closed: Callback invoked when the server or network closes the transport.
        """
        self.settings = settings
        self._credential = credential
        self._on_frame = on_frame or self._default_frame_handler
        self._on_closed = on_closed

        self._websocket: Optional[ClientConnection] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._pending: dict[str, asyncio.Future] = {}
        self._closing = False

        self.state = ConnectionState.CONNECTING
        self.connection_id: Optional[str] = None
        self.identity: Optional[Identity] = None

    @property
    def is_authenticated(self) -> bool:
        """Check if the connection is open and authenticated."""
        return self.state == ConnectionState.AUTHENTICATED

    def _default_frame_handler(self, frame: dict[str, Any]) -> None:
        logger.info(f"Received frame of type '{frame['type']}': {frame}")

    def _close_error(self) -> GatewayError:
        """Classify why the transport closed."""
        code = self._websocket.close_code if self._websocket else None
        reason = (self._websocket.close_reason if self._websocket else None) or "Connection closed"
        if code == protocol.CLOSE_AUTH_FAILED:
            return AuthError(reason)
        return TransportError(f"{reason} (code={code})")

    async def open(self, initial_frames: Iterable[dict[str, Any]] = ()) -> None:
        """
        Open the transport and wait until the server has authenticated it.

        Args:
            initial_frames: Frames sent right after the transport opens,
                ahead of authentication (the server queues room requests).

        Raises:
            AuthError: If the server rejected the credential.
            TransportError: If the server could not be reached or timed out.
        """
        if not self._credential:
            self.state = ConnectionState.DISCONNECTED
            raise AuthError("No credential available", code="no_credential")

        logger.info(f"Connecting to {self.settings.server_url}")

        try:
            self._websocket = await asyncio.wait_for(
                connect(
                    self.settings.server_url,
                    additional_headers={"Authorization": f"Bearer {self._credential}"},
                    ping_interval=None,
                ),
                timeout=self.settings.connection_timeout,
            )
        except asyncio.TimeoutError:
            self.state = ConnectionState.DISCONNECTED
            raise TransportError("Connection attempt timed out")
        except InvalidHandshake as e:
            self.state = ConnectionState.DISCONNECTED
            raise TransportError(f"Server rejected connection: {e}") from e
        except OSError as e:
            self.state = ConnectionState.DISCONNECTED
            raise TransportError(f"Connection refused - server may be down: {e}") from e

        self.state = ConnectionState.AUTHENTICATING

        try:
            for frame in initial_frames:
                await self._websocket.send(protocol.encode_frame(frame))

            await asyncio.wait_for(
                self._await_authenticated(),
                timeout=self.settings.connection_timeout,
            )
        except asyncio.TimeoutError:
            await self._abort()
            raise TransportError("Authentication handshake timed out")
        except ConnectionClosed:
            error = self._close_error()
            await self._abort()
            raise error
        except (AuthError, TransportError):
            await self._abort()
            raise
        except ValidationError as e:
            await self._abort()
            raise TransportError(f"Invalid handshake frame: {e}") from e
        except BaseException:
            # Cancelled mid-handshake: never leave the transport open
            await self._abort()
            raise

        self._reader_task = asyncio.create_task(self._read_loop())
        logger.info(
            f"Connected successfully. Connection ID: {self.connection_id} "
            f"(user={self.identity.user_id})"
        )

    async def _await_authenticated(self) -> None:
        while True:
            frame = protocol.decode_frame(await self._websocket.recv())
            frame_type = frame["type"]
            data = frame["data"]

            if frame_type == protocol.CONNECTED:
                self.connection_id = data.get("connection_id")
            elif frame_type == protocol.AUTHENTICATED:
                self.identity = Identity.from_dict(data["identity"])
                self.state = ConnectionState.AUTHENTICATED
                return
            elif frame_type == protocol.ERROR and data.get("code") in AUTH_ERROR_CODES:
                raise AuthError(data.get("message", "Authentication failed"), code=data["code"])
            elif frame_type == protocol.ERROR:
                raise TransportError(data.get("message", "Handshake failed"), code=data.get("code"))
            else:
                self._on_frame(frame)

    async def _abort(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        if self._websocket:
            try:
                await self._websocket.close()
            except Exception:
                pass

    async def _read_loop(self) -> None:
        """Read frames until the transport closes, resolving pending requests."""
        error: GatewayError = TransportError("Connection closed")

        try:
            async for raw in self._websocket:
                try:
                    frame = protocol.decode_frame(raw)
                except ValidationError:
                    logger.warning(f"Received non-JSON message: {raw!r}")
                    continue

                request_id = frame.get("request_id")
                future = self._pending.pop(request_id, None) if request_id else None
                if future is not None:
                    if not future.done():
                        future.set_result(frame)
                    continue

                if frame["type"] == protocol.SHUTDOWN:
                    logger.info(
                        f"Received shutdown message from server: "
                        f"{frame['data'].get('message', 'No reason given')}"
                    )

                self._on_frame(frame)

            error = self._close_error()
        except ConnectionClosed:
            error = self._close_error()
            logger.warning(f"Connection closed unexpectedly: {error}")
        except Exception as e:
            logger.error(f"Error in message loop: {e}")
            error = TransportError(str(e))
        finally:
            self.state = ConnectionState.DISCONNECTED
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(TransportError("Connection closed"))
            self._pending.clear()

        if not self._closing and self._on_closed is not None:
            await self._on_closed(self, error)

    async def send_frame(
        self,
        frame_type: str,
        data: Optional[dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> None:
        """
        Send a frame without waiting for a reply.

        Raises:
            TransportError: If the transport is not open.
        """
        if self._websocket is None or self.state == ConnectionState.DISCONNECTED:
            raise TransportError("Not connected")

        try:
            await self._websocket.send(
                protocol.encode_frame(protocol.build_frame(frame_type, data, request_id))
            )
        except ConnectionClosed as e:
            raise TransportError(f"Connection closed: {e}") from e

    async def request(
        self,
        frame_type: str,
        data: dict[str, Any],
        timeout: float,
        request_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Send a frame and wait for the reply carrying the same request id.

        Raises:
            TransportError: If the transport is or becomes closed.
            asyncio.TimeoutError: If no reply arrives in time.
        """
        request_id = request_id or str(uuid4())
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self.send_frame(frame_type, data, request_id=request_id)
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            self._pending.pop(request_id, None)

    async def close(self) -> None:
        """Close the connection gracefully. No close callback is fired."""
        self._closing = True
        self.state = ConnectionState.DISCONNECTED

        if self._websocket:
            try:
                await self._websocket.close(1000, "Client shutting down")
            except Exception as e:
                logger.warning(f"Error closing connection: {e}")

        if self._reader_task is not None:
            try:
                await asyncio.wait_for(self._reader_task, timeout=self.settings.connection_timeout)
            except asyncio.TimeoutError:
                self._reader_task.cancel()
            self._reader_task = None
