"""Shared fixtures: fake transports, a static verifier and a wired gateway."""

import asyncio
import json
from typing import Optional

import pytest
from websockets.exceptions import ConnectionClosed

from gateway_common.errors import AuthError
from gateway_common.models import ConnectionState, Identity
from gateway_server.config import Settings
from gateway_server.models import Connection
from gateway_server.server import GatewayServer
from gateway_server.stores import InMemoryMessageStore, InMemoryNotificationStore


class FakeRequest:
    def __init__(self, path: str, headers: dict):
        self.path = path
        self.headers = headers


class FakeWebSocket:
    """Stands in for a websockets ServerConnection and records what is sent."""

    def __init__(self, path: str = "/ws", headers: Optional[dict] = None):
        self.request = FakeRequest(path, headers or {})
        self.sent: list[dict] = []
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self._incoming: asyncio.Queue = asyncio.Queue()

    def feed(self, frame: dict) -> None:
        self._incoming.put_nowait(json.dumps(frame))

    def feed_close(self) -> None:
        self._incoming.put_nowait(ConnectionClosed(None, None))

    async def recv(self):
        item = await self._incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, message: str) -> None:
        if self.close_code is not None:
            raise ConnectionClosed(None, None)
        self.sent.append(json.loads(message))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_code = code
        self.close_reason = reason

    async def ping(self):
        waiter = asyncio.get_running_loop().create_future()
        waiter.set_result(None)
        return waiter

    def types(self) -> list[str]:
        return [frame["type"] for frame in self.sent]

    def frames(self, frame_type: str) -> list[dict]:
        return [frame for frame in self.sent if frame["type"] == frame_type]


class StaticVerifier:
    """Accepts a fixed set of tokens and counts verify calls."""

    def __init__(self, tokens: dict[str, Identity]):
        self.tokens = tokens
        self.calls: list[str] = []

    async def verify(self, credential: str) -> Identity:
        self.calls.append(credential)
        if credential not in self.tokens:
            raise AuthError("Invalid credential")
        return self.tokens[credential]


@pytest.fixture
def settings():
    """Create test settings."""
    return Settings(
        jwt_secret="test-secret",
        handshake_timeout=1.0,
        persist_timeout=1.0,
        internal_api_token="internal-token",
        store_backend="memory",
    )


@pytest.fixture
def verifier():
    return StaticVerifier(
        {
            "alice-token": Identity(user_id="alice", display_name="Alice"),
            "alice-token-2": Identity(user_id="alice", display_name="Alice"),
            "bob-token": Identity(user_id="bob", display_name="Bob"),
            "carol-token": Identity(user_id="carol"),
        }
    )


@pytest.fixture
def message_store():
    return InMemoryMessageStore()


@pytest.fixture
def notification_store():
    return InMemoryNotificationStore()


@pytest.fixture
def gateway(verifier, message_store, notification_store, settings):
    """Create a gateway wired to in-memory stores."""
    return GatewayServer(verifier, message_store, notification_store, settings)


@pytest.fixture
def connect_user(gateway):
    """Open a fake transport on the gateway and authenticate it with a token."""

    async def _connect(token: str) -> Connection:
        connection = gateway.open_connection(FakeWebSocket())
        connection.state = ConnectionState.AUTHENTICATING
        await gateway.authenticate(connection, token)
        return connection

    return _connect


@pytest.fixture
def make_connection():
    """Build a standalone authenticated connection (no gateway involved)."""

    def _make(user_id: str, display_name: Optional[str] = None) -> Connection:
        return Connection(
            websocket=FakeWebSocket(),
            state=ConnectionState.AUTHENTICATED,
            identity=Identity(user_id=user_id, display_name=display_name),
        )

    return _make
