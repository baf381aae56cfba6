"""Real-time presence, messaging and notification gateway."""

from gateway_server.auth import AuthVerifier, JWTAuthVerifier
from gateway_server.handlers import EventHandlers
from gateway_server.models import Connection
from gateway_server.notifications import NotificationFanout
from gateway_server.presence import PresenceRegistry
from gateway_server.rooms import RoomDirectory
from gateway_server.router import MessageRouter
from gateway_server.server import GatewayServer
from gateway_server.stores import (
    DynamoDBMessageStore,
    DynamoDBNotificationStore,
    InMemoryMessageStore,
    InMemoryNotificationStore,
    create_stores,
)

__version__ = "0.1.0"

__all__ = [
    "AuthVerifier",
    "Connection",
    "DynamoDBMessageStore",
    "DynamoDBNotificationStore",
    "EventHandlers",
    "GatewayServer",
    "InMemoryMessageStore",
    "InMemoryNotificationStore",
    "JWTAuthVerifier",
    "MessageRouter",
    "NotificationFanout",
    "PresenceRegistry",
    "RoomDirectory",
    "create_stores",
]
