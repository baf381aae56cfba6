"""Wire protocol, data model and room keys shared by gateway server and client."""

from gateway_common.errors import (
    AuthError,
    GatewayError,
    PersistenceError,
    TransportError,
    ValidationError,
)
from gateway_common.models import (
    ConnectionState,
    DeliveryReceipt,
    DeliveryState,
    Identity,
    Message,
    Notification,
    NotificationType,
    Pagination,
)
from gateway_common.rooms import direct_room_key, resolve_room_key

__version__ = "0.1.0"

__all__ = [
    # Errors
    "GatewayError",
    "AuthError",
    "PersistenceError",
    "TransportError",
    "ValidationError",
    # Models
    "ConnectionState",
    "DeliveryReceipt",
    "DeliveryState",
    "Identity",
    "Message",
    "Notification",
    "NotificationType",
    "Pagination",
    # Room keys
    "direct_room_key",
    "resolve_room_key",
]
