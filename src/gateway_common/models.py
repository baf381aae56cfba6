"""Data models shared by the gateway server and client."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


class ConnectionState(str, Enum):
    """Lifecycle state of one physical connection."""

    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    DISCONNECTED = "disconnected"


class DeliveryState(str, Enum):
    """Delivery state of a chat message as seen by the sending client."""

    OPTIMISTIC = "optimistic"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class NotificationType(str, Enum):
    """Kinds of user-targeted notifications."""

    MESSAGE = "message"
    REQUEST_UPDATE = "request_update"
    GENERIC = "generic"


@dataclass
class Identity:
    """An authenticated user, decoded from a bearer credential."""

    user_id: str
    display_name: Optional[str] = None
    trust: dict[str, Any] = field(default_factory=dict)
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None, leeway: float = 0.0) -> bool:
        """
        Check whether the credential this identity came from has expired.

        Args:
            now: Time to check against. Defaults to the current UTC time.
            leeway: Seconds of clock skew tolerated past ``expires_at``.
        """
        if self.expires_at is None:
            return False
        return (now or utc_now()) >= self.expires_at + timedelta(seconds=leeway)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "user_id": self.user_id,
            "display_name": self.display_name,
            "trust": self.trust,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Identity":
        """Create Identity from its dictionary form."""
        return cls(
            user_id=str(data["user_id"]),
            display_name=data.get("display_name"),
            trust=data.get("trust") or {},
            expires_at=_parse_datetime(data.get("expires_at")),
        )


@dataclass
class Message:
    """A chat message, either in flight or confirmed by the message store."""

    sender_id: str
    room_key: str
    content: str
    recipient_id: Optional[str] = None
    id: str = field(default_factory=lambda: f"tmp-{uuid4()}")
    created_at: datetime = field(default_factory=utc_now)
    delivery_state: DeliveryState = DeliveryState.OPTIMISTIC
    read: bool = False

    def confirm(self, message_id: str, created_at: datetime) -> "Message":
        """Return a copy carrying the store-assigned id and timestamp."""
        return replace(
            self,
            id=message_id,
            created_at=created_at,
            delivery_state=DeliveryState.CONFIRMED,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "sender_id": self.sender_id,
            "recipient_id": self.recipient_id,
            "room_key": self.room_key,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
            "delivery_state": self.delivery_state.value,
            "read": self.read,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        """Create Message from its dictionary form."""
        return cls(
            id=data["id"],
            sender_id=data["sender_id"],
            recipient_id=data.get("recipient_id"),
            room_key=data["room_key"],
            content=data["content"],
            created_at=_parse_datetime(data.get("created_at")) or utc_now(),
            delivery_state=DeliveryState(
                data.get("delivery_state", DeliveryState.CONFIRMED.value)
            ),
            read=bool(data.get("read", False)),
        )

    def to_dynamodb_item(self) -> dict:
        """Convert to DynamoDB item format."""
        item = {
            "room_key": {"S": self.room_key},
            "sort_key": {"S": f"{self.created_at.isoformat()}#{self.id}"},
            "message_id": {"S": self.id},
            "sender_id": {"S": self.sender_id},
            "content": {"S": self.content},
            "created_at": {"S": self.created_at.isoformat()},
            "read": {"BOOL": self.read},
        }
        if self.recipient_id is not None:
            item["recipient_id"] = {"S": self.recipient_id}
        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict) -> "Message":
        """Create Message from DynamoDB item."""
        return cls(
            id=item["message_id"]["S"],
            sender_id=item["sender_id"]["S"],
            recipient_id=item.get("recipient_id", {}).get("S"),
            room_key=item["room_key"]["S"],
            content=item["content"]["S"],
            created_at=datetime.fromisoformat(item["created_at"]["S"]),
            delivery_state=DeliveryState.CONFIRMED,
            read=item.get("read", {}).get("BOOL", False),
        )


@dataclass
class DeliveryReceipt:
    """Outcome of a send, correlating the optimistic id with the confirmed one."""

    client_id: str
    status: DeliveryState
    message: Optional[Message] = None
    error: Optional[str] = None

    @property
    def confirmed(self) -> bool:
        """Check if the store accepted the message."""
        return self.status == DeliveryState.CONFIRMED

    @classmethod
    def failed(cls, client_id: str, error: str) -> "DeliveryReceipt":
        """Build a failed receipt."""
        return cls(client_id=client_id, status=DeliveryState.FAILED, error=error)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "client_id": self.client_id,
            "status": self.status.value,
            "message": self.message.to_dict() if self.message else None,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DeliveryReceipt":
        """Create DeliveryReceipt from its dictionary form."""
        message = data.get("message")
        return cls(
            client_id=data["client_id"],
            status=DeliveryState(data["status"]),
            message=Message.from_dict(message) if message else None,
            error=data.get("error"),
        )


@dataclass
class Notification:
    """A typed event targeted at one user."""

    target_user_id: str
    type: NotificationType = NotificationType.GENERIC
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=utc_now)
    is_read: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "type": self.type.value,
            "target_user_id": self.target_user_id,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
            "is_read": self.is_read,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Notification":
        """Create Notification from its dictionary form."""
        return cls(
            id=data.get("id") or str(uuid4()),
            type=NotificationType(data.get("type", NotificationType.GENERIC.value)),
            target_user_id=str(data["target_user_id"]),
            payload=data.get("payload") or {},
            created_at=_parse_datetime(data.get("created_at")) or utc_now(),
            is_read=bool(data.get("is_read", False)),
        )


@dataclass
class Pagination:
    """Page request for message history, newest first from ``before``."""

    limit: int = 50
    before: Optional[str] = None
