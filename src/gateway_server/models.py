"""Data models for the gateway server."""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from gateway_common.models import ConnectionState, Identity, utc_now


@dataclass(eq=False)
class Connection:
    """
    One live WebSocket transport between a client and the gateway.

    Identity is bound once per authenticated session; re-authentication
    replaces it. ``rooms`` is owned by the RoomDirectory and must only be
    changed through it.
    """

    websocket: Any
    connection_id: UUID = field(default_factory=uuid4)
    state: ConnectionState = ConnectionState.CONNECTING
    identity: Optional[Identity] = None
    credential: Optional[str] = None
    rooms: set[str] = field(default_factory=set)
    # (frame type, room key) requested before authentication, in call order
    pending_ops: deque = field(default_factory=deque)
    connected_at: datetime = field(default_factory=utc_now)
    last_activity: datetime = field(default_factory=utc_now)

    @property
    def user_id(self) -> Optional[str]:
        """Return the bound user id, if authenticated."""
        return self.identity.user_id if self.identity else None

    @property
    def is_authenticated(self) -> bool:
        """Check if the connection has completed the handshake."""
        return self.state == ConnectionState.AUTHENTICATED

    def touch(self) -> None:
        """Record activity on the connection."""
        self.last_activity = utc_now()

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "connection_id": str(self.connection_id),
            "state": self.state.value,
            "user_id": self.user_id,
            "rooms": sorted(self.rooms),
            "connected_at": self.connected_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
        }
