"""Error taxonomy shared by the gateway server and client."""

from typing import Optional


class GatewayError(Exception):
    """Base class for all gateway errors."""

    code: str = "gateway_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        """Convert to the payload of an ``error`` frame."""
        return {"code": self.code, "message": str(self)}


class TransportError(GatewayError):
    """Transient network failure. Triggers bounded reconnection."""

    code = "transport_error"


class AuthError(GatewayError):
    """Invalid or expired credential. Fatal for the current connection."""

    code = "auth_failed"


class ValidationError(GatewayError):
    """Empty or malformed input, rejected before any I/O."""

    code = "validation_error"


class PersistenceError(GatewayError):
    """The message or notification store is unavailable."""

    code = "persistence_error"
