"""Credential verification for gateway connections."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import jwt
from jwt import ExpiredSignatureError, InvalidTokenError

from gateway_common.errors import AuthError
from gateway_common.models import Identity
from gateway_server.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Claims checked, in order, for the user id
USER_ID_CLAIMS = ("sub", "id", "_id", "user_id")


class AuthVerifier(Protocol):
    """Turns a bearer credential into an Identity."""

    async def verify(self, credential: str) -> Identity:
        """Return the identity for the credential or raise AuthError."""
        ...


class JWTAuthVerifier:
    """
    Verifies HS256 access tokens issued by the REST authentication flow.

    The user id is read from the first present claim of ``USER_ID_CLAIMS``.
    Optional ``name`` and ``trust`` claims fill in the display name and the
    trust/reputation metadata.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _decode(self, credential: str) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if self.settings.jwt_audience is None:
            options["verify_aud"] = False

        return jwt.decode(
            credential,
            self.settings.jwt_secret,
            algorithms=[self.settings.jwt_algorithm],
            audience=self.settings.jwt_audience,
            issuer=self.settings.jwt_issuer,
            leeway=self.settings.jwt_leeway_seconds,
            options=options,
        )

    async def verify(self, credential: str) -> Identity:
        """
        Verify a bearer credential.

        Args:
            credential: The raw token, without the ``Bearer`` prefix.

        Returns:
            The decoded Identity.

        Raises:
            AuthError: If the token is missing, malformed, expired or lacks a user id.
        """
        if not credential:
            raise AuthError("Authentication required")

        try:
            payload = self._decode(credential)
        except ExpiredSignatureError as e:
            raise AuthError("Credential expired", code="auth_expired") from e
        except InvalidTokenError as e:
            logger.info(f"Rejected credential: {e}")
            raise AuthError("Invalid credential") from e

        user_id = next((payload[c] for c in USER_ID_CLAIMS if payload.get(c)), None)
        if user_id is None:
            raise AuthError("Credential has no user id claim")

        expires_at = None
        if "exp" in payload:
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)

        trust = payload.get("trust")
        return Identity(
            user_id=str(user_id),
            display_name=payload.get("name"),
            trust=trust if isinstance(trust, dict) else {},
            expires_at=expires_at,
        )


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
