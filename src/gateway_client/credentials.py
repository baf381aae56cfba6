"""Access to the bearer credential owned by the authentication flow."""

from typing import Optional, Protocol


class CredentialStore(Protocol):
    """Read-only view of the current bearer token."""

    def get_token(self) -> Optional[str]:
        """Return the current token, or None when logged out."""
        ...


class MemoryCredentialStore:
    """Holds a token in memory; the login/refresh flow writes it."""

    def __init__(self, token: Optional[str] = None):
        self._token = token

    def get_token(self) -> Optional[str]:
        return self._token

    def set_token(self, token: Optional[str]) -> None:
        self._token = token
