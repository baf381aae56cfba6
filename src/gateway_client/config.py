"""Configuration management for the gateway client."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="CLIENT_",
    )

    # Server connection settings
    server_host: str = "localhost"
    server_port: int = 8765
    server_scheme: str = "ws"  # "ws" or "wss"
    server_path: str = "/ws"

    # Reconnection: fixed delay schedule; its length bounds the attempt count
    reconnect_delays: list[float] = [1.0, 2.0, 5.0, 10.0, 30.0]

    # Connection settings
    connection_timeout: float = 10.0  # Timeout for opening the transport and authenticating

    # Send settings
    send_timeout: float = 15.0  # Max time to wait for a message receipt
    request_timeout: float = 5.0  # Max time to wait for other request replies

    # Subscriber settings
    handler_timeout: float = 30.0  # Timeout for an async subscriber handling one event

    # Bearer token for the command-line client; applications pass a CredentialStore
    access_token: Optional[str] = None

    log_level: str = "INFO"

    @property
    def server_url(self) -> str:
        """Build the full WebSocket server URL."""
        return f"{self.server_scheme}://{self.server_host}:{self.server_port}{self.server_path}"

    @property
    def max_reconnect_attempts(self) -> int:
        """Number of automatic reconnection attempts before giving up."""
        return len(self.reconnect_delays)


@lru_cache
def get_client_settings() -> ClientSettings:
    """Get cached client settings instance."""
    return ClientSettings()
