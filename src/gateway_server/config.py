"""Configuration management using pydantic-settings."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Gateway settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="GATEWAY_",
    )

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8765
    http_port: int = 8766
    ws_path: str = "/ws"
    log_level: str = "INFO"

    def is_valid_path(self, path: str) -> bool:
        """
        Check if a request path targets the gateway endpoint.

        Args:
            path: The URL path (without query string).
        """
        return path.rstrip("/") == self.ws_path.rstrip("/")

    # Credential verification (HS256 access tokens issued by the REST layer)
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_issuer: Optional[str] = None
    jwt_audience: Optional[str] = None
    jwt_leeway_seconds: int = 5

    # Token required by external collaborators posting notifications over HTTP.
    # None disables the check (local development only).
    internal_api_token: Optional[str] = None

    # Handshake and keepalive
    handshake_timeout: float = 10.0  # Seconds to complete authentication
    pong_timeout: float = 10.0  # Wait this long for a pong after pinging an idle connection
    recv_timeout: float = 25.0  # Idle time before the server pings

    # Messaging
    max_message_length: int = 4000
    persist_timeout: float = 10.0  # Bound on a message store write
    notify_on_direct_message: bool = True
    broadcast_presence: bool = True

    # Storage backend: "memory" or "dynamodb"
    store_backend: str = "memory"

    # AWS settings
    aws_region: str = "us-east-1"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None

    # DynamoDB settings
    dynamodb_messages_table: str = "gateway_messages"
    dynamodb_notifications_table: str = "gateway_notifications"
    dynamodb_endpoint_url: Optional[str] = None  # Set for LocalStack, None for real AWS

    # Shutdown settings
    shutdown_timeout: float = 5.0  # Seconds to wait for connections to close gracefully

    @property
    def is_local_dev(self) -> bool:
        """Check if running in local development mode (using LocalStack)."""
        return self.dynamodb_endpoint_url is not None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
