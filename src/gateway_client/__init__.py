"""Client session controller for the community gateway."""

from gateway_client.backoff import ReconnectPolicy
from gateway_client.client import GatewayConnection
from gateway_client.config import ClientSettings, get_client_settings
from gateway_client.conversation import add_optimistic, merge_delivered, reconcile
from gateway_client.credentials import CredentialStore, MemoryCredentialStore
from gateway_client.instance import (
    get_controller,
    init_controller,
    is_controller_initialized,
    reset_controller,
    send,
)
from gateway_client.session import (
    MESSAGE_OPTIMISTIC,
    STATUS,
    ClientSessionController,
    ConnectionStatus,
)
from gateway_client.subscriptions import SubscriptionRegistry

__all__ = [
    # Controller and transport
    "ClientSessionController",
    "ConnectionStatus",
    "GatewayConnection",
    "ReconnectPolicy",
    "SubscriptionRegistry",
    # Local event kinds
    "MESSAGE_OPTIMISTIC",
    "STATUS",
    # Config and credentials
    "ClientSettings",
    "get_client_settings",
    "CredentialStore",
    "MemoryCredentialStore",
    # Conversation helpers
    "add_optimistic",
    "merge_delivered",
    "reconcile",
    # Process-wide instance management
    "get_controller",
    "init_controller",
    "is_controller_initialized",
    "reset_controller",
    # Convenience function
    "send",
]
