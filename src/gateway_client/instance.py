"""Process-wide session controller lifecycle."""

import logging
from typing import Optional

from gateway_client.config import ClientSettings, get_client_settings
from gateway_client.credentials import CredentialStore
from gateway_client.session import ClientSessionController, Connector
from gateway_common.models import DeliveryReceipt

logger = logging.getLogger(__name__)

# The one controller of this process, owned through the functions below
_controller: Optional[ClientSessionController] = None


def get_controller() -> ClientSessionController:
    """
    Get the process-wide session controller.

    Returns:
        The controller created by init_controller().

    Raises:
        RuntimeError: If the controller has not been initialized.
            Call init_controller() first.

    Example:
        ```python
        from gateway_client import get_controller

        async def open_chat(room_key: str):
            controller = get_controller()
            await controller.ensure_connected()
            await controller.join(room_key)
        ```
    """
    if _controller is None:
        raise RuntimeError(
            "Session controller not initialized. Call init_controller() first."
        )
    return _controller


def init_controller(
    credentials: CredentialStore,
    settings: Optional[ClientSettings] = None,
    connector: Optional[Connector] = None,
) -> ClientSessionController:
    """
    Create the process-wide session controller.

    Call once after login, before any view uses get_controller().

    Args:
        credentials: Credential store owned by the authentication flow.
        settings: Client settings. If None, uses get_client_settings().
        connector: Optional transport factory (tests inject fakes here).

    Returns:
        The initialized controller.

    Raises:
        RuntimeError: If a controller already exists.
            Call reset_controller() first, e.g. on logout.
    """
    global _controller

    if _controller is not None:
        raise RuntimeError(
            "Session controller already initialized. "
            "Call reset_controller() first if you need to reinitialize."
        )

    _controller = ClientSessionController(
        settings=settings or get_client_settings(),
        credentials=credentials,
        connector=connector,
    )
    logger.info("Session controller initialized")

    return _controller


async def reset_controller() -> None:
    """
    Close and discard the process-wide controller.

    Used on logout and in tests. Closing drops the connection and every
    subscription.
    """
    global _controller

    if _controller is not None:
        logger.info("Resetting session controller")
        await _controller.close()
        _controller = None


def is_controller_initialized() -> bool:
    """
    Check if the controller has been initialized.

    Returns:
        True if init_controller() has been called and reset_controller() has not.
    """
    return _controller is not None


async def send(
    content: str,
    recipient_id: Optional[str] = None,
    room_key: Optional[str] = None,
) -> DeliveryReceipt:
    """
    Send a message using the process-wide controller.

    Raises:
        RuntimeError: If the controller has not been initialized.
    """
    return await get_controller().send(content, recipient_id=recipient_id, room_key=room_key)
