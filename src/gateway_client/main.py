"""Command-line chat client for the gateway."""

import asyncio
import logging
import signal
import sys
from typing import Optional

from gateway_client.config import get_client_settings
from gateway_client.credentials import MemoryCredentialStore
from gateway_client.instance import get_controller, init_controller, reset_controller
from gateway_client.session import STATUS
from gateway_common import protocol
from gateway_common.models import Message, Notification

logger = logging.getLogger(__name__)

USAGE = "usage: gateway-client <room_key> | gateway-client @<user_id>"


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def print_message(message: Message) -> None:
    print(f"[{message.room_key}] {message.sender_id}: {message.content}")


def print_notification(notification: Notification) -> None:
    print(f"* {notification.type.value}: {notification.payload.get('message', notification.payload)}")


def parse_target(argv: list[str]) -> tuple[Optional[str], Optional[str]]:
    """
    Parse the chat target from the command line.

    Returns:
        Tuple of (recipient_id, room_key); exactly one is set.
    """
    if len(argv) != 2 or argv[1] in ("-h", "--help"):
        raise SystemExit(USAGE)
    target = argv[1]
    if target.startswith("@"):
        return target[1:], None
    return None, target


async def run_client(recipient_id: Optional[str], room_key: Optional[str]) -> None:
    """Connect, then send each stdin line to the target until EOF or a signal."""
    settings = get_client_settings()

    logger.info("Starting gateway client")
    logger.info(f"Server URL: {settings.server_url}")
    logger.info(f"Reconnect schedule: {settings.reconnect_delays}")

    controller = init_controller(MemoryCredentialStore(settings.access_token), settings)
    controller.subscribe(protocol.MESSAGE_DELIVERED, print_message, owner="cli")
    controller.subscribe(protocol.NOTIFICATION, print_notification, owner="cli")
    controller.subscribe(STATUS, lambda status: print(f"* {status.value}"), owner="cli")

    # Set up graceful shutdown
    shutdown_event = asyncio.Event()

    def handle_shutdown():
        logger.info("Shutdown signal received...")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_shutdown)

    if not await controller.ensure_connected():
        logger.warning("Not connected yet; messages will fail until the connection recovers")

    if room_key:
        await controller.join(room_key)

    try:
        while not shutdown_event.is_set():
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            if not line.strip():
                continue

            controller = get_controller()
            if not controller.is_connected:
                await controller.ensure_connected()

            receipt = await controller.send(line.rstrip("\n"), recipient_id=recipient_id, room_key=room_key)
            if receipt.confirmed:
                print_message(receipt.message)
            else:
                print(f"* not sent ({receipt.error})")
    finally:
        await reset_controller()

    logger.info("Client exited")


def main() -> None:
    """Main entry point."""
    recipient_id, room_key = parse_target(sys.argv)
    configure_logging(get_client_settings().log_level)
    try:
        asyncio.run(run_client(recipient_id, room_key))
    except KeyboardInterrupt:
        logger.info("Client interrupted")


if __name__ == "__main__":
    main()
