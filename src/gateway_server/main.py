"""Entry point for the gateway server."""

import asyncio
import logging
import signal
import sys

from aiohttp import web
from websockets.asyncio.server import serve

from gateway_server.auth import JWTAuthVerifier
from gateway_server.config import get_settings
from gateway_server.http import create_http_app
from gateway_server.server import GatewayServer
from gateway_server.stores import create_stores

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the gateway process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


async def run_server() -> None:
    """Initialize and run the gateway WebSocket server and HTTP API server."""
    settings = get_settings()

    logger.info(f"Starting gateway on {settings.host}:{settings.port}{settings.ws_path}")
    logger.info(f"Starting HTTP server on {settings.host}:{settings.http_port}")

    if settings.is_local_dev:
        logger.info(f"Running in local development mode with endpoint: {settings.dynamodb_endpoint_url}")

    message_store, notification_store = create_stores(settings)

    gateway = GatewayServer(
        verifier=JWTAuthVerifier(settings),
        message_store=message_store,
        notification_store=notification_store,
        settings=settings,
    )

    # Create HTTP app with access to the gateway
    http_app = create_http_app(gateway)

    # Set up graceful shutdown
    stop_event = asyncio.Event()

    def handle_shutdown():
        logger.info("Shutdown signal received, stopping servers...")
        stop_event.set()

    # Register signal handlers
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_shutdown)

    # Start the HTTP server
    http_runner = web.AppRunner(http_app)
    await http_runner.setup()
    http_site = web.TCPSite(http_runner, settings.host, settings.http_port)
    await http_site.start()

    logger.info(f"HTTP server listening on http://{settings.host}:{settings.http_port}")

    # Start the WebSocket server; keepalive pings are sent by the gateway itself
    async with serve(
        gateway.handle_connection,
        settings.host,
        settings.port,
        ping_interval=None,
    ):
        logger.info(f"Gateway listening on ws://{settings.host}:{settings.port}{settings.ws_path}")

        # Wait for shutdown signal
        await stop_event.wait()

        logger.info("Initiating graceful shutdown...")
        await gateway.close_all_connections(timeout=settings.shutdown_timeout)

    # Clean up HTTP server
    await http_runner.cleanup()

    logger.info("Servers stopped")


def main() -> None:
    """Main entry point."""
    configure_logging(get_settings().log_level)
    try:
        asyncio.run(run_server())
    except KeyboardInterrupt:
        logger.info("Server interrupted")


if __name__ == "__main__":
    main()
