"""Frame delivery to live connections."""

import asyncio
import logging
from typing import Any, Iterable

from websockets.exceptions import ConnectionClosed

from gateway_common.protocol import encode_frame
from gateway_server.models import Connection

logger = logging.getLogger(__name__)


async def deliver(connection: Connection, frame: dict[str, Any]) -> bool:
    """
    Send one frame to one connection.

    A closed transport is not an error here: the connection's own handler
    will notice and clean it up.

    Returns:
        True if the frame was handed to the transport.
    """
    try:
        await connection.websocket.send(encode_frame(frame))
        return True
    except ConnectionClosed:
        logger.debug(f"Skipping delivery to closed connection {connection.connection_id}")
        return False
    except Exception as e:
        logger.warning(f"Error delivering to connection {connection.connection_id}: {e}")
        return False


async def broadcast(connections: Iterable[Connection], frame: dict[str, Any]) -> int:
    """
    Deliver a frame to many connections concurrently.

    Returns:
        Number of connections the frame was delivered to.
    """
    targets = list(connections)
    if not targets:
        return 0

    results = await asyncio.gather(*(deliver(conn, frame) for conn in targets))
    return sum(1 for delivered in results if delivered)
