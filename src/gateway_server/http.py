"""HTTP endpoints using aiohttp."""

import logging
from typing import TYPE_CHECKING

from aiohttp import web

from gateway_common.errors import AuthError, PersistenceError
from gateway_common.models import Notification, Pagination
from gateway_server.auth import bearer_token

if TYPE_CHECKING:
    from gateway_server.server import GatewayServer

logger = logging.getLogger(__name__)

MAX_HISTORY_PAGE = 100


async def health_handler(request: web.Request) -> web.Response:
    """
    Health check endpoint.

    Returns server status, active connection and online user counts.
    """
    gateway: GatewayServer = request.app["gateway"]

    return web.json_response(
        {
            "status": "healthy",
            "active_connections": gateway.active_connection_count,
            "online_users": len(gateway.presence.online_users()),
            "rooms": gateway.rooms.room_count,
        }
    )


async def presence_handler(request: web.Request) -> web.Response:
    """Report whether a user currently has a live connection."""
    gateway: GatewayServer = request.app["gateway"]
    user_id = request.match_info["user_id"]

    return web.json_response({"user_id": user_id, "online": gateway.is_online(user_id)})


async def notify_handler(request: web.Request) -> web.Response:
    """
    Push a notification on behalf of an external collaborator.

    Body: ``{"target_user_id", "type", "payload", "persist"}``. Requires the
    internal API token as a bearer credential when one is configured.
    """
    gateway: GatewayServer = request.app["gateway"]

    expected = gateway.settings.internal_api_token
    if expected and bearer_token(request.headers.get("Authorization")) != expected:
        raise web.HTTPUnauthorized(reason="Invalid internal API token")

    try:
        body = await request.json()
        notification = Notification.from_dict(body)
    except (ValueError, KeyError, TypeError) as e:
        raise web.HTTPBadRequest(reason=f"Invalid notification: {e}")

    delivered = await gateway.notify(
        notification.target_user_id,
        notification,
        persist=bool(body.get("persist", False)),
    )

    return web.json_response(
        {"notification_id": notification.id, "delivered": delivered},
        status=202,
    )


async def history_handler(request: web.Request) -> web.Response:
    """Return a page of a room's message history to an authenticated user."""
    gateway: GatewayServer = request.app["gateway"]

    try:
        await gateway.verifier.verify(bearer_token(request.headers.get("Authorization")))
    except AuthError as e:
        raise web.HTTPUnauthorized(reason=str(e))

    try:
        limit = min(int(request.query.get("limit", 50)), MAX_HISTORY_PAGE)
    except ValueError:
        raise web.HTTPBadRequest(reason="'limit' must be an integer")

    pagination = Pagination(limit=limit, before=request.query.get("before"))
    try:
        messages = await gateway.router.history(request.match_info["room_key"], pagination)
    except PersistenceError as e:
        raise web.HTTPServiceUnavailable(reason=str(e))

    return web.json_response({"messages": [m.to_dict() for m in messages]})


def create_http_app(gateway: "GatewayServer") -> web.Application:
    """
    Create and configure the aiohttp application.

    Args:
        gateway: Gateway instance for accessing server state.

    Returns:
        Configured aiohttp Application.
    """
    app = web.Application()

    # Store gateway in app for access in request handlers
    app["gateway"] = gateway

    # Register routes
    app.router.add_get("/health", health_handler)
    app.router.add_get("/presence/{user_id}", presence_handler)
    app.router.add_post("/notifications", notify_handler)
    app.router.add_get("/rooms/{room_key}/messages", history_handler)

    logger.info(
        "HTTP routes registered: GET /health, GET /presence/{user_id}, "
        "POST /notifications, GET /rooms/{room_key}/messages"
    )

    return app
