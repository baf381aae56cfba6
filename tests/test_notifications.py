"""Tests for notification fan-out."""

from unittest.mock import AsyncMock

import pytest

from gateway_common import protocol
from gateway_common.errors import PersistenceError
from gateway_common.models import Notification, NotificationType
from gateway_server.notifications import NotificationFanout
from gateway_server.presence import PresenceRegistry


def _fanout(connections, store=None):
    presence = PresenceRegistry()
    by_id = {}
    for conn in connections:
        presence.add(conn.user_id, conn.connection_id)
        by_id[conn.connection_id] = conn
    return NotificationFanout(presence, by_id.get, store)


@pytest.mark.asyncio
async def test_notify_reaches_every_connection_of_user(make_connection):
    phone = make_connection("alice")
    laptop = make_connection("alice")
    other = make_connection("bob")
    fanout = _fanout([phone, laptop, other])
    notification = Notification(
        target_user_id="alice",
        type=NotificationType.REQUEST_UPDATE,
        payload={"message": "Your request was accepted"},
    )

    delivered = await fanout.notify("alice", notification)

    assert delivered == 2
    for conn in (phone, laptop):
        frames = conn.websocket.frames(protocol.NOTIFICATION)
        assert frames[0]["data"]["id"] == notification.id
        assert frames[0]["data"]["type"] == "request_update"
    assert other.websocket.sent == []


@pytest.mark.asyncio
async def test_offline_user_is_a_delivery_miss(make_connection):
    fanout = _fanout([make_connection("bob")])

    delivered = await fanout.notify("alice", Notification(target_user_id="alice"))

    assert delivered == 0
    assert fanout.delivery_misses == 1


@pytest.mark.asyncio
async def test_closed_connection_does_not_block_others(make_connection):
    broken = make_connection("alice")
    healthy = make_connection("alice")
    broken.websocket.close_code = 1006
    fanout = _fanout([broken, healthy])

    delivered = await fanout.notify("alice", Notification(target_user_id="alice"))

    assert delivered == 1
    assert len(healthy.websocket.sent) == 1


@pytest.mark.asyncio
async def test_record_failure_is_logged_not_raised(make_connection):
    store = AsyncMock()
    store.record_if_requested.side_effect = PersistenceError("down")
    fanout = _fanout([make_connection("alice")], store)
    notification = Notification(target_user_id="alice")

    fanout.record(notification)
    await fanout.drain()

    store.record_if_requested.assert_awaited_once_with(notification)


@pytest.mark.asyncio
async def test_record_without_store_is_noop(make_connection):
    fanout = _fanout([make_connection("alice")])

    fanout.record(Notification(target_user_id="alice"))
    await fanout.drain()
