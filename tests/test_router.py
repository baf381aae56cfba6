"""Tests for message routing."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from gateway_common import protocol
from gateway_common.errors import PersistenceError
from gateway_common.models import ConnectionState, DeliveryState, Pagination
from gateway_common.rooms import direct_room_key
from gateway_server.rooms import RoomDirectory
from gateway_server.router import MessageRouter


@pytest.mark.asyncio
async def test_direct_message_round_trip(gateway, connect_user):
    """A confirmed message reaches the other participant, never the origin."""
    alice = await connect_user("alice-token")
    bob = await connect_user("bob-token")
    room = direct_room_key("alice", "bob")
    await gateway.request_room_op(alice, protocol.JOIN, room)
    await gateway.request_room_op(bob, protocol.JOIN, room)

    receipt = await gateway.router.send(alice, "hi bob", "tmp-1", recipient_id="bob")

    assert receipt.confirmed
    assert receipt.client_id == "tmp-1"
    assert receipt.message.id != "tmp-1"
    assert receipt.message.delivery_state == DeliveryState.CONFIRMED
    assert receipt.message.room_key == room

    delivered = bob.websocket.frames(protocol.MESSAGE_DELIVERED)
    assert len(delivered) == 1
    assert delivered[0]["data"]["id"] == receipt.message.id
    assert delivered[0]["data"]["content"] == "hi bob"
    assert alice.websocket.frames(protocol.MESSAGE_DELIVERED) == []


@pytest.mark.asyncio
async def test_direct_message_reaches_recipient_without_join(gateway, connect_user):
    """An online recipient gets the full message on every connection without joining."""
    alice = await connect_user("alice-token")
    phone = await connect_user("bob-token")
    laptop = await connect_user("bob-token")
    await gateway.request_room_op(laptop, protocol.JOIN, direct_room_key("alice", "bob"))

    receipt = await gateway.router.send(alice, "hi bob", "tmp-5", recipient_id="bob")

    for bob in (phone, laptop):
        delivered = bob.websocket.frames(protocol.MESSAGE_DELIVERED)
        assert len(delivered) == 1
        assert delivered[0]["data"]["id"] == receipt.message.id
        assert delivered[0]["data"]["content"] == "hi bob"
    assert alice.websocket.frames(protocol.MESSAGE_DELIVERED) == []


@pytest.mark.asyncio
async def test_direct_message_notifies_recipient(gateway, connect_user, notification_store):
    alice = await connect_user("alice-token")
    bob = await connect_user("bob-token")

    receipt = await gateway.router.send(alice, "are you there?", "tmp-2", recipient_id="bob")
    await gateway.fanout.drain()

    notifications = bob.websocket.frames(protocol.NOTIFICATION)
    assert len(notifications) == 1
    payload = notifications[0]["data"]["payload"]
    assert payload["message_id"] == receipt.message.id
    assert payload["sender_id"] == "alice"
    assert payload["preview"] == "are you there?"
    assert len(await notification_store.recent("bob")) == 1


@pytest.mark.asyncio
async def test_offline_recipient_reads_history_later(gateway, connect_user):
    """Sending to an offline user succeeds; the message is in history."""
    alice = await connect_user("alice-token")

    receipt = await gateway.router.send(alice, "see you later", "tmp-3", recipient_id="bob")

    assert receipt.confirmed
    assert gateway.fanout.delivery_misses == 1

    history = await gateway.router.history(direct_room_key("bob", "alice"))
    assert [m.id for m in history] == [receipt.message.id]


@pytest.mark.asyncio
async def test_room_message_reaches_all_other_members(gateway, connect_user):
    alice = await connect_user("alice-token")
    bob = await connect_user("bob-token")
    carol = await connect_user("carol-token")
    for conn in (alice, bob, carol):
        await gateway.request_room_op(conn, protocol.JOIN, "general")

    receipt = await gateway.router.send(bob, "hello all", "tmp-4", room_key="general")

    assert receipt.confirmed
    assert len(alice.websocket.frames(protocol.MESSAGE_DELIVERED)) == 1
    assert len(carol.websocket.frames(protocol.MESSAGE_DELIVERED)) == 1
    assert bob.websocket.frames(protocol.MESSAGE_DELIVERED) == []
    # Topic rooms do not produce direct-message notifications
    assert alice.websocket.frames(protocol.NOTIFICATION) == []


@pytest.mark.asyncio
async def test_persistence_failure_is_not_broadcast(make_connection, settings):
    store = AsyncMock()
    store.persist.side_effect = PersistenceError("table unavailable")
    rooms = RoomDirectory()
    router = MessageRouter(rooms, store, settings=settings)
    alice = make_connection("alice")
    bob = make_connection("bob")
    rooms.join(alice, "general")
    rooms.join(bob, "general")

    receipt = await router.send(alice, "lost", "tmp-5", room_key="general")

    assert receipt.status == DeliveryState.FAILED
    assert receipt.error == "persistence_error"
    assert receipt.message is None
    assert bob.websocket.sent == []


@pytest.mark.asyncio
async def test_slow_store_times_out(make_connection, settings):
    async def never_answers(message):
        await asyncio.sleep(10)

    store = AsyncMock()
    store.persist.side_effect = never_answers
    settings.persist_timeout = 0.01
    router = MessageRouter(RoomDirectory(), store, settings=settings)

    receipt = await router.send(make_connection("alice"), "hello", "tmp-6", room_key="general")

    assert receipt.status == DeliveryState.FAILED
    assert receipt.error == "persistence_error"


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "   ", None])
async def test_empty_content_is_rejected(make_connection, settings, content):
    store = AsyncMock()
    router = MessageRouter(RoomDirectory(), store, settings=settings)

    receipt = await router.send(make_connection("alice"), content, "tmp-7", room_key="general")

    assert receipt.error == "validation_error"
    store.persist.assert_not_called()


@pytest.mark.asyncio
async def test_oversized_content_is_rejected(make_connection, settings):
    store = AsyncMock()
    router = MessageRouter(RoomDirectory(), store, settings=settings)

    receipt = await router.send(
        make_connection("alice"),
        "x" * (settings.max_message_length + 1),
        "tmp-8",
        room_key="general",
    )

    assert receipt.error == "validation_error"
    store.persist.assert_not_called()


@pytest.mark.asyncio
async def test_missing_target_is_rejected(make_connection, settings):
    store = AsyncMock()
    router = MessageRouter(RoomDirectory(), store, settings=settings)

    receipt = await router.send(make_connection("alice"), "hi", "tmp-9")

    assert receipt.error == "validation_error"


@pytest.mark.asyncio
async def test_unauthenticated_sender_is_rejected(make_connection, settings):
    store = AsyncMock()
    router = MessageRouter(RoomDirectory(), store, settings=settings)
    conn = make_connection("alice")
    conn.state = ConnectionState.AUTHENTICATING

    receipt = await router.send(conn, "hi", "tmp-10", room_key="general")

    assert receipt.error == "auth_failed"
    store.persist.assert_not_called()


@pytest.mark.asyncio
async def test_history_pages_oldest_first(gateway, connect_user):
    alice = await connect_user("alice-token")
    ids = []
    for i in range(4):
        receipt = await gateway.router.send(alice, f"m{i}", f"tmp-{i}", room_key="general")
        ids.append(receipt.message.id)

    page = await gateway.router.history("general", Pagination(limit=2))

    assert [m.id for m in page] == ids[2:]
