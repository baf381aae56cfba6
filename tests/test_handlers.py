"""Tests for frame handling."""

import json

import pytest

from gateway_common import protocol
from gateway_common.errors import ValidationError

from conftest import FakeWebSocket


def _raw(frame_type, data=None, request_id=None):
    return json.dumps(protocol.build_frame(frame_type, data, request_id))


@pytest.mark.asyncio
async def test_message_send_answers_with_receipt(gateway, connect_user):
    alice = await connect_user("alice-token")

    await gateway._handlers.handle(
        alice,
        _raw(protocol.MESSAGE_SEND, {"content": "hi", "room_key": "general"}, "tmp-1"),
    )

    receipt = alice.websocket.frames(protocol.MESSAGE_RECEIPT)[0]
    assert receipt["request_id"] == "tmp-1"
    assert receipt["data"]["client_id"] == "tmp-1"
    assert receipt["data"]["status"] == "confirmed"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "target",
    [{"room_key": 5}, {"recipient_id": 42}, {"room_key": ["general"]}],
)
async def test_non_string_target_fails_receipt(gateway, connect_user, message_store, target):
    alice = await connect_user("alice-token")

    await gateway._handlers.handle(
        alice,
        _raw(protocol.MESSAGE_SEND, {"content": "hi", **target}, "tmp-3"),
    )

    receipt = alice.websocket.frames(protocol.MESSAGE_RECEIPT)[0]
    assert receipt["data"]["status"] == "failed"
    assert receipt["data"]["error"] == "validation_error"
    assert message_store._rooms == {}


@pytest.mark.asyncio
async def test_events_before_auth_are_rejected(gateway):
    conn = gateway.open_connection(FakeWebSocket())

    await gateway._handlers.handle(
        conn,
        _raw(protocol.MESSAGE_SEND, {"content": "hi", "room_key": "general"}, "tmp-2"),
    )

    error = conn.websocket.frames(protocol.ERROR)[0]
    assert error["data"]["code"] == "not_authenticated"
    assert error["request_id"] == "tmp-2"


@pytest.mark.asyncio
async def test_presence_query(gateway, connect_user):
    alice = await connect_user("alice-token")
    await connect_user("bob-token")

    await gateway._handlers.handle(alice, _raw(protocol.PRESENCE_QUERY, {"user_id": "bob"}, "q-1"))
    await gateway._handlers.handle(alice, _raw(protocol.PRESENCE_QUERY, {"user_id": "zoe"}, "q-2"))

    answers = {f["request_id"]: f["data"]["online"] for f in alice.websocket.frames(protocol.PRESENCE)}
    assert answers["q-1"] is True
    assert answers["q-2"] is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw,code",
    [
        ("not json", "invalid_json"),
        (json.dumps({"data": {}}), "invalid_frame"),
        (json.dumps({"type": "join", "data": {}}), "validation_error"),
        (json.dumps({"type": "teleport"}), "unknown_event"),
    ],
)
async def test_bad_frames_get_error_frames(gateway, connect_user, raw, code):
    alice = await connect_user("alice-token")

    await gateway._handlers.handle(alice, raw)

    assert alice.websocket.frames(protocol.ERROR)[-1]["data"]["code"] == code
    assert alice.is_authenticated


class TestProtocol:
    """Tests for frame encoding helpers."""

    def test_build_frame_envelope(self):
        frame = protocol.build_frame(protocol.PING, request_id="r-1")

        assert frame["type"] == "ping"
        assert frame["request_id"] == "r-1"
        assert "timestamp" in frame
        assert "data" not in frame

    def test_decode_fills_missing_data(self):
        frame = protocol.decode_frame(b'{"type": "ping"}')

        assert frame["data"] == {}

    def test_decode_rejects_non_object_data(self):
        with pytest.raises(ValidationError) as exc_info:
            protocol.decode_frame('{"type": "ping", "data": [1]}')

        assert exc_info.value.code == "invalid_frame"
