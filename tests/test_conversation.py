"""Tests for optimistic message reconciliation."""

from datetime import datetime, timezone

from gateway_client.conversation import add_optimistic, merge_delivered, reconcile
from gateway_common.models import DeliveryReceipt, DeliveryState, Message


def _optimistic(content="hi"):
    return Message(sender_id="alice", recipient_id="bob", room_key="alice-bob", content=content)


def _receipt(optimistic, message_id="m-1"):
    confirmed = optimistic.confirm(message_id, datetime(2024, 1, 1, tzinfo=timezone.utc))
    return DeliveryReceipt(
        client_id=optimistic.id,
        status=DeliveryState.CONFIRMED,
        message=confirmed,
    )


def test_confirmed_receipt_replaces_optimistic_entry():
    earlier = _optimistic("earlier")
    pending = _optimistic()
    messages = add_optimistic([earlier], pending)

    result = reconcile(messages, _receipt(pending))

    assert [m.id for m in result] == [earlier.id, "m-1"]
    assert result[1].delivery_state == DeliveryState.CONFIRMED
    assert messages[1] is pending


def test_confirmed_message_already_delivered():
    """The stored copy arrived first; the optimistic entry is dropped."""
    pending = _optimistic()
    receipt = _receipt(pending)
    messages = merge_delivered([pending], receipt.message)

    result = reconcile(messages, receipt)

    assert [m.id for m in result] == ["m-1"]


def test_confirmed_receipt_without_optimistic_entry_appends():
    pending = _optimistic()

    result = reconcile([], _receipt(pending))

    assert [m.id for m in result] == ["m-1"]


def test_failed_receipt_removes_optimistic_entry():
    pending = _optimistic()

    result = reconcile([pending], DeliveryReceipt.failed(pending.id, "persistence_error"))

    assert result == []


def test_merge_delivered_ignores_duplicates():
    message = _receipt(_optimistic()).message

    result = merge_delivered(merge_delivered([], message), message)

    assert len(result) == 1
