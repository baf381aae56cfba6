"""Pure helpers for keeping a conversation's message list consistent."""

from gateway_common.models import DeliveryReceipt, Message


def add_optimistic(messages: list[Message], message: Message) -> list[Message]:
    """Return a new list with an optimistic message appended."""
    return [*messages, message]


def reconcile(messages: list[Message], receipt: DeliveryReceipt) -> list[Message]:
    """
    Apply a send receipt to a message list.

    A confirmed receipt replaces the optimistic entry with the stored
    message. If the stored message is already present (another tab's
    broadcast got there first) the optimistic entry is simply dropped.
    A failed receipt removes the optimistic entry.

    Args:
        messages: Current list, possibly holding the optimistic entry.
        receipt: Receipt for the send whose ``client_id`` is the optimistic id.

    Returns:
        A new list; the input is not modified.
    """
    if not receipt.confirmed or receipt.message is None:
        return [m for m in messages if m.id != receipt.client_id]

    confirmed = receipt.message
    already_present = any(m.id == confirmed.id for m in messages)
    result = []
    for message in messages:
        if message.id == receipt.client_id:
            if not already_present:
                result.append(confirmed)
                already_present = True
        else:
            result.append(message)

    if not already_present:
        result.append(confirmed)
    return result


def merge_delivered(messages: list[Message], message: Message) -> list[Message]:
    """Return a new list with a delivered message appended unless already present."""
    if any(m.id == message.id for m in messages):
        return list(messages)
    return [*messages, message]
