"""Tests for client subscriptions."""

import asyncio

import pytest

from gateway_client.subscriptions import SubscriptionRegistry


@pytest.mark.asyncio
async def test_resubscribe_replaces_handler():
    """A view that subscribes twice receives each event once."""
    registry = SubscriptionRegistry()
    received = []

    registry.subscribe("notification", lambda p: received.append(("old", p)), owner="inbox")
    registry.subscribe("notification", lambda p: received.append(("new", p)), owner="inbox")

    assert registry.count("notification") == 1
    await registry.dispatch("notification", 1)
    assert received == [("new", 1)]


@pytest.mark.asyncio
async def test_stale_unsubscribe_keeps_newer_handler():
    registry = SubscriptionRegistry()
    received = []

    unsubscribe_old = registry.subscribe("presence", received.append, owner="list")
    registry.subscribe("presence", received.append, owner="list")
    unsubscribe_old()

    assert registry.count("presence") == 1
    await registry.dispatch("presence", "x")
    assert received == ["x"]


@pytest.mark.asyncio
async def test_same_handler_is_not_stacked_without_owner():
    registry = SubscriptionRegistry()
    received = []

    registry.subscribe("status", received.append)
    registry.subscribe("status", received.append)

    assert await registry.dispatch("status", "online") == 1
    assert received == ["online"]


@pytest.mark.asyncio
async def test_unsubscribe_removes_handler():
    registry = SubscriptionRegistry()
    unsubscribe = registry.subscribe("status", lambda p: None)

    unsubscribe()
    unsubscribe()

    assert registry.count("status") == 0
    assert await registry.dispatch("status", None) == 0


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_others():
    registry = SubscriptionRegistry(handler_timeout=0.01)
    received = []

    def broken(payload):
        raise RuntimeError("boom")

    async def slow(payload):
        await asyncio.sleep(1)

    async def collect(payload):
        received.append(payload)

    registry.subscribe("message:delivered", broken)
    registry.subscribe("message:delivered", slow)
    registry.subscribe("message:delivered", collect)

    assert await registry.dispatch("message:delivered", "m") == 3
    assert received == ["m"]
