"""Tests for the presence registry."""

from uuid import uuid4

from gateway_server.presence import PresenceRegistry


class TestPresenceRegistry:
    """Tests for PresenceRegistry class."""

    def test_first_connection_brings_user_online(self):
        presence = PresenceRegistry()

        assert presence.add("alice", uuid4()) is True
        assert presence.is_online("alice")

    def test_second_connection_is_not_a_transition(self):
        presence = PresenceRegistry()
        presence.add("alice", uuid4())

        assert presence.add("alice", uuid4()) is False

    def test_user_goes_offline_with_last_connection(self):
        presence = PresenceRegistry()
        first, second = uuid4(), uuid4()
        presence.add("alice", first)
        presence.add("alice", second)

        assert presence.remove("alice", first) is False
        assert presence.is_online("alice")

        assert presence.remove("alice", second) is True
        assert not presence.is_online("alice")
        assert presence.online_users() == []

    def test_remove_unknown_connection(self):
        presence = PresenceRegistry()
        presence.add("alice", uuid4())

        assert presence.remove("alice", uuid4()) is False
        assert presence.remove("bob", uuid4()) is False
        assert presence.is_online("alice")

    def test_connections_for_returns_copy(self):
        presence = PresenceRegistry()
        conn_id = uuid4()
        presence.add("alice", conn_id)

        snapshot = presence.connections_for("alice")
        snapshot.clear()

        assert presence.connections_for("alice") == {conn_id}
        assert presence.connections_for("nobody") == set()
