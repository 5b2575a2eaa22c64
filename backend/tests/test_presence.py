"""Tests for the in-memory presence registry."""
import itertools

from tutorlink.chat.presence import PresenceRegistry


class TestPresenceTransitions:
    """Online/offline transitions reported to the caller."""

    def test_first_connection_comes_online(self):
        registry = PresenceRegistry()
        assert registry.add_connection("alice", "c1") is True
        assert registry.is_online("alice")

    def test_second_connection_is_not_a_transition(self):
        registry = PresenceRegistry()
        registry.add_connection("alice", "c1")
        assert registry.add_connection("alice", "c2") is False
        assert registry.connections_for("alice") == {"c1", "c2"}

    def test_last_connection_goes_offline(self):
        registry = PresenceRegistry()
        registry.add_connection("alice", "c1")
        registry.add_connection("alice", "c2")

        assert registry.remove_connection("alice", "c1") is False
        assert registry.is_online("alice")
        assert registry.remove_connection("alice", "c2") is True
        assert not registry.is_online("alice")

    def test_unknown_handle_is_ignored(self):
        registry = PresenceRegistry()
        registry.add_connection("alice", "c1")

        assert registry.remove_connection("alice", "nope") is False
        assert registry.remove_connection("bob", "c1") is False
        assert registry.is_online("alice")

    def test_offline_user_has_no_entry(self):
        registry = PresenceRegistry()
        registry.add_connection("alice", "c1")
        registry.remove_connection("alice", "c1")

        assert len(registry) == 0
        assert registry.connections_for("alice") == frozenset()
        assert registry.online_users() == []


class TestPresenceInterleavings:
    """N opens and N closes in any order always end offline."""

    def test_every_interleaving_ends_offline(self):
        handles = ["c1", "c2", "c3"]
        for order in itertools.permutations(handles):
            registry = PresenceRegistry()
            transitions = []
            for handle in handles:
                transitions.append(registry.add_connection("alice", handle))
            for handle in order:
                transitions.append(registry.remove_connection("alice", handle))

            assert not registry.is_online("alice")
            assert len(registry) == 0
            # Exactly one online and one offline transition.
            assert transitions.count(True) == 2

    def test_opens_and_closes_interleaved(self):
        registry = PresenceRegistry()
        registry.add_connection("alice", "c1")
        registry.add_connection("alice", "c2")
        registry.remove_connection("alice", "c1")
        registry.add_connection("alice", "c3")
        registry.remove_connection("alice", "c2")
        assert registry.connections_for("alice") == {"c3"}

        registry.remove_connection("alice", "c3")
        assert not registry.is_online("alice")

    def test_snapshot_is_not_live(self):
        registry = PresenceRegistry()
        registry.add_connection("alice", "c1")
        snapshot = registry.connections_for("alice")
        registry.add_connection("alice", "c2")
        assert snapshot == {"c1"}

    def test_online_users_sorted(self):
        registry = PresenceRegistry()
        registry.add_connection("carol", "c3")
        registry.add_connection("alice", "c1")
        registry.add_connection("bob", "c2")
        assert registry.online_users() == ["alice", "bob", "carol"]
