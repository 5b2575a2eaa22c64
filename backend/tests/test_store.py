"""Tests for the DuckDB conversation store."""
import os
import tempfile
from datetime import datetime

import pytest

from tutorlink.errors import AuthorizationError, NotFoundError, ValidationError
from tutorlink.messaging.schemas import UserProfile, UserRole
from tutorlink.messaging import store as store_module
from tutorlink.messaging.store import ConversationStore


@pytest.fixture
def temp_db():
    """Create a temporary database path for testing."""
    # DuckDB creates the file itself
    db_path = tempfile.mktemp(suffix=".duckdb")

    yield db_path

    for path in (db_path, db_path + ".wal"):
        if os.path.exists(path):
            os.remove(path)


class TestUserDirectory:
    def test_upsert_refreshes_profile(self, store):
        store.upsert_user(UserProfile(id="alice", firstName="Alicia", role=UserRole.ADMIN))
        profile = store.get_user("alice")
        assert profile.firstName == "Alicia"
        assert profile.role == UserRole.ADMIN

    def test_unknown_user(self, store):
        assert store.get_user("nobody") is None

    def test_record_identity_without_claims(self, store):
        store.record_identity("dave")
        store.record_identity("alice", {"userId": "alice"})

        assert store.get_user("dave") == UserProfile(id="dave")
        alice = store.get_user("alice")
        assert (alice.firstName, alice.lastName) == ("Alice", "Ng")

    def test_record_identity_from_claims(self, store):
        store.record_identity("dave", {"firstName": "Dave", "lastName": "Kim", "role": "tutor"})
        store.record_identity("bob", {"firstName": "Robert"})

        dave = store.get_user("dave")
        assert (dave.firstName, dave.lastName, dave.role) == ("Dave", "Kim", UserRole.TUTOR)
        bob = store.get_user("bob")
        assert bob.firstName == "Robert"
        assert bob.lastName == "Okafor"
        assert bob.avatar == "https://cdn.example/bob.png"

    def test_record_identity_ignores_unknown_role(self, store):
        store.record_identity("carol", {"firstName": "Caz", "role": "superuser"})
        carol = store.get_user("carol")
        assert (carol.firstName, carol.role) == ("Caz", UserRole.TUTOR)


class TestConversationCreation:
    """Direct conversations are unique per pair."""

    def test_create_returns_created_flag(self, store):
        conversation_id, created = store.create_conversation("alice", "bob", "Calculus help")
        assert created is True
        assert set(store.list_member_ids(conversation_id)) == {"alice", "bob"}
        assert store.get_conversation(conversation_id).title == "Calculus help"

    def test_create_twice_either_order_reuses(self, store):
        first, _ = store.create_conversation("alice", "bob")
        again, created_again = store.create_conversation("alice", "bob")
        reverse, created_reverse = store.create_conversation("bob", "alice")

        assert again == first and reverse == first
        assert created_again is False and created_reverse is False
        assert set(store.list_member_ids(first)) == {"alice", "bob"}

    def test_reuse_keeps_first_title(self, store):
        first, _ = store.create_conversation("alice", "bob", "Algebra")
        second, _ = store.create_conversation("alice", "bob", "Geometry")
        assert second == first
        assert store.get_conversation(first).title == "Algebra"

    def test_group_conversation_is_not_direct(self, store):
        conversation_id, _ = store.create_conversation("alice", "bob")
        store.add_member(conversation_id, "carol")

        assert store.find_direct_conversation("alice", "bob") is None
        new_id, created = store.create_conversation("alice", "bob")
        assert created is True
        assert new_id != conversation_id

    def test_self_conversation_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create_conversation("alice", "alice")

    def test_recipient_without_profile(self, store):
        conversation_id, created = store.create_conversation("alice", "dave")

        assert created is True
        assert set(store.list_member_ids(conversation_id)) == {"alice", "dave"}
        member = store.list_conversations_for_user("alice")[0].members[0]
        assert (member.id, member.firstName, member.role) == ("dave", "", UserRole.STUDENT)

    def test_unknown_conversation(self, store):
        with pytest.raises(NotFoundError):
            store.get_conversation("missing")


class TestMembership:
    def test_add_member(self, store):
        conversation_id, _ = store.create_conversation("alice", "bob")
        assert store.add_member(conversation_id, "carol") is True
        assert store.add_member(conversation_id, "carol") is False
        assert store.is_member(conversation_id, "carol")

    def test_add_user_without_profile(self, store):
        conversation_id, _ = store.create_conversation("alice", "bob")
        assert store.add_member(conversation_id, "dave") is True
        assert store.is_member(conversation_id, "dave")

    def test_add_to_unknown_conversation(self, store):
        with pytest.raises(NotFoundError):
            store.add_member("missing", "carol")


class TestMessages:
    """Appending, ordering and read state."""

    def test_append_then_list_puts_message_last(self, store):
        conversation_id, _ = store.create_conversation("alice", "bob")
        for i in range(5):
            store.append_message(conversation_id, "alice" if i % 2 else "bob", f"msg {i}")
        latest = store.append_message(conversation_id, "alice", "latest")

        history = store.list_messages(conversation_id)

        assert history[-1].id == latest.id
        assert [m.body for m in history] == ["msg 0", "msg 1", "msg 2", "msg 3", "msg 4", "latest"]
        assert all(a.sentAt <= b.sentAt for a, b in zip(history, history[1:]))

    def test_message_enriched_with_sender(self, store):
        conversation_id, _ = store.create_conversation("alice", "bob")
        message = store.append_message(conversation_id, "bob", "Hi")
        assert message.firstName == "Bob"
        assert message.lastName == "Okafor"
        assert message.avatar == "https://cdn.example/bob.png"
        assert message.isRead is False

    def test_append_bumps_updated_at(self, store):
        conversation_id, _ = store.create_conversation("alice", "bob")
        before = store.get_conversation(conversation_id).updatedAt
        message = store.append_message(conversation_id, "alice", "Hello")
        after = store.get_conversation(conversation_id).updatedAt
        assert after >= before
        assert after == message.sentAt

    def test_non_member_append_persists_nothing(self, store):
        conversation_id, _ = store.create_conversation("alice", "bob")
        with pytest.raises(AuthorizationError):
            store.append_message(conversation_id, "carol", "let me in")
        assert store.list_messages(conversation_id) == []

    def test_sent_at_never_goes_backwards(self, store, monkeypatch):
        conversation_id, _ = store.create_conversation("alice", "bob")
        clock = [datetime(2026, 3, 1, 12, 0, 0)]
        monkeypatch.setattr(store_module, "_utcnow", lambda: clock[0])

        first = store.append_message(conversation_id, "alice", "before")
        clock[0] = datetime(2026, 3, 1, 11, 0, 0)
        second = store.append_message(conversation_id, "bob", "after clock step")

        history = store.list_messages(conversation_id)
        assert [m.id for m in history] == [first.id, second.id]
        assert second.sentAt >= first.sentAt
        assert store.list_conversations_for_user("alice")[0].lastMessage.id == second.id

    def test_mark_read_excludes_reader_messages(self, store):
        conversation_id, _ = store.create_conversation("alice", "bob")
        store.append_message(conversation_id, "alice", "from alice")
        store.append_message(conversation_id, "bob", "from bob 1")
        store.append_message(conversation_id, "bob", "from bob 2")

        changed = store.mark_messages_read_excluding_sender(conversation_id, "alice")

        assert changed == 2
        read_state = {m.body: m.isRead for m in store.list_messages(conversation_id)}
        assert read_state == {"from alice": False, "from bob 1": True, "from bob 2": True}
        assert store.mark_messages_read_excluding_sender(conversation_id, "alice") == 0


class TestConversationListing:
    def test_most_recent_first_with_unread(self, store):
        with_bob, _ = store.create_conversation("alice", "bob")
        with_carol, _ = store.create_conversation("alice", "carol")
        store.append_message(with_carol, "carol", "older")
        store.append_message(with_bob, "bob", "newer")
        store.append_message(with_bob, "bob", "newest")

        summaries = store.list_conversations_for_user("alice")

        assert [s.id for s in summaries] == [with_bob, with_carol]
        assert summaries[0].lastMessage.body == "newest"
        assert summaries[0].unreadCount == 2
        assert [m.id for m in summaries[0].members] == ["bob"]
        assert summaries[0].members[0].role == UserRole.TUTOR

    def test_empty_conversation_has_no_last_message(self, store):
        store.create_conversation("alice", "bob")
        summary = store.list_conversations_for_user("bob")[0]
        assert summary.lastMessage is None
        assert summary.unreadCount == 0

    def test_outsider_sees_nothing(self, store):
        store.create_conversation("alice", "bob")
        assert store.list_conversations_for_user("carol") == []


class TestPersistence:
    def test_data_survives_reopen(self, temp_db):
        store = ConversationStore(db_path=temp_db)
        store.upsert_user(UserProfile(id="alice"))
        store.upsert_user(UserProfile(id="bob"))
        conversation_id, _ = store.create_conversation("alice", "bob")
        store.append_message(conversation_id, "alice", "persisted")
        store.close()

        reopened = ConversationStore(db_path=temp_db)
        try:
            assert [m.body for m in reopened.list_messages(conversation_id)] == ["persisted"]
            assert reopened.find_direct_conversation("bob", "alice") == conversation_id
        finally:
            reopened.close()
