"""
Tests for access-scoped message search.

Tests cover:
- Case-insensitive substring matching on content and sender name
- Attachment metadata in the search blob
- Ownership scoping and conversation filter
- Ordering and limit
"""

from app.entities import Attachment
from app.search import build_message_search_index


def seed(store):
    """Two conversations for user-a, one for user-b."""
    team = store.create_conversation("user-a", type="group", name="Team")
    direct = store.create_conversation("user-a", type="direct", name="Bob")
    foreign = store.create_conversation("user-b", type="direct", name="Secret")

    messages = {
        "hello_team": store.create_message(team.id, "u1", "Alice", "Hello team"),
        "report": store.create_message(
            team.id,
            "u2",
            "Carol",
            "see attached",
            type="file",
            attachments=[Attachment(id="a1", type="file", url="https://x/1", file_name="Q3-Report.pdf", mime_type="application/pdf")],
        ),
        "hello_bob": store.create_message(direct.id, "u3", "Bob", "hello again"),
        "foreign": store.create_message(foreign.id, "u4", "Mallory", "hello from b"),
    }
    return team, direct, foreign, messages


class TestSearchIndex:
    """Test construction of the per-message search blob."""

    def test_blob_contains_content_sender_and_attachments(self, store):
        _, _, _, messages = seed(store)
        blob = build_message_search_index(messages["report"])

        assert "see attached" in blob
        assert "carol" in blob
        assert "q3-report.pdf application/pdf file" in blob
        assert blob == blob.lower()

    def test_blank_attachment_fields_contribute_nothing(self, store):
        conversation = store.create_conversation("user-a", type="direct", name="x")
        message = store.create_message(
            conversation.id,
            "u1",
            "Ann",
            "pic",
            attachments=[Attachment(id="a", type="image", url="https://x/p", file_name="", mime_type=None)],
        )

        assert build_message_search_index(message) == "pic ann image"


class TestSearchMatching:
    """Test query matching and result shape."""

    def test_case_insensitive_substring(self, store):
        _, _, _, messages = seed(store)

        results = store.search_messages("HELLO", "user-a")

        assert [m.id for m in results] == [messages["hello_bob"].id, messages["hello_team"].id]

    def test_matches_sender_name(self, store):
        _, _, _, messages = seed(store)

        results = store.search_messages("carol", "user-a")

        assert [m.id for m in results] == [messages["report"].id]

    def test_matches_attachment_metadata(self, store):
        _, _, _, messages = seed(store)

        assert [m.id for m in store.search_messages("report.pdf", "user-a")] == [messages["report"].id]
        assert [m.id for m in store.search_messages("application/pdf", "user-a")] == [messages["report"].id]

    def test_query_is_trimmed(self, store):
        _, _, _, messages = seed(store)

        results = store.search_messages("  carol  ", "user-a")

        assert [m.id for m in results] == [messages["report"].id]

    def test_empty_query_returns_all_in_scope_newest_first(self, store):
        _, _, _, messages = seed(store)

        results = store.search_messages("", "user-a")

        assert [m.id for m in results] == [
            messages["hello_bob"].id,
            messages["report"].id,
            messages["hello_team"].id,
        ]

    def test_no_match(self, store):
        seed(store)
        assert store.search_messages("nothing like this", "user-a") == []

    def test_limit(self, store):
        _, _, _, messages = seed(store)

        results = store.search_messages("", "user-a", limit=2)

        assert [m.id for m in results] == [messages["hello_bob"].id, messages["report"].id]

    def test_search_does_not_mutate(self, store):
        team, _, _, _ = seed(store)
        before = store.get_conversation(team.id, "user-a")

        store.search_messages("hello", "user-a")

        assert store.get_conversation(team.id, "user-a") == before


class TestSearchScoping:
    """Test that search never crosses ownership boundaries."""

    def test_other_users_messages_never_returned(self, store):
        _, _, foreign, _ = seed(store)

        results = store.search_messages("hello", "user-a")

        assert all(m.conversation_id != foreign.id for m in results)

    def test_match_in_foreign_conversation_only(self, store):
        conversation = store.create_conversation("user-b", type="direct", name="B")
        store.create_message(conversation.id, "u", "Bee", "hello")

        assert store.search_messages("hello", "user-a") == []

    def test_conversation_filter_narrows(self, store):
        _, direct, _, messages = seed(store)

        results = store.search_messages("hello", "user-a", conversation_id=direct.id)

        assert [m.id for m in results] == [messages["hello_bob"].id]

    def test_foreign_conversation_filter_returns_empty(self, store):
        _, _, foreign, _ = seed(store)

        assert store.search_messages("hello", "user-a", conversation_id=foreign.id) == []
        assert store.search_messages("", "user-a", conversation_id=foreign.id) == []

    def test_unknown_conversation_filter_returns_empty(self, store):
        seed(store)
        assert store.search_messages("hello", "user-a", conversation_id="missing") == []

    def test_user_without_conversations(self, store):
        seed(store)
        assert store.search_messages("", "user-c") == []
