"""
Tests for converting stored conversation rows into canonical threads.

These are unit tests that do NOT require a database.
"""
from datetime import datetime, timedelta

from app.services.conversation_normalizer import (
    SourceKind,
    normalize_ai_thread,
    normalize_text_conversation,
    normalize_threads,
    normalize_voice_conversation,
    sort_by_recent_activity,
)

T0 = datetime(2026, 3, 2, 12, 0, 0)


def _at(minutes):
    return T0 + timedelta(minutes=minutes)


# ────────────────────────────────────────────
# AI THREADS
# ────────────────────────────────────────────


class TestNormalizeAiThread:

    def test_user_message_without_type_defaults_to_text(self):
        thread = normalize_ai_thread(
            {"id": "a1", "created_at": T0, "last_message_at": _at(1)},
            [
                {"id": "m1", "role": "user", "content": "hi", "created_at": T0},
                {"id": "m2", "role": "assistant", "content": "hello", "created_at": _at(1)},
            ],
        )
        assert thread.source_kind == SourceKind.AI_THREAD
        assert thread.messages[0].type == "text"
        assert thread.messages[1].type is None
        assert thread.has_text_message
        assert not thread.has_voice_message

    def test_navigation_metadata_is_kept(self):
        thread = normalize_ai_thread(
            {"id": "a1", "created_at": T0},
            [{
                "id": "m1", "role": "assistant", "content": "",
                "page_url": "/products/red-shoe", "scroll_to_text": "Size guide",
                "created_at": T0,
            }],
        )
        message = thread.messages[0]
        assert message.page_url == "/products/red-shoe"
        assert message.scroll_to_text == "Size guide"

    def test_messages_sorted_stably(self):
        thread = normalize_ai_thread(
            {"id": "a1", "created_at": T0},
            [
                {"id": "late", "role": "assistant", "content": "", "created_at": _at(5)},
                {"id": "first", "role": "user", "content": "", "created_at": T0},
                {"id": "second", "role": "assistant", "content": "", "created_at": T0},
            ],
        )
        assert [m.id for m in thread.messages] == ["first", "second", "late"]

    def test_iso_strings_with_z_are_parsed(self):
        thread = normalize_ai_thread(
            {"id": "a1", "created_at": "2026-03-02T12:00:00Z"},
            [{"id": "m1", "role": "user", "content": "", "created_at": "2026-03-02T12:05:00.000Z"}],
        )
        assert thread.created_at == T0
        assert thread.messages[0].created_at == _at(5)


# ────────────────────────────────────────────
# TEXT / VOICE CONVERSATIONS
# ────────────────────────────────────────────


class TestNormalizeChatConversations:

    def test_text_conversation_roles_and_actions(self):
        thread = normalize_text_conversation(
            {"id": "c1", "created_at": T0, "most_recent_conversation_at": _at(2)},
            [
                {"id": "m1", "message_type": "user", "content": "add it", "created_at": T0},
                {
                    "id": "m2", "message_type": "ai", "content": "done",
                    "action": "add_to_cart", "action_type": '{"product_name":"Blue Hat"}',
                    "created_at": _at(1),
                },
            ],
        )
        user, assistant = thread.messages
        assert user.role == "user" and user.type == "text"
        assert assistant.role == "assistant" and assistant.type is None
        assert assistant.action == "add_to_cart"
        assert thread.title == "Text Conversation"
        assert thread.last_message_at == _at(2)

    def test_voice_conversation_user_messages_are_voice(self):
        thread = normalize_voice_conversation(
            {"id": "v1", "created_at": T0},
            [{"id": "m1", "message_type": "user", "content": "hey", "created_at": T0}],
        )
        assert thread.source_kind == SourceKind.VOICE_CONVERSATION
        assert thread.has_voice_message
        assert not thread.has_text_message

    def test_action_labelled_message_type_is_assistant(self):
        thread = normalize_text_conversation(
            {"id": "c1", "created_at": T0},
            [{"id": "m1", "message_type": "scroll", "content": "", "created_at": T0}],
        )
        assert thread.messages[0].is_assistant


# ────────────────────────────────────────────
# EDGE CASES
# ────────────────────────────────────────────


class TestNormalizerEdgeCases:

    def test_empty_conversation_is_dropped(self):
        assert normalize_text_conversation({"id": "c1", "created_at": T0}, []) is None

    def test_since_filters_messages_and_drops_emptied_threads(self):
        since = _at(10)
        kept = normalize_text_conversation(
            {"id": "c1", "created_at": T0},
            [
                {"id": "old", "message_type": "user", "content": "", "created_at": _at(1)},
                {"id": "new", "message_type": "ai", "content": "", "created_at": _at(11)},
            ],
            since=since,
        )
        assert [m.id for m in kept.messages] == ["new"]

        dropped = normalize_text_conversation(
            {"id": "c2", "created_at": T0},
            [{"id": "old", "message_type": "user", "content": "", "created_at": _at(1)}],
            since=since,
        )
        assert dropped is None

    def test_invalid_message_time_inherits_header_time(self):
        thread = normalize_text_conversation(
            {"id": "c1", "created_at": T0},
            [{"id": "m1", "message_type": "user", "content": "", "created_at": "not a date"}],
        )
        assert thread.messages[0].created_at == T0

    def test_message_without_any_valid_time_is_skipped(self):
        thread = normalize_text_conversation(
            {"id": "c1", "created_at": None},
            [
                {"id": "bad", "message_type": "user", "content": "", "created_at": "garbage"},
                {"id": "ok", "message_type": "ai", "content": "", "created_at": T0},
            ],
        )
        assert [m.id for m in thread.messages] == ["ok"]
        # Header without created_at falls back to the first message
        assert thread.created_at == T0

    def test_last_message_at_never_precedes_created_at(self):
        thread = normalize_ai_thread(
            {"id": "a1", "created_at": _at(10), "last_message_at": T0},
            [{"id": "m1", "role": "user", "content": "", "created_at": _at(10)}],
        )
        assert thread.last_message_at >= thread.created_at

    def test_missing_content_becomes_empty_string(self):
        thread = normalize_ai_thread(
            {"id": "a1", "created_at": T0},
            [{"id": "m1", "role": "assistant", "content": None, "created_at": T0}],
        )
        assert thread.messages[0].content == ""


# ────────────────────────────────────────────
# COMBINED SOURCES
# ────────────────────────────────────────────


class TestNormalizeThreads:

    def test_all_sources_combined_and_empty_dropped(self):
        threads = normalize_threads(
            ai_threads=[
                ({"id": "a1", "created_at": T0}, [{"id": "m1", "role": "user", "content": "", "created_at": T0}]),
            ],
            text_conversations=[
                ({"id": "c1", "created_at": T0}, [{"id": "m2", "message_type": "user", "content": "", "created_at": T0}]),
                ({"id": "c2", "created_at": T0}, []),
            ],
            voice_conversations=[
                ({"id": "v1", "created_at": T0}, [{"id": "m3", "message_type": "user", "content": "", "created_at": T0}]),
            ],
        )
        assert [(t.id, t.source_kind) for t in threads] == [
            ("a1", SourceKind.AI_THREAD),
            ("c1", SourceKind.TEXT_CONVERSATION),
            ("v1", SourceKind.VOICE_CONVERSATION),
        ]

    def test_sort_by_recent_activity(self):
        threads = normalize_threads(text_conversations=[
            ({"id": "older", "created_at": T0}, [{"id": "m1", "message_type": "user", "content": "", "created_at": T0}]),
            ({"id": "newer", "created_at": _at(30)}, [{"id": "m2", "message_type": "user", "content": "", "created_at": _at(30)}]),
        ])
        assert [t.id for t in sort_by_recent_activity(threads)] == ["newer", "older"]

    def test_to_dict_shape(self):
        thread = normalize_voice_conversation(
            {"id": "v1", "created_at": T0},
            [{"id": "m1", "message_type": "user", "content": "hey", "created_at": T0}],
        )
        data = thread.to_dict()
        assert data["threadId"] == "v1"
        assert data["source_type"] == "voiceconversation"
        assert data["title"] == "Voice Conversation"
        assert data["messageCount"] == 1
        assert data["messages"][0]["createdAt"] == T0.isoformat()
