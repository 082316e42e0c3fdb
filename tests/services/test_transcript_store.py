"""Tests for TranscriptStore."""

import time

import pytest
from sqlalchemy.orm import Session

from src.db.models import ChatMessage, ChatSession
from src.errors.domain import NotFoundError, ValidationError
from src.services.transcript_store import TranscriptStore


@pytest.fixture
def store(db_session: Session) -> TranscriptStore:
    """Store under test."""
    return TranscriptStore(db_session)


class TestCreateSession:
    def test_placeholder_title(self, store):
        session = store.create_session("user-1")
        assert session.title == "New Chat"
        assert session.user_id == "user-1"
        assert session.created_at == session.updated_at

    def test_custom_title(self, store):
        assert store.create_session("user-1", title="Planning").title == "Planning"


class TestCreateMessage:
    def test_sequence_increments(self, store):
        session = store.create_session("user-1")
        m1 = store.create_message(session.id, "user", "First")
        m2 = store.create_message(session.id, "assistant", "Second")
        assert (m1.sequence, m2.sequence) == (1, 2)

    def test_explicit_id_and_tool_calls(self, store):
        session = store.create_session("user-1")
        records = [{"call_id": "c1", "tool_name": "GMAIL_SEND_EMAIL", "status": "completed"}]
        msg = store.create_message(
            session.id, "assistant", "Sent.", tool_calls=records, message_id="turn-1"
        )
        assert msg.id == "turn-1"
        loaded = store.get_session(session.id, "user-1")["messages"][0]
        assert loaded["tool_calls"] == records

    def test_bumps_session_updated_at(self, store, db_session):
        session = store.create_session("user-1")
        before = session.updated_at
        time.sleep(0.01)
        store.create_message(session.id, "user", "Hello")
        db_session.refresh(session)
        assert session.updated_at > before

    def test_rejects_unknown_role(self, store):
        session = store.create_session("user-1")
        with pytest.raises(ValidationError):
            store.create_message(session.id, "system", "nope")

    def test_missing_session(self, store):
        with pytest.raises(NotFoundError):
            store.create_message("missing", "user", "Hello")


class TestGetSession:
    def test_messages_in_creation_order(self, store):
        session = store.create_session("user-1")
        for i in range(3):
            store.create_message(session.id, "user", f"m{i}")
        data = store.get_session(session.id, "user-1")
        assert [m["content"] for m in data["messages"]] == ["m0", "m1", "m2"]
        assert data["session"]["title"] == "New Chat"

    def test_limit(self, store):
        session = store.create_session("user-1")
        for i in range(5):
            store.create_message(session.id, "user", f"m{i}")
        assert len(store.get_session(session.id, "user-1", limit=2)["messages"]) == 2

    def test_foreign_session_reads_as_missing(self, store):
        session = store.create_session("user-1")
        with pytest.raises(NotFoundError):
            store.get_session(session.id, "user-2")

    def test_corrupted_tool_calls_degrade_to_empty(self, store, db_session):
        session = store.create_session("user-1")
        msg = store.create_message(session.id, "assistant", "ok")
        msg.tool_calls_json = "{not json"
        db_session.commit()
        assert store.get_session(session.id, "user-1")["messages"][0]["tool_calls"] == []


class TestListSessions:
    def test_most_recent_first(self, store):
        first = store.create_session("user-1")
        time.sleep(0.01)
        second = store.create_session("user-1")
        time.sleep(0.01)
        store.create_message(first.id, "user", "bump")
        ids = [s["id"] for s in store.list_sessions("user-1")]
        assert ids == [first.id, second.id]

    def test_scoped_to_user(self, store):
        store.create_session("user-1")
        store.create_session("user-2")
        assert len(store.list_sessions("user-1")) == 1

    def test_count_and_preview(self, store):
        session = store.create_session("user-1")
        store.create_message(session.id, "user", "x" * 150)
        store.create_message(session.id, "assistant", "reply")
        summary = store.list_sessions("user-1")[0]
        assert summary["message_count"] == 2
        assert summary["preview"] == "x" * 100

    def test_empty_session_summary(self, store):
        store.create_session("user-1")
        summary = store.list_sessions("user-1")[0]
        assert summary["message_count"] == 0
        assert summary["preview"] == ""

    def test_title_filter_is_case_insensitive(self, store):
        store.create_session("user-1", title="Budget Review")
        store.create_session("user-1", title="Team offsite")
        titles = [s["title"] for s in store.list_sessions("user-1", query="budget")]
        assert titles == ["Budget Review"]

    def test_filter_escapes_wildcards(self, store):
        store.create_session("user-1", title="100% done")
        store.create_session("user-1", title="1000 rows")
        assert [s["title"] for s in store.list_sessions("user-1", query="0%")] == ["100% done"]


class TestUpdateAndDelete:
    def test_rename(self, store):
        session = store.create_session("user-1")
        store.update_session_title(session.id, "user-1", "  Trip plans ")
        assert store.get_session(session.id, "user-1")["session"]["title"] == "Trip plans"

    def test_rename_blank_rejected(self, store):
        session = store.create_session("user-1")
        with pytest.raises(ValidationError):
            store.update_session_title(session.id, "user-1", "   ")

    def test_delete_cascades_messages(self, store, db_session):
        session = store.create_session("user-1")
        store.create_message(session.id, "user", "Hello")
        store.delete_session(session.id, "user-1")
        assert db_session.get(ChatSession, session.id) is None
        assert db_session.query(ChatMessage).count() == 0

    def test_delete_foreign_session(self, store):
        session = store.create_session("user-1")
        with pytest.raises(NotFoundError):
            store.delete_session(session.id, "user-2")
        assert store.count_messages(session.id) == 0
