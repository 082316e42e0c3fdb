"""Transcript store for chat sessions and messages.

Thin layer between the chat services and the SQLAlchemy models. Every read
is scoped to the owning user: a session that exists but belongs to someone
else is reported exactly like a missing one.
"""

import json
import logging
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.db.models import (
    DEFAULT_SESSION_TITLE,
    ChatMessage,
    ChatSession,
    MessageRole,
    generate_uuid,
    utc_now_iso,
)
from src.errors.domain import NotFoundError, PersistenceError, ValidationError

logger = logging.getLogger(__name__)

# Characters of the first message shown beside a session in history lists.
PREVIEW_LENGTH = 100


def _serialize_message(m: ChatMessage) -> dict[str, Any]:
    tool_calls: list[dict[str, Any]] = []
    if m.tool_calls_json:
        try:
            loaded = json.loads(m.tool_calls_json)
            if isinstance(loaded, list):
                tool_calls = loaded
        except (json.JSONDecodeError, TypeError):
            logger.warning("Corrupted tool_calls_json for message %s", m.id)
    return {
        "id": m.id,
        "role": m.role,
        "content": m.content,
        "tool_calls": tool_calls,
        "sequence": m.sequence,
        "created_at": m.created_at,
    }


class TranscriptStore:
    """CRUD operations for persistent chat sessions and messages.

    Args:
        db: SQLAlchemy session (sync).
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def _owned_session(self, session_id: str, user_id: str) -> ChatSession:
        session = self._db.get(ChatSession, session_id)
        if session is None or session.user_id != user_id:
            raise NotFoundError("Session", session_id)
        return session

    def _commit(self, operation: str) -> None:
        try:
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            raise PersistenceError(operation, e) from e

    def create_session(
        self,
        user_id: str,
        title: str = DEFAULT_SESSION_TITLE,
    ) -> ChatSession:
        """Create a new empty session owned by user_id.

        Args:
            user_id: Owner's identity-provider id.
            title: Initial title (placeholder by default).

        Returns:
            The created ChatSession.
        """
        now = utc_now_iso()
        session = ChatSession(
            id=generate_uuid(),
            user_id=user_id,
            title=title,
            created_at=now,
            updated_at=now,
        )
        self._db.add(session)
        self._commit("create session")
        return session

    def list_sessions(
        self,
        user_id: str,
        query: str | None = None,
    ) -> list[dict[str, Any]]:
        """List a user's sessions, most recently updated first.

        Args:
            user_id: Owner's identity-provider id.
            query: Optional case-insensitive title substring filter.

        Returns:
            Session summary dicts with message_count and preview.
        """
        count_subq = (
            self._db.query(
                ChatMessage.session_id.label("session_id"),
                func.count(ChatMessage.id).label("message_count"),
                func.min(ChatMessage.sequence).label("first_seq"),
            )
            .group_by(ChatMessage.session_id)
            .subquery()
        )
        rows = (
            self._db.query(
                ChatSession.id,
                ChatSession.title,
                ChatSession.created_at,
                ChatSession.updated_at,
                func.coalesce(count_subq.c.message_count, 0),
                ChatMessage.content,
            )
            .outerjoin(count_subq, count_subq.c.session_id == ChatSession.id)
            .outerjoin(
                ChatMessage,
                (ChatMessage.session_id == ChatSession.id)
                & (ChatMessage.sequence == count_subq.c.first_seq),
            )
            .filter(ChatSession.user_id == user_id)
        )

        needle = (query or "").strip().lower()
        if needle:
            rows = rows.filter(func.lower(ChatSession.title).contains(needle, autoescape=True))

        rows = rows.order_by(
            ChatSession.updated_at.desc(),
            ChatSession.created_at.desc(),
        )

        results = []
        for row in rows.all():
            preview = row[5] or ""
            results.append({
                "id": row[0],
                "title": row[1],
                "created_at": row[2],
                "updated_at": row[3],
                "message_count": int(row[4]),
                "preview": preview[:PREVIEW_LENGTH],
            })
        return results

    def get_session(
        self,
        session_id: str,
        user_id: str,
        limit: int | None = None,
    ) -> dict[str, Any]:
        """Load a session and its messages in creation order.

        Args:
            session_id: Session ID.
            user_id: Caller's identity-provider id.
            limit: Max messages to return from the start (None = all).

        Returns:
            Dict with 'session' and 'messages' keys.

        Raises:
            NotFoundError: Session absent or owned by another user.
        """
        session = self._owned_session(session_id, user_id)

        msg_query = (
            self._db.query(ChatMessage)
            .filter_by(session_id=session_id)
            .order_by(ChatMessage.sequence)
        )
        if limit is not None:
            msg_query = msg_query.limit(limit)

        return {
            "session": {
                "id": session.id,
                "title": session.title,
                "created_at": session.created_at,
                "updated_at": session.updated_at,
            },
            "messages": [_serialize_message(m) for m in msg_query.all()],
        }

    def count_messages(self, session_id: str) -> int:
        return (
            self._db.query(ChatMessage)
            .filter_by(session_id=session_id)
            .count()
        )

    def update_session_title(self, session_id: str, user_id: str, title: str) -> None:
        """Set the session title.

        Raises:
            NotFoundError: Session absent or owned by another user.
            ValidationError: Title is blank.
        """
        title = title.strip()
        if not title:
            raise ValidationError("Title must not be empty")
        session = self._owned_session(session_id, user_id)
        session.title = title[:255]
        session.updated_at = utc_now_iso()
        self._commit("update session title")

    def delete_session(self, session_id: str, user_id: str) -> None:
        """Delete a session; its messages cascade.

        Raises:
            NotFoundError: Session absent or owned by another user.
        """
        session = self._owned_session(session_id, user_id)
        self._db.delete(session)
        self._commit("delete session")

    def create_message(
        self,
        session_id: str,
        role: str,
        content: str,
        tool_calls: list[dict[str, Any]] | None = None,
        message_id: str | None = None,
    ) -> ChatMessage:
        """Append a message to a session with auto-incrementing sequence.

        Args:
            session_id: Parent session ID.
            role: 'user' or 'assistant'.
            content: Message text as shown to the user.
            tool_calls: Optional ordered tool-call records.
            message_id: Optional explicit id (the live turn's id).

        Returns:
            The created ChatMessage.

        Raises:
            NotFoundError: Parent session does not exist.
            ValidationError: Unknown role.
            PersistenceError: The write failed.
        """
        try:
            role = MessageRole(role).value
        except ValueError as e:
            raise ValidationError(f"Invalid message role: {role!r}") from e

        session = self._db.get(ChatSession, session_id)
        if session is None:
            raise NotFoundError("Session", session_id)

        # Single-writer per session (one turn in flight), so SELECT+INSERT
        # is safe here.
        max_seq = (
            self._db.query(ChatMessage.sequence)
            .filter_by(session_id=session_id)
            .order_by(ChatMessage.sequence.desc())
            .first()
        )
        next_seq = (max_seq[0] + 1) if max_seq else 1

        msg = ChatMessage(
            id=message_id or generate_uuid(),
            session_id=session_id,
            role=role,
            content=content,
            tool_calls_json=json.dumps(tool_calls, default=str) if tool_calls else None,
            sequence=next_seq,
        )
        self._db.add(msg)
        session.updated_at = utc_now_iso()
        self._commit("save message")
        return msg
