"""SQLAlchemy ORM models for the iSuite transcript database.

Chat sessions and their messages. Users live in the external identity
provider, so sessions only carry the owning user's opaque identifier.
Uses SQLAlchemy 2.0 style with Mapped and mapped_column.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


# Title every new session starts with until inference replaces it.
DEFAULT_SESSION_TITLE = "New Chat"


class MessageRole(str, Enum):
    """Roles a persisted chat message can carry."""

    user = "user"
    assistant = "assistant"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class ChatSession(Base):
    """Persistent chat session owned by one user.

    Attributes:
        id: UUID primary key.
        user_id: Identity-provider user identifier of the owner.
        title: Display title, starts as DEFAULT_SESSION_TITLE.
        created_at: ISO8601 creation timestamp.
        updated_at: ISO8601 last-update timestamp (bumped on every message).
    """

    __tablename__ = "chat_sessions"
    __table_args__ = (
        Index("ix_chatsess_user_updated", "user_id", "updated_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(
        String(255), nullable=False, default=DEFAULT_SESSION_TITLE
    )
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    messages: Mapped[list["ChatMessage"]] = relationship(
        "ChatMessage",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ChatMessage.sequence",
    )

    def __repr__(self) -> str:
        return f"<ChatSession(id={self.id!r}, title={self.title!r})>"


class ChatMessage(Base):
    """Persistent chat message.

    Written once per turn and never updated. ``tool_calls_json`` holds the
    ordered tool-call records of an assistant turn, every one of them
    already completed.

    Attributes:
        id: UUID primary key.
        session_id: FK to ChatSession (cascade delete).
        role: 'user' or 'assistant'.
        content: Text shown to the user.
        tool_calls_json: Optional JSON list of tool-call records.
        sequence: Ordering within session (monotonically increasing).
        created_at: ISO8601 creation timestamp.
    """

    __tablename__ = "chat_messages"
    __table_args__ = (
        UniqueConstraint("session_id", "sequence", name="uq_chatmsg_session_seq"),
        Index("ix_chatmsg_session_seq", "session_id", "sequence"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    session_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("chat_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    tool_calls_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    session: Mapped["ChatSession"] = relationship(
        "ChatSession", back_populates="messages"
    )

    def __repr__(self) -> str:
        return (
            f"<ChatMessage(id={self.id!r}, role={self.role!r}, "
            f"seq={self.sequence})>"
        )
