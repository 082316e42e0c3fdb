"""Database module for iSuite chat transcripts."""

from src.db.connection import (
    SessionLocal,
    engine,
    get_db,
    get_db_context,
    init_db,
)
from src.db.models import (
    DEFAULT_SESSION_TITLE,
    ChatMessage,
    ChatSession,
    MessageRole,
)

__all__ = [
    # Models
    "ChatSession",
    "ChatMessage",
    "MessageRole",
    "DEFAULT_SESSION_TITLE",
    # Connection
    "engine",
    "SessionLocal",
    "get_db",
    "get_db_context",
    "init_db",
]
