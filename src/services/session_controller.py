"""Session lifecycle for each signed-in user.

A ``SessionLifecycleController`` owns one user's live sessions and knows
which of them is current. It creates, switches, deletes and lists sessions,
cleaning up sessions that were created but never used.

Only busy sessions outlive a switch: a turn still streaming in a session the
user navigated away from keeps its reconciler and is saved against that
session. Idle sessions are dropped from memory and reloaded from the
transcript when opened again.

Example:
    registry = SessionRegistry()
    controller = registry.get_or_create("user-123")
    live = controller.ensure_current()
    controller.create_session()   # returns `live` again while it is empty
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from src.db.models import DEFAULT_SESSION_TITLE
from src.errors.domain import NotFoundError
from src.services.persistence_reconciler import (
    LiveMessage,
    PersistenceReconciler,
    StoreFactory,
    open_transcript_store,
)
from src.services.stream_reducer import TurnReducer

logger = logging.getLogger(__name__)


class LiveSession:
    """In-memory state of one chat session.

    Attributes:
        session_id: Persistent session id.
        user_id: Owner.
        title: Title as last known.
        messages: Live messages in order, assistant steps rebuilt.
        reconciler: Exactly-once writer for this session's turns.
        active_turn: Reducer of the turn in flight, if any.
        lock: Serialises turns so only one is in flight per session.
    """

    def __init__(
        self,
        session_id: str,
        user_id: str,
        title: str = DEFAULT_SESSION_TITLE,
        store_factory: StoreFactory = open_transcript_store,
    ) -> None:
        self.session_id = session_id
        self.user_id = user_id
        self.title = title
        self.messages: list[LiveMessage] = []
        self.reconciler = PersistenceReconciler(session_id, user_id, store_factory)
        self.active_turn: TurnReducer | None = None
        self.lock = asyncio.Lock()

    @property
    def is_empty(self) -> bool:
        return not self.messages

    @property
    def is_busy(self) -> bool:
        """True while a turn is streaming in this session."""
        return self.active_turn is not None and not self.active_turn.is_terminal

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.session_id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "busy": self.is_busy,
        }
        if self.active_turn is not None:
            data["active_turn"] = self.active_turn.snapshot()
        return data


class SessionLifecycleController:
    """Creates, switches, deletes and lists one user's sessions.

    Args:
        user_id: Identity-provider id of the user.
        store_factory: Returns a context manager yielding a TranscriptStore.
        on_session_removed: Called with the id of every session deleted, either
            explicitly or as an abandoned empty session.
    """

    def __init__(
        self,
        user_id: str,
        store_factory: StoreFactory = open_transcript_store,
        on_session_removed: Callable[[str], None] | None = None,
    ) -> None:
        self.user_id = user_id
        self._store_factory = store_factory
        self._on_session_removed = on_session_removed
        self._live: dict[str, LiveSession] = {}
        self.current: LiveSession | None = None

    def _load(self, session_id: str) -> LiveSession:
        live = self._live.get(session_id)
        if live is not None:
            return live
        live = LiveSession(session_id, self.user_id, store_factory=self._store_factory)
        session, messages = live.reconciler.load()
        live.title = session["title"]
        live.messages = messages
        self._live[session_id] = live
        return live

    def get_live(self, session_id: str) -> LiveSession:
        """Return a live session without making it current.

        Raises:
            NotFoundError: Session absent or owned by another user.
        """
        return self._load(session_id)

    def ensure_current(self) -> LiveSession:
        """Return the current session, activating or creating one if needed."""
        if self.current is not None:
            return self.current
        sessions = self.list_sessions()
        if sessions:
            return self.switch_session(sessions[0]["id"])
        return self.create_session()

    def create_session(self) -> LiveSession:
        """Start a new conversation and make it current.

        Returns the current session unchanged if it has no messages yet.
        """
        if self.current is not None and self.current.is_empty:
            return self.current

        with self._store_factory() as store:
            row = store.create_session(self.user_id)
            session_id, title = row.id, row.title

        live = LiveSession(session_id, self.user_id, title, self._store_factory)
        live.reconciler.reset()
        self._live[session_id] = live
        self.current = live
        logger.info("Created session %s for user %s", session_id, self.user_id)
        return live

    def _discard_if_abandoned(self, leaving: LiveSession) -> None:
        if not leaving.is_empty or leaving.is_busy:
            return
        try:
            with self._store_factory() as store:
                store.delete_session(leaving.session_id, self.user_id)
        except NotFoundError:
            pass
        self._removed(leaving.session_id)
        logger.info("Removed empty session %s", leaving.session_id)

    def _removed(self, session_id: str) -> None:
        self._live.pop(session_id, None)
        if self._on_session_removed is not None:
            self._on_session_removed(session_id)

    def _evict_idle(self, keep: str) -> None:
        for session_id, live in list(self._live.items()):
            if session_id != keep and not live.is_busy:
                del self._live[session_id]

    def switch_session(self, target_id: str) -> LiveSession:
        """Make target_id current.

        An empty current session is deleted before the target is loaded.
        Other idle sessions are dropped from memory; busy ones stay until
        their turn ends.

        Raises:
            NotFoundError: Target absent or owned by another user. No
                session is current afterwards.
        """
        leaving = self.current
        if leaving is not None and leaving.session_id == target_id:
            return leaving

        if leaving is not None:
            self._discard_if_abandoned(leaving)
        self.current = None

        live = self._load(target_id)
        self.current = live
        self._evict_idle(keep=target_id)
        return live

    def delete_session(self, session_id: str) -> LiveSession:
        """Delete a session and its messages.

        If it was current, the most recently updated remaining session is
        activated, or a fresh one is created when none remain.

        Returns:
            The session that is current afterwards.

        Raises:
            NotFoundError: Session absent or owned by another user.
        """
        with self._store_factory() as store:
            store.delete_session(session_id, self.user_id)
        self._removed(session_id)
        logger.info("Deleted session %s for user %s", session_id, self.user_id)

        if self.current is not None and self.current.session_id == session_id:
            self.current = None
            remaining = self.list_sessions()
            if remaining:
                return self.switch_session(remaining[0]["id"])
            return self.create_session()
        return self.ensure_current()

    def rename_session(self, session_id: str, title: str) -> None:
        with self._store_factory() as store:
            store.update_session_title(session_id, self.user_id, title)
        live = self._live.get(session_id)
        if live is not None:
            live.title = title.strip()

    def list_sessions(self, query: str | None = None) -> list[dict[str, Any]]:
        """List sessions, most recently updated first.

        Args:
            query: Optional case-insensitive title substring.
        """
        with self._store_factory() as store:
            return store.list_sessions(self.user_id, query=query)


class SessionRegistry:
    """Per-user controllers for the whole process.

    Thread-safe for single-process usage (FastAPI's async loop).
    Not designed for multi-process deployment.
    """

    def __init__(
        self,
        store_factory: StoreFactory = open_transcript_store,
        on_session_removed: Callable[[str], None] | None = None,
    ) -> None:
        self._store_factory = store_factory
        self._on_session_removed = on_session_removed
        self._controllers: dict[str, SessionLifecycleController] = {}

    def get_or_create(self, user_id: str) -> SessionLifecycleController:
        if user_id not in self._controllers:
            self._controllers[user_id] = SessionLifecycleController(
                user_id, self._store_factory, self._on_session_removed
            )
        return self._controllers[user_id]

    def clear(self) -> None:
        self._controllers.clear()


RECENCY_GROUPS = ("today", "yesterday", "last_week", "older")


def group_sessions_by_recency(
    sessions: list[dict[str, Any]],
    now: datetime | None = None,
) -> dict[str, list[dict[str, Any]]]:
    """Bucket session summaries by their last update for history display.

    Args:
        sessions: Summaries with ISO8601 ``updated_at`` values.
        now: Reference time (defaults to current UTC time).

    Returns:
        Dict keyed by RECENCY_GROUPS, each list in input order.
    """
    now = now or datetime.now(timezone.utc)
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    yesterday = today - timedelta(days=1)
    last_week = today - timedelta(days=7)

    groups: dict[str, list[dict[str, Any]]] = {key: [] for key in RECENCY_GROUPS}
    for session in sessions:
        try:
            updated = datetime.fromisoformat(session["updated_at"])
        except (KeyError, TypeError, ValueError):
            groups["older"].append(session)
            continue
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=timezone.utc)
        if updated >= today:
            groups["today"].append(session)
        elif updated >= yesterday:
            groups["yesterday"].append(session)
        elif updated >= last_week:
            groups["last_week"].append(session)
        else:
            groups["older"].append(session)
    return groups
