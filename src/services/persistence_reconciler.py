"""Exactly-once persistence of assistant turns, and session restore.

One ``PersistenceReconciler`` belongs to one live session. It remembers the
id of the last assistant message it wrote, so a turn that settles more than
once is still stored a single time. Loading a session rebuilds its task
steps from stored tool-call records and primes that marker so restored
history is never written again.

Writes happen through short-lived database sessions because turns run in
background tasks that outlive the request which started them.
"""

import logging
from collections.abc import Awaitable, Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from src.db.connection import get_db_context
from src.db.models import MessageRole, generate_uuid, utc_now_iso
from src.errors.domain import DomainError
from src.services.session_titles import (
    TITLE_CONTEXT_MESSAGES,
    infer_session_title,
    needs_title,
)
from src.services.stream_reducer import TaskStep, TurnReducer, TurnStatus
from src.services.tool_classifier import summarize_steps
from src.services.transcript_store import TranscriptStore

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], AbstractContextManager[TranscriptStore]]


@contextmanager
def open_transcript_store() -> Iterator[TranscriptStore]:
    """Open a TranscriptStore on its own committed database session."""
    with get_db_context() as db:
        yield TranscriptStore(db)


@dataclass
class LiveMessage:
    """A message as held by a live session."""

    id: str
    role: str
    content: str
    steps: list[TaskStep] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "steps": [step.to_dict() for step in self.steps],
            "summary": summarize_steps(self.steps) if self.steps else None,
            "created_at": self.created_at,
        }


class PersistenceReconciler:
    """Per-session guard that writes each assistant turn exactly once.

    Args:
        session_id: Session the turns belong to.
        user_id: Owner of the session.
        store_factory: Returns a context manager yielding a TranscriptStore.
    """

    def __init__(
        self,
        session_id: str,
        user_id: str,
        store_factory: StoreFactory = open_transcript_store,
    ) -> None:
        self.session_id = session_id
        self.user_id = user_id
        self._store_factory = store_factory
        self.last_persisted_id: str | None = None

    def reset(self) -> None:
        self.last_persisted_id = None

    def restore(self, messages: list[dict[str, Any]]) -> list[LiveMessage]:
        """Rebuild live messages from stored ones and prime the marker.

        Args:
            messages: Stored messages in creation order.

        Returns:
            LiveMessage list; assistant steps are all completed.
        """
        live: list[LiveMessage] = []
        last_assistant_id = None
        for m in messages:
            steps = [
                TaskStep.from_record(record, index)
                for index, record in enumerate(m.get("tool_calls") or [])
                if isinstance(record, dict)
            ]
            live.append(LiveMessage(
                id=m["id"],
                role=m["role"],
                content=m["content"],
                steps=steps,
                created_at=m.get("created_at") or utc_now_iso(),
            ))
            if m["role"] == MessageRole.assistant.value:
                last_assistant_id = m["id"]
        self.last_persisted_id = last_assistant_id
        return live

    def load(self) -> tuple[dict[str, Any], list[LiveMessage]]:
        """Fetch the session from the store and restore its messages.

        Raises:
            NotFoundError: Session absent or not owned by user_id.
        """
        with self._store_factory() as store:
            data = store.get_session(self.session_id, self.user_id)
        return data["session"], self.restore(data["messages"])

    def persist_user_message(self, content: str) -> LiveMessage:
        """Store the user's message. A failed write is logged, not raised."""
        message = LiveMessage(id="", role=MessageRole.user.value, content=content)
        try:
            with self._store_factory() as store:
                row = store.create_message(
                    self.session_id, MessageRole.user.value, content
                )
                message.id = row.id
                message.created_at = row.created_at
        except (DomainError, SQLAlchemyError) as e:
            logger.error(
                "Failed to save user message for session %s: %s", self.session_id, e
            )
        if not message.id:
            message.id = generate_uuid()
        return message

    def persist_turn(self, turn: TurnReducer) -> bool:
        """Write a settled assistant turn unless it was already written.

        Only turns that reached ``ready`` with non-empty text are stored.
        Failed turns are never stored.

        Args:
            turn: The turn's reducer.

        Returns:
            True if a message was written by this call.
        """
        if turn.status is not TurnStatus.ready:
            return False
        if not turn.text.strip():
            return False
        if turn.message_id == self.last_persisted_id:
            return False

        try:
            with self._store_factory() as store:
                store.create_message(
                    self.session_id,
                    MessageRole.assistant.value,
                    turn.text,
                    tool_calls=turn.to_tool_call_records(),
                    message_id=turn.message_id,
                )
        except (DomainError, SQLAlchemyError) as e:
            logger.error(
                "Failed to save assistant turn %s for session %s: %s",
                turn.message_id, self.session_id, e,
            )
            return False

        self.last_persisted_id = turn.message_id
        logger.info(
            "Saved assistant turn %s (%d steps) for session %s",
            turn.message_id, len(turn.steps), self.session_id,
        )
        return True

    async def maybe_infer_title(
        self,
        current_title: str | None,
        generate: Callable[[str], Awaitable[str]],
    ) -> str | None:
        """Replace a placeholder or greeting title, best-effort.

        Args:
            current_title: The session's title as currently known.
            generate: Async prompt -> text callable for the completion service.

        Returns:
            The new title if one was stored, else None.
        """
        if not needs_title(current_title):
            return None
        try:
            with self._store_factory() as store:
                data = store.get_session(
                    self.session_id, self.user_id, limit=TITLE_CONTEXT_MESSAGES
                )
            title = await infer_session_title(data["messages"], generate)
            if not title:
                return None
            with self._store_factory() as store:
                store.update_session_title(self.session_id, self.user_id, title)
        except (DomainError, SQLAlchemyError) as e:
            logger.warning("Title update failed for session %s: %s", self.session_id, e)
            return None
        logger.info("Titled session %s: %s", self.session_id, title)
        return title
