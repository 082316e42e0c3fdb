"""Shared assistant-turn handling.

Runs one turn end to end: stores the user's message, streams the
completion, folds decoded events into the turn's reducer, saves the finished
turn through the session's reconciler and schedules title inference. HTTP
routes call ``start_turn`` synchronously (so a second send is rejected at
once) and then drain ``run_turn`` in a background task.
"""

import asyncio
import logging
import time
from typing import Any, AsyncIterator

from src.errors.domain import TurnInProgressError
from src.errors.registry import build_error_payload
from src.services.completion_service import (
    CompletionService,
    ToolRegistry,
    build_system_prompt,
)
from src.services.persistence_reconciler import LiveMessage
from src.services.session_controller import LiveSession
from src.services.stream_events import (
    StreamFailed,
    ToolCallResult,
    ToolCallStart,
    decode_event,
)
from src.services.stream_reducer import DEFAULT_MAX_STEPS, TurnReducer, TurnStatus
from src.utils.redaction import preview_payload, sanitize_error_message

logger = logging.getLogger(__name__)

# Strong references so fire-and-forget title tasks are not collected early.
_background_tasks: set[asyncio.Task[Any]] = set()


def start_turn(live: LiveSession, max_steps: int = DEFAULT_MAX_STEPS) -> TurnReducer:
    """Reserve the session for a new turn.

    Raises:
        TurnInProgressError: A turn is already streaming in this session.
    """
    if live.is_busy:
        raise TurnInProgressError(live.session_id)
    turn = TurnReducer(max_steps=max_steps)
    live.active_turn = turn
    return turn


def _error_event(turn: TurnReducer) -> dict[str, Any]:
    failure = turn.error or StreamFailed(message="Stream failed")
    message = sanitize_error_message(failure.message) or "Stream failed"
    if failure.rate_limited:
        payload = build_error_payload("E-3001", retry_after=failure.retry_after)
    else:
        payload = build_error_payload("E-3002", message=message)
    payload["retry_after"] = failure.retry_after
    payload["message_id"] = turn.message_id
    return {"event": "error", "data": payload}


def _log_tool_event(live: LiveSession, event: Any) -> None:
    if isinstance(event, ToolCallStart):
        logger.info(
            "session=%s tool_call %s id=%s args=%s",
            live.session_id, event.tool_name, event.call_id, preview_payload(event.input),
        )
    elif isinstance(event, ToolCallResult):
        logger.info(
            "session=%s tool_result id=%s output=%s",
            live.session_id, event.call_id, preview_payload(event.output),
        )


def schedule_title_inference(
    live: LiveSession,
    completion: CompletionService,
) -> asyncio.Task[Any]:
    """Fire-and-forget title inference for a session."""

    async def _infer() -> None:
        title = await live.reconciler.maybe_infer_title(
            live.title, completion.generate_title
        )
        if title:
            live.title = title

    task = asyncio.create_task(_infer())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def run_turn(
    live: LiveSession,
    turn: TurnReducer,
    content: str,
    completion: CompletionService,
    tools: ToolRegistry,
    user_name: str | None = None,
    user_email: str | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """Run a reserved turn, yielding SSE-compatible events.

    Events are ``turn_started``, ``turn_update`` (full snapshot after each
    visible change), then exactly one terminal ``done`` or ``error``.

    Args:
        live: Session the turn belongs to.
        turn: Reducer returned by start_turn.
        content: User message text.
        completion: Completion service to stream from.
        tools: Tools offered to the model.
        user_name: Signed-in user's display name for the system prompt.
        user_email: Signed-in user's email for the system prompt.

    Yields:
        Event dicts with 'event' and 'data' keys.
    """
    async with live.lock:
        user_message = live.reconciler.persist_user_message(content)
        live.messages.append(user_message)
        yield {
            "event": "turn_started",
            "data": {"message_id": turn.message_id, "user_message": user_message.to_dict()},
        }

        history = [{"role": m.role, "content": m.content} for m in live.messages]
        system_prompt = build_system_prompt(user_name, user_email)
        started = time.monotonic()
        first_event_at: float | None = None

        try:
            async for raw in completion.stream(system_prompt, history, tools, turn.max_steps):
                event = decode_event(raw)
                if event is None:
                    continue
                if first_event_at is None:
                    first_event_at = time.monotonic()
                _log_tool_event(live, event)
                if turn.apply(event):
                    yield {"event": "turn_update", "data": turn.snapshot()}
                if turn.is_terminal:
                    break
        except Exception as e:
            logger.error("Turn %s failed in session %s: %s", turn.message_id, live.session_id, e)
            turn.fail(StreamFailed(message=sanitize_error_message(str(e)) or "Stream failed"))

        turn.finish()
        elapsed = time.monotonic() - started
        ttfb = (first_event_at - started) if first_event_at is not None else None
        logger.info(
            "turn_timing session=%s turn=%s status=%s ttfb=%s elapsed=%.2fs steps=%d tool_calls=%d",
            live.session_id,
            turn.message_id,
            turn.status.value,
            f"{ttfb:.2f}s" if ttfb is not None else "n/a",
            elapsed,
            turn.steps_finished,
            len(turn.steps),
        )

        if turn.status is not TurnStatus.ready:
            yield _error_event(turn)
            return

        persisted = live.reconciler.persist_turn(turn)
        if turn.text.strip():
            live.messages.append(LiveMessage(
                id=turn.message_id,
                role="assistant",
                content=turn.text,
                steps=list(turn.steps),
            ))

        data = turn.snapshot()
        data["persisted"] = persisted
        data["step_limit_reached"] = turn.step_limit_reached
        if turn.text.strip() and not persisted:
            data["save_error"] = build_error_payload("E-4002", message="transcript write failed")
        yield {"event": "done", "data": data}

        if persisted:
            schedule_title_inference(live, completion)
