"""FastAPI routes for chat sessions and SSE assistant turns.

Each signed-in user has a SessionLifecycleController tracking their live
sessions and which one is current. Sending a message reserves the session
for one turn and runs it in a background task; the turn's events are
delivered through a per-session queue to the SSE stream endpoint.

Endpoints:
    GET    /conversations/                 - List sessions (optional ?q= title filter)
    POST   /conversations/                 - New session (reuses an empty current one)
    GET    /conversations/{id}             - Session with messages and task steps
    POST   /conversations/{id}/activate    - Switch to a session
    PATCH  /conversations/{id}             - Rename
    DELETE /conversations/{id}             - Delete; returns the new current session
    POST   /conversations/{id}/messages    - Send user message (202)
    GET    /conversations/{id}/stream      - SSE event stream
"""

import asyncio
import json
import logging
from typing import Any, AsyncGenerator

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sse_starlette.sse import EventSourceResponse

from src.api.middleware.auth import CurrentUser, get_current_user
from src.api.routes.connections import get_integrations_client
from src.api.schemas_conversations import (
    DeleteSessionResponse,
    SendMessageRequest,
    SendMessageResponse,
    SessionDetailResponse,
    SessionListResponse,
    UpdateTitleRequest,
)
from src.errors.domain import ValidationError
from src.errors.registry import build_error_payload
from src.services.completion_service import (
    AnthropicCompletionService,
    CompletionService,
    build_tool_registry,
    get_max_steps,
)
from src.services.conversation_handler import run_turn, start_turn
from src.services.integrations_client import IntegrationsClient
from src.services.session_controller import (
    LiveSession,
    SessionLifecycleController,
    SessionRegistry,
    group_sessions_by_recency,
)
from src.services.stream_events import StreamFailed
from src.services.stream_reducer import TurnReducer
from src.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["conversations"])

# Event queues for SSE streaming, one queue per session.
_event_queues: dict[str, asyncio.Queue] = {}


def drop_event_queue(session_id: str) -> None:
    """Forget the event queue of a session that no longer exists."""
    _event_queues.pop(session_id, None)


# Module-level registry of per-user controllers.
_registry = SessionRegistry(on_session_removed=drop_event_queue)
_completion_service: CompletionService | None = None

_TERMINAL_EVENTS = frozenset({"done", "error"})


def get_session_registry() -> SessionRegistry:
    """FastAPI dependency returning the process-wide session registry."""
    return _registry


def get_completion_service() -> CompletionService:
    """FastAPI dependency returning the shared completion service."""
    global _completion_service
    if _completion_service is None:
        _completion_service = AnthropicCompletionService()
    return _completion_service


def get_controller(
    user: CurrentUser = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
) -> SessionLifecycleController:
    """FastAPI dependency returning the signed-in user's controller."""
    return registry.get_or_create(user.id)


def _get_event_queue(session_id: str) -> asyncio.Queue:
    """Get or create the event queue for a session."""
    if session_id not in _event_queues:
        _event_queues[session_id] = asyncio.Queue()
    return _event_queues[session_id]


def _reset_event_queue(session_id: str) -> asyncio.Queue:
    """Get the session's event queue with events of earlier turns removed.

    Listeners already waiting on the queue keep receiving from it.
    """
    queue = _get_event_queue(session_id)
    while not queue.empty():
        queue.get_nowait()
    return queue


async def shutdown_conversation_runtime() -> None:
    """Drop in-memory session state at shutdown."""
    _registry.clear()
    _event_queues.clear()


def _detail(live: LiveSession) -> SessionDetailResponse:
    return SessionDetailResponse(**live.to_dict())


async def _process_turn(
    live: LiveSession,
    turn: TurnReducer,
    content: str,
    user: CurrentUser,
    completion: CompletionService,
    integrations: IntegrationsClient,
) -> None:
    """Run a reserved turn and deliver its events to the session queue.

    Runs as a background task. Always delivers one terminal event and
    always leaves the turn terminal, so the session accepts the next send.
    """
    queue = _get_event_queue(live.session_id)
    terminal_sent = False
    try:
        tools = await build_tool_registry(integrations, user.id)
        async for event in run_turn(
            live,
            turn,
            content,
            completion,
            tools,
            user_name=user.name,
            user_email=user.email,
        ):
            await queue.put(event)
            if event.get("event") in _TERMINAL_EVENTS:
                terminal_sent = True
    except Exception as e:
        logger.error("Turn processing failed for session %s: %s", live.session_id, e)
        message = sanitize_error_message(str(e)) or "unknown error"
        turn.fail(StreamFailed(message=message))
        if not terminal_sent:
            payload = build_error_payload("E-4001", message=message)
            payload["message_id"] = turn.message_id
            await queue.put({"event": "error", "data": payload})
            terminal_sent = True
    finally:
        if not turn.is_terminal:
            turn.fail(StreamFailed(message="Turn ended before completing"))
        if not terminal_sent:
            await queue.put({"event": "done", "data": {}})


async def _event_generator(
    request: Request,
    queue: asyncio.Queue,
) -> AsyncGenerator[dict, None]:
    """Generate SSE events from the session's event queue.

    Stops after a terminal ``done`` or ``error`` event. Sends a ping after
    15 seconds without events to keep the connection alive.
    """
    while True:
        if await request.is_disconnected():
            break
        try:
            event = await asyncio.wait_for(queue.get(), timeout=15.0)
        except asyncio.TimeoutError:
            yield {"data": json.dumps({"event": "ping"})}
            continue

        event_type = event.get("event", "unknown")
        yield {
            "data": json.dumps(
                {"event": event_type, "data": event.get("data", {})},
                default=str,
            ),
        }
        if event_type in _TERMINAL_EVENTS:
            break


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/", response_model=SessionListResponse)
async def list_conversations(
    q: str | None = None,
    controller: SessionLifecycleController = Depends(get_controller),
) -> SessionListResponse:
    """List sessions most recently updated first, grouped by recency."""
    sessions = controller.list_sessions(query=q)
    return SessionListResponse(
        sessions=sessions,
        groups=group_sessions_by_recency(sessions),
        current_session_id=controller.current.session_id if controller.current else None,
    )


@router.post("/", response_model=SessionDetailResponse, status_code=201)
async def create_conversation(
    controller: SessionLifecycleController = Depends(get_controller),
) -> SessionDetailResponse:
    """Start a new conversation, or return the current one while it is empty."""
    return _detail(controller.create_session())


@router.get("/{session_id}", response_model=SessionDetailResponse)
async def get_conversation(
    session_id: str,
    controller: SessionLifecycleController = Depends(get_controller),
) -> SessionDetailResponse:
    """Get a session with its messages and rebuilt task steps."""
    return _detail(controller.get_live(session_id))


@router.post("/{session_id}/activate", response_model=SessionDetailResponse)
async def activate_conversation(
    session_id: str,
    controller: SessionLifecycleController = Depends(get_controller),
) -> SessionDetailResponse:
    """Make a session current, discarding an abandoned empty one."""
    return _detail(controller.switch_session(session_id))


@router.patch("/{session_id}")
async def rename_conversation(
    session_id: str,
    payload: UpdateTitleRequest,
    controller: SessionLifecycleController = Depends(get_controller),
) -> dict[str, Any]:
    """Rename a session."""
    controller.rename_session(session_id, payload.title)
    return {"success": True, "title": payload.title.strip()}


@router.delete("/{session_id}", response_model=DeleteSessionResponse)
async def delete_conversation(
    session_id: str,
    controller: SessionLifecycleController = Depends(get_controller),
) -> DeleteSessionResponse:
    """Delete a session and its messages."""
    current = controller.delete_session(session_id)
    return DeleteSessionResponse(deleted_id=session_id, current=_detail(current))


@router.post("/{session_id}/messages", status_code=202, response_model=SendMessageResponse)
async def send_message(
    session_id: str,
    payload: SendMessageRequest,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
    controller: SessionLifecycleController = Depends(get_controller),
    completion: CompletionService = Depends(get_completion_service),
    integrations: IntegrationsClient = Depends(get_integrations_client),
) -> SendMessageResponse:
    """Send a user message. The reply streams via the /stream endpoint.

    Raises:
        NotFoundError: Session absent or not owned by the user (404).
        TurnInProgressError: A turn is already streaming (409).
    """
    content = payload.content.strip()
    if not content:
        raise ValidationError("Message must not be empty")

    live = controller.get_live(session_id)
    turn = start_turn(live, max_steps=get_max_steps())
    _reset_event_queue(session_id)

    background_tasks.add_task(
        _process_turn, live, turn, content, user, completion, integrations
    )
    return SendMessageResponse(
        status="accepted", session_id=session_id, message_id=turn.message_id
    )


@router.get("/{session_id}/stream")
async def stream_events(
    request: Request,
    session_id: str,
    controller: SessionLifecycleController = Depends(get_controller),
) -> EventSourceResponse:
    """SSE stream of turn events for this session.

    Connect after sending a message to receive turn_started, turn_update
    and a terminal done or error event.
    """
    controller.get_live(session_id)
    queue = _get_event_queue(session_id)
    return EventSourceResponse(
        _event_generator(request, queue),
        media_type="text/event-stream",
    )
