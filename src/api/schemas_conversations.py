"""Pydantic schemas for conversation API endpoints.

Defines the request/response contracts for chat sessions, their messages
with rebuilt task steps, and the SSE-driven turn flow.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field


class TaskStepResponse(BaseModel):
    """One tool invocation shown in a message's task timeline."""

    call_id: str
    tool_name: str
    toolkit: str
    name: str
    logo: str
    status: Literal["pending", "completed"]


class MessageResponse(BaseModel):
    """A message of a session, with task steps for assistant turns."""

    id: str
    role: Literal["user", "assistant"]
    content: str
    steps: list[TaskStepResponse] = Field(default_factory=list)
    summary: str | None = None
    created_at: str


class SessionSummary(BaseModel):
    """Lightweight session summary for history navigation."""

    id: str
    title: str
    created_at: str
    updated_at: str
    message_count: int
    preview: str = ""


class SessionListResponse(BaseModel):
    """Sessions most recently updated first, plus recency groups."""

    sessions: list[SessionSummary]
    groups: dict[str, list[SessionSummary]]
    current_session_id: str | None = None


class SessionDetailResponse(BaseModel):
    """A live session with its messages and any turn in flight."""

    id: str
    title: str
    messages: list[MessageResponse]
    busy: bool = False
    active_turn: dict[str, Any] | None = None


class DeleteSessionResponse(BaseModel):
    """Result of deleting a session: the session current afterwards."""

    deleted_id: str
    current: SessionDetailResponse


class UpdateTitleRequest(BaseModel):
    """Request to rename a session."""

    title: str = Field(..., min_length=1, max_length=255)


class SendMessageRequest(BaseModel):
    """Request for sending a user message to the assistant."""

    content: str = Field(..., min_length=1, description="User message text")


class SendMessageResponse(BaseModel):
    """Response for accepted user message."""

    status: str  # "accepted"
    session_id: str
    message_id: str
