"""Normalisation of completion-stream events.

Providers and SDK versions name the same event differently (``text-delta``
vs ``text``, ``args`` vs ``input`` vs ``arguments``, ``toolCallId`` vs
``id``). ``decode_event`` maps every supported shape onto a small, fixed set
of frozen dataclasses so the reducer never inspects raw payloads.

Unknown event types decode to None and are skipped by callers.
"""

import json
import logging
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from src.errors.domain import DEFAULT_RETRY_AFTER_SECONDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextDelta:
    """A fragment of visible assistant text."""

    text: str


@dataclass(frozen=True)
class ToolCallStart:
    """The model started a tool call."""

    call_id: str | None
    tool_name: str
    input: Any = field(default_factory=dict)


@dataclass(frozen=True)
class ToolCallResult:
    """A tool call produced its output."""

    call_id: str | None
    output: Any = None
    tool_name: str | None = None


@dataclass(frozen=True)
class StepFinished:
    """One model step (request/response round) ended."""

    reason: str | None = None


@dataclass(frozen=True)
class StreamFailed:
    """The stream terminated abnormally. Terminal for the turn."""

    message: str
    retry_after: int | None = None
    rate_limited: bool = False


StreamEvent = Union[TextDelta, ToolCallStart, ToolCallResult, StepFinished, StreamFailed]

_TEXT_TYPES = frozenset({"text-delta", "text_delta", "text"})
_TOOL_START_TYPES = frozenset({
    "tool-call", "tool_call", "tool-input-available", "tool_use", "tool-call-start",
})
_TOOL_RESULT_TYPES = frozenset({
    "tool-result", "tool_result", "tool-output-available", "tool-call-result",
})
_STEP_TYPES = frozenset({"finish-step", "step-finish", "step_finish", "finish_step"})
_ERROR_TYPES = frozenset({"error", "stream-error"})

_RETRY_HINT = re.compile(r"try again in (\d+(?:\.\d+)?)", re.IGNORECASE)


def _first_present(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _coerce_input(value: Any) -> Any:
    """Parse JSON-encoded argument strings; pass structured values through."""
    if value is None:
        return {}
    if isinstance(value, str):
        try:
            return json.loads(value)
        except (json.JSONDecodeError, ValueError):
            return value
    return value


def parse_retry_after(message: str | None, hint: Any = None) -> int:
    """Derive a cool-down in whole seconds for a rate-limited stream.

    Args:
        message: Provider error text, searched for "try again in N".
        hint: Explicit backoff hint (seconds) when the provider sent one.

    Returns:
        Seconds to wait, rounded up. DEFAULT_RETRY_AFTER_SECONDS when no
        usable hint exists.
    """
    if hint is not None:
        try:
            seconds = float(hint)
            if seconds > 0:
                return math.ceil(seconds)
        except (TypeError, ValueError):
            pass
    if message:
        match = _RETRY_HINT.search(message)
        if match:
            return math.ceil(float(match.group(1)))
    return DEFAULT_RETRY_AFTER_SECONDS


def is_rate_limit_message(message: str | None, code: Any = None) -> bool:
    """Return True if an error message or code denotes provider rate limiting."""
    if code in ("rate_limit_exceeded", "rate_limit_error", 429, "429"):
        return True
    return bool(message) and "rate_limit" in message.lower().replace(" ", "_")


def _decode_error(raw: Mapping[str, Any]) -> StreamFailed:
    message = _first_present(raw, "errorText", "error_text", "message", "error")
    if isinstance(message, Mapping):
        message = message.get("message") or json.dumps(dict(message), default=str)
    message = str(message) if message is not None else "Stream failed"
    code = _first_present(raw, "code", "status", "status_code")
    rate_limited = bool(raw.get("rate_limited")) or is_rate_limit_message(message, code)
    retry_after = None
    if rate_limited:
        retry_after = parse_retry_after(
            message, _first_present(raw, "retryAfter", "retry_after")
        )
    return StreamFailed(message=message, retry_after=retry_after, rate_limited=rate_limited)


def decode_event(raw: Mapping[str, Any]) -> StreamEvent | None:
    """Map one raw provider event onto the internal event set.

    Args:
        raw: Event mapping with a ``type`` key.

    Returns:
        The decoded event, or None for event types the turn does not track
        (stream start markers, reasoning, metadata).
    """
    if not isinstance(raw, Mapping):
        logger.debug("Ignoring non-mapping stream event: %r", type(raw).__name__)
        return None

    event_type = raw.get("type")

    if event_type in _TEXT_TYPES:
        text = _first_present(raw, "delta", "textDelta", "text")
        if not isinstance(text, str) or not text:
            return None
        return TextDelta(text=text)

    if event_type in _TOOL_START_TYPES:
        tool_name = _first_present(raw, "toolName", "tool_name", "name")
        if not isinstance(tool_name, str):
            tool_name = ""
        call_id = _first_present(raw, "toolCallId", "tool_call_id", "id")
        return ToolCallStart(
            call_id=str(call_id) if call_id is not None else None,
            tool_name=tool_name,
            input=_coerce_input(_first_present(raw, "input", "args", "arguments")),
        )

    if event_type in _TOOL_RESULT_TYPES:
        call_id = _first_present(raw, "toolCallId", "tool_call_id", "tool_use_id", "id")
        tool_name = _first_present(raw, "toolName", "tool_name", "name")
        return ToolCallResult(
            call_id=str(call_id) if call_id is not None else None,
            output=_first_present(raw, "output", "result", "content"),
            tool_name=tool_name if isinstance(tool_name, str) else None,
        )

    if event_type in _STEP_TYPES:
        reason = _first_present(raw, "finishReason", "finish_reason", "reason")
        return StepFinished(reason=str(reason) if reason is not None else None)

    if event_type in _ERROR_TYPES:
        return _decode_error(raw)

    return None
