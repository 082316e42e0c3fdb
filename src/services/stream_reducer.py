"""Fold decoded stream events into one assistant turn's display state.

A ``TurnReducer`` is created per in-flight assistant turn and fed events
strictly in arrival order. It keeps the accumulated visible text and an
ordered list of ``TaskStep`` objects, one per distinct tool-call start.
Steps are addressable by call id; later events mutate them in place.

Step status only moves forward: pending -> completed. A step whose result
never arrives stays pending and renders as in progress.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from src.db.models import generate_uuid
from src.services.stream_events import (
    StepFinished,
    StreamEvent,
    StreamFailed,
    TextDelta,
    ToolCallResult,
    ToolCallStart,
)
from src.services.tool_classifier import classify, summarize_steps

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 10


class StepStatus(str, Enum):
    """Live status of one task step."""

    pending = "pending"
    completed = "completed"


class TurnStatus(str, Enum):
    """Status of an assistant turn."""

    streaming = "streaming"
    ready = "ready"
    error = "error"


@dataclass
class TaskStep:
    """One tool invocation within a turn, annotated for display.

    Attributes:
        call_id: Stream call identifier (synthetic when the provider sent none).
        tool_name: Raw tool identifier as invoked.
        toolkit: Resolved toolkit id.
        name: Readable action name.
        logo: Logo reference for the toolkit.
        status: pending until a matching result is observed.
        input: Tool input payload.
        output: Tool output payload once completed.
    """

    call_id: str
    tool_name: str
    toolkit: str
    name: str
    logo: str
    status: StepStatus = StepStatus.pending
    input: Any = field(default_factory=dict)
    output: Any = None

    @classmethod
    def start(cls, call_id: str, tool_name: str, input_payload: Any) -> "TaskStep":
        """Create a pending step classified from its tool identifier."""
        classification = classify(tool_name, input_payload)
        return cls(
            call_id=call_id,
            tool_name=tool_name,
            toolkit=classification.toolkit_id,
            name=classification.action_name,
            logo=classification.logo_ref,
            input=input_payload,
        )

    @classmethod
    def from_record(cls, record: dict[str, Any], index: int) -> "TaskStep":
        """Rebuild a step from a persisted tool-call record (always completed)."""
        tool_name = record.get("tool_name") or record.get("toolName") or ""
        call_id = record.get("call_id") or record.get("toolCallId") or f"restored-{index}"
        step = cls.start(str(call_id), str(tool_name), record.get("input") or {})
        step.status = StepStatus.completed
        step.output = record.get("output")
        return step

    def reclassify(self, tool_name: str, input_payload: Any) -> None:
        """Refresh identifier, input and classification without touching status."""
        classification = classify(tool_name, input_payload)
        self.tool_name = tool_name
        self.input = input_payload
        self.toolkit = classification.toolkit_id
        self.name = classification.action_name
        self.logo = classification.logo_ref

    def complete(self, output: Any) -> None:
        self.status = StepStatus.completed
        self.output = output

    def to_record(self) -> dict[str, Any]:
        """Flatten into a persistable tool-call record.

        Persisted records are always completed, whatever the live status.
        """
        return {
            "call_id": self.call_id,
            "tool_name": self.tool_name,
            "input": self.input,
            "output": self.output,
            "status": StepStatus.completed.value,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_id": self.call_id,
            "tool_name": self.tool_name,
            "toolkit": self.toolkit,
            "name": self.name,
            "logo": self.logo,
            "status": self.status.value,
        }


class TurnReducer:
    """Explicit state machine for one streaming assistant turn.

    Args:
        message_id: Identifier the finished assistant message will carry.
            Generated when omitted.
        max_steps: Model step bound used for ``step_limit_reached``.
    """

    def __init__(
        self,
        message_id: str | None = None,
        max_steps: int = DEFAULT_MAX_STEPS,
    ) -> None:
        self.message_id = message_id or generate_uuid()
        self.max_steps = max_steps
        self.status = TurnStatus.streaming
        self.steps: list[TaskStep] = []
        self.steps_finished = 0
        self.error: StreamFailed | None = None
        self._text_parts: list[str] = []
        self._steps_by_call_id: dict[str, TaskStep] = {}
        # Results observed before their start, keyed by call id.
        self._early_results: dict[str, ToolCallResult] = {}

    @property
    def text(self) -> str:
        return "".join(self._text_parts)

    @property
    def is_terminal(self) -> bool:
        return self.status is not TurnStatus.streaming

    @property
    def step_limit_reached(self) -> bool:
        return self.steps_finished >= self.max_steps

    @property
    def summary(self) -> str:
        return summarize_steps(self.steps)

    def apply(self, event: StreamEvent) -> bool:
        """Fold one event into the turn.

        Args:
            event: Decoded stream event.

        Returns:
            True if visible state changed, False if the event was ignored.
        """
        if self.is_terminal:
            logger.debug(
                "Ignoring %s after turn %s reached %s",
                type(event).__name__, self.message_id, self.status.value,
            )
            return False

        if isinstance(event, TextDelta):
            self._text_parts.append(event.text)
            return True
        if isinstance(event, ToolCallStart):
            return self._apply_start(event)
        if isinstance(event, ToolCallResult):
            return self._apply_result(event)
        if isinstance(event, StepFinished):
            self.steps_finished += 1
            return False
        if isinstance(event, StreamFailed):
            self.fail(event)
            return True

        logger.warning("Unhandled stream event type: %s", type(event).__name__)
        return False

    def _apply_start(self, event: ToolCallStart) -> bool:
        call_id = event.call_id
        if call_id is not None and call_id in self._steps_by_call_id:
            self._steps_by_call_id[call_id].reclassify(event.tool_name, event.input)
            return True

        if call_id is None:
            call_id = f"{self.message_id}:{len(self.steps)}"
        step = TaskStep.start(call_id, event.tool_name, event.input)
        self.steps.append(step)
        self._steps_by_call_id[call_id] = step

        early = self._early_results.pop(call_id, None)
        if early is not None:
            step.complete(early.output)
        return True

    def _apply_result(self, event: ToolCallResult) -> bool:
        if event.call_id is not None:
            step = self._steps_by_call_id.get(event.call_id)
            if step is None:
                self._early_results[event.call_id] = event
                return False
        else:
            step = self._first_pending(event.tool_name)
            if step is None:
                logger.debug(
                    "Dropping result with no call id and no pending %r step",
                    event.tool_name,
                )
                return False

        if step.status is StepStatus.completed:
            return False
        step.complete(event.output)
        return True

    def _first_pending(self, tool_name: str | None) -> TaskStep | None:
        """Earliest-started pending step for a tool identifier (FIFO)."""
        for step in self.steps:
            if step.status is not StepStatus.pending:
                continue
            if tool_name is None or step.tool_name == tool_name:
                return step
        return None

    def finish(self) -> None:
        """Mark the turn ready. No-op once terminal."""
        if self.status is TurnStatus.streaming:
            self.status = TurnStatus.ready

    def fail(self, failure: StreamFailed) -> None:
        """Mark the turn failed. Pending steps stay pending."""
        if self.is_terminal:
            return
        self.status = TurnStatus.error
        self.error = failure

    def to_tool_call_records(self) -> list[dict[str, Any]]:
        return [step.to_record() for step in self.steps]

    def snapshot(self) -> dict[str, Any]:
        """Serialisable view of the turn for SSE clients."""
        data: dict[str, Any] = {
            "message_id": self.message_id,
            "status": self.status.value,
            "text": self.text,
            "steps": [step.to_dict() for step in self.steps],
            "summary": self.summary,
            "steps_finished": self.steps_finished,
        }
        if self.error is not None:
            data["error"] = {
                "message": self.error.message,
                "retry_after": self.error.retry_after,
                "rate_limited": self.error.rate_limited,
            }
        return data
