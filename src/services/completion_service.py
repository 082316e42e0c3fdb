"""Streaming completion service for assistant turns.

``CompletionService`` is the narrow interface the conversation handler
consumes: ``stream`` yields raw provider events for one turn and
``generate_title`` answers a single prompt. ``AnthropicCompletionService``
implements it with the Anthropic Messages API, running the tool loop itself
and executing tool calls through a ``ToolRegistry``.

Raw events are plain dicts in the shape ``decode_event`` understands:
text-delta, tool-call, tool-result, finish-step and error.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import anthropic
from anthropic import AsyncAnthropic

from src.errors.domain import IntegrationError
from src.services.integrations_client import IntegrationsClient
from src.services.stream_reducer import DEFAULT_MAX_STEPS
from src.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

AGENT_MODEL = os.environ.get("AGENT_MODEL", "claude-haiku-4-5-20251001")
TITLE_MODEL = os.environ.get("TITLE_MODEL", "claude-haiku-4-5-20251001")


def get_max_steps() -> int:
    """Read AGENT_MAX_STEPS, falling back to the default on bad values."""
    raw = os.environ.get("AGENT_MAX_STEPS", "").strip()
    if not raw:
        return DEFAULT_MAX_STEPS
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid AGENT_MAX_STEPS=%r, using %d", raw, DEFAULT_MAX_STEPS)
        return DEFAULT_MAX_STEPS
    return value if value > 0 else DEFAULT_MAX_STEPS


def validate_completion_config() -> None:
    """Warn at startup when the completion provider is not configured."""
    if not os.environ.get("ANTHROPIC_API_KEY", "").strip():
        logger.warning("ANTHROPIC_API_KEY is not set; assistant turns will fail")


SYSTEM_PROMPT_TEMPLATE = """You are iSuiteAI, a helpful personal assistant. Use the connected app tools to take action.

## CRITICAL RULES

1. **DOCUMENT THEN EMAIL WORKFLOW**:
   - When asked to create a document AND email a link:
   - Step 1: Create the document using the appropriate tool
   - Step 2: WAIT for the result and extract the ACTUAL URL (documentUrl, spreadsheetUrl, webViewLink)
   - Step 3: ONLY THEN send the email with the REAL URL
   - NEVER use placeholder text like "[Insert link]" or "[link to document]"

2. **NEVER RETRY TOOL CALLS**: Call each tool ONCE only.

3. **EMAIL CONTENT MUST BE COMPLETE**:
   - Include the FULL actual URL in the email body (e.g., https://docs.google.com/document/d/...)
   - NOT: "[Insert link here]" or "[link]"

4. Be concise and friendly
5. Don't show technical IDs
6. Send exactly ONE email per request

User: {name} ({email})"""


def build_system_prompt(name: str | None, email: str | None) -> str:
    """Build the assistant system prompt for a user."""
    return SYSTEM_PROMPT_TEMPLATE.format(name=name or "User", email=email or "unknown")


def to_provider_messages(history: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert live history into alternating user/assistant text messages.

    Empty messages are dropped and consecutive messages of the same role are
    merged, so a failed turn (user message with no reply) stays valid input.
    """
    result: list[dict[str, Any]] = []
    for m in history:
        content = (m.get("content") or "").strip()
        role = m.get("role")
        if not content or role not in ("user", "assistant"):
            continue
        if result and result[-1]["role"] == role:
            result[-1]["content"] += "\n\n" + content
        else:
            result.append({"role": role, "content": content})
    while result and result[0]["role"] != "user":
        result.pop(0)
    return result


@dataclass
class ToolRegistry:
    """Tools offered to the model and the callable that executes them."""

    definitions: list[dict[str, Any]] = field(default_factory=list)
    executor: Callable[[str, dict[str, Any]], Awaitable[Any]] | None = None

    async def execute(self, name: str, arguments: dict[str, Any]) -> Any:
        if self.executor is None:
            return {"successful": False, "error": f"Tool {name} is not available"}
        return await self.executor(name, arguments)


async def build_tool_registry(client: IntegrationsClient, user_id: str) -> ToolRegistry:
    """Fetch the user's tools; an unreachable service yields no tools."""
    try:
        definitions = await client.list_tools(user_id)
    except IntegrationError as e:
        logger.warning("Tools unavailable for user %s: %s", user_id, e)
        definitions = []
    logger.info("Loaded %d tools for user %s", len(definitions), user_id)

    async def _execute(name: str, arguments: dict[str, Any]) -> Any:
        return await client.execute_tool(user_id, name, arguments)

    return ToolRegistry(definitions=definitions, executor=_execute)


class CompletionService(ABC):
    """Streaming completion provider used by the conversation handler."""

    @abstractmethod
    def stream(
        self,
        system_prompt: str,
        messages: Sequence[dict[str, Any]],
        tools: ToolRegistry,
        max_steps: int,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield raw events for one assistant turn."""

    @abstractmethod
    async def generate_title(self, prompt: str) -> str:
        """Answer a short title prompt."""


def _retry_after_header(error: anthropic.APIStatusError) -> str | None:
    try:
        return error.response.headers.get("retry-after")
    except AttributeError:
        return None


def _tool_result_content(output: Any) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, default=str)


class AnthropicCompletionService(CompletionService):
    """Completion service backed by the Anthropic Messages API.

    Args:
        client: AsyncAnthropic instance (created on first use when omitted).
        model: Model for assistant turns.
        title_model: Model for title generation.
        max_tokens: Output token bound per model step.
    """

    def __init__(
        self,
        client: AsyncAnthropic | None = None,
        model: str = AGENT_MODEL,
        title_model: str = TITLE_MODEL,
        max_tokens: int = 4096,
    ) -> None:
        self._client = client
        self.model = model
        self.title_model = title_model
        self.max_tokens = max_tokens

    @property
    def client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic()
        return self._client

    async def stream(
        self,
        system_prompt: str,
        messages: Sequence[dict[str, Any]],
        tools: ToolRegistry,
        max_steps: int = DEFAULT_MAX_STEPS,
    ) -> AsyncIterator[dict[str, Any]]:
        history: list[dict[str, Any]] = to_provider_messages(messages)
        request: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system_prompt,
        }
        if tools.definitions:
            request["tools"] = tools.definitions

        try:
            for _ in range(max_steps):
                async with self.client.messages.stream(messages=history, **request) as s:
                    async for event in s:
                        if event.type == "text":
                            yield {"type": "text-delta", "delta": event.text}
                    final = await s.get_final_message()

                tool_uses = [b for b in final.content if b.type == "tool_use"]
                for block in tool_uses:
                    yield {
                        "type": "tool-call",
                        "toolCallId": block.id,
                        "toolName": block.name,
                        "input": block.input,
                    }
                yield {"type": "finish-step", "finishReason": final.stop_reason}

                if final.stop_reason != "tool_use" or not tool_uses:
                    return

                history.append({
                    "role": "assistant",
                    "content": [b.model_dump(exclude_none=True) for b in final.content],
                })
                results = []
                for block in tool_uses:
                    output = await tools.execute(block.name, dict(block.input or {}))
                    yield {
                        "type": "tool-result",
                        "toolCallId": block.id,
                        "toolName": block.name,
                        "output": output,
                    }
                    results.append({
                        "type": "tool_result",
                        "tool_use_id": block.id,
                        "content": _tool_result_content(output),
                    })
                history.append({"role": "user", "content": results})

            logger.info("Turn stopped at step limit (%d)", max_steps)
        except anthropic.RateLimitError as e:
            logger.warning("Completion rate limited: %s", e)
            yield {
                "type": "error",
                "errorText": sanitize_error_message(str(e)),
                "rate_limited": True,
                "retryAfter": _retry_after_header(e),
            }
        except anthropic.APIError as e:
            logger.error("Completion stream failed: %s", e)
            yield {"type": "error", "errorText": sanitize_error_message(str(e))}

    async def generate_title(self, prompt: str) -> str:
        response = await self.client.messages.create(
            model=self.title_model,
            max_tokens=30,
            messages=[{"role": "user", "content": prompt}],
        )
        if not response.content:
            return ""
        return getattr(response.content[0], "text", "") or ""
