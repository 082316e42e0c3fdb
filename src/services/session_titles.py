"""Session title inference.

After an assistant turn is saved, a session still titled with the placeholder
(or with a greeting) gets a short descriptive title from the completion
service. When that call fails, the title is derived from the first user
message that is not a bare greeting.
"""

import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from src.db.models import DEFAULT_SESSION_TITLE

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 40
# Messages given to the model as context for a title.
TITLE_CONTEXT_MESSAGES = 6
# Messages scanned for the fallback title.
FALLBACK_SCAN_MESSAGES = 3
MIN_MESSAGES_FOR_TITLE = 2

_GREETING_TITLE = re.compile(r"\b(hi|hello|hey|greetings?)\b", re.IGNORECASE)
_GREETING_MESSAGE = re.compile(r"^(hi|hello|hey|greetings?)[\s!.,?]*$", re.IGNORECASE)

TITLE_PROMPT_TEMPLATE = (
    "Based on this conversation, generate a very short, descriptive title "
    "(2-4 words) that captures the MAIN TOPIC or ACTION being discussed. "
    'Ignore greetings like "hello" or "hi" and focus on the actual task or '
    "question.\n\n"
    "Conversation:\n{conversation}\n\n"
    "Respond with ONLY the title, no quotes or extra text. Examples: "
    '"Email sending task", "GitHub repository help", '
    '"Calendar event creation", "Document editing"'
)


def needs_title(title: str | None) -> bool:
    """Return True if a session title is the placeholder or looks like a greeting."""
    if not title or title == DEFAULT_SESSION_TITLE:
        return True
    return _GREETING_TITLE.search(title) is not None


def is_greeting(content: str) -> bool:
    return _GREETING_MESSAGE.match(content.strip()) is not None


def build_title_prompt(messages: Sequence[dict[str, Any]]) -> str:
    """Build the title request from the first few messages."""
    conversation = "\n".join(
        f"{m['role']}: {m['content']}" for m in messages[:TITLE_CONTEXT_MESSAGES]
    )
    return TITLE_PROMPT_TEMPLATE.format(conversation=conversation)


def clean_generated_title(text: str) -> str:
    """Trim whitespace and wrapping quotes, then cap the length."""
    return text.strip().strip('"\'').strip()[:TITLE_MAX_LENGTH]


def derive_fallback_title(messages: Sequence[dict[str, Any]]) -> str | None:
    """Derive a title from the first meaningful user message.

    Only the first FALLBACK_SCAN_MESSAGES messages are considered.

    Args:
        messages: Messages in creation order (dicts with role/content).

    Returns:
        Trimmed, capitalised title, cut to TITLE_MAX_LENGTH characters with
        "..." appended when longer. None if no usable message exists.
    """
    for m in messages[:FALLBACK_SCAN_MESSAGES]:
        if m.get("role") != "user":
            continue
        content = (m.get("content") or "").strip()
        if not content or is_greeting(content):
            continue
        title = content[0].upper() + content[1:]
        if len(title) > TITLE_MAX_LENGTH:
            title = title[:TITLE_MAX_LENGTH].strip() + "..."
        return title
    return None


async def infer_session_title(
    messages: Sequence[dict[str, Any]],
    generate: Callable[[str], Awaitable[str]],
) -> str | None:
    """Produce a title for a conversation, best-effort.

    Args:
        messages: Messages in creation order.
        generate: Async callable that sends a prompt to the completion
            service and returns its text.

    Returns:
        The generated title, the fallback title when generation fails or
        returns nothing, or None when fewer than two messages exist or no
        fallback can be derived.
    """
    if len(messages) < MIN_MESSAGES_FOR_TITLE:
        return None
    try:
        title = clean_generated_title(await generate(build_title_prompt(messages)))
        if title:
            return title
        logger.info("Title generation returned empty text; using fallback")
    except Exception as e:
        logger.warning("Title generation failed: %s", e)
    return derive_fallback_title(messages)
