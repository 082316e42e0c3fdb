"""Tool-call classification for task timeline display.

Resolves a raw tool identifier plus its input payload into the toolkit it
belongs to, a readable action name, and a logo reference. Meta-tools of the
integrations service are unwrapped: a batch execution is shown as its first
nested tool, and a tool search is attributed to a toolkit by keywords in its
query text.

Classification is pure. The same identifier and payload always produce the
same result, and nothing here raises for unrecognised input.

Example:
    classify("GMAIL_SEND_EMAIL", {})
    # ToolClassification(toolkit_id="gmail", action_name="Send Email",
    #                    logo_ref="https://logos.composio.dev/api/gmail")
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Protocol

from src.services.toolkit_catalog import (
    INTERNAL_TOOLKIT,
    META_TOOL_LABELS,
    META_TOOL_PREFIX,
    MULTI_EXECUTE_TOOL,
    NON_APP_TOOLKITS,
    SEARCH_FALLBACK_LABEL,
    SEARCH_KEYWORD_RULES,
    SEARCH_TOOLS,
    UNKNOWN_TOOLKIT,
    toolkit_display_name,
    toolkit_logo,
)

# Nested meta-tool payloads are unwrapped at most this deep.
_MAX_UNWRAP_DEPTH = 4


@dataclass(frozen=True)
class ToolClassification:
    """Resolved origin and label for one tool call."""

    toolkit_id: str
    action_name: str
    logo_ref: str


class HasToolkit(Protocol):
    toolkit: str


def format_action_words(raw: str) -> str:
    """Turn an underscore-delimited identifier into capitalised words.

    Args:
        raw: Identifier fragment such as ``SEND_EMAIL``.

    Returns:
        Readable label such as ``Send Email``.
    """
    words = [w for w in raw.replace("-", "_").split("_") if w]
    return " ".join(w[:1].upper() + w[1:].lower() for w in words)


def _split_identifier(tool_identifier: str) -> tuple[str, str]:
    """Split an app tool identifier into (toolkit_id, action_name)."""
    prefix, sep, remainder = tool_identifier.partition("_")
    if not sep or not prefix or not remainder.strip("_"):
        return UNKNOWN_TOOLKIT, format_action_words(tool_identifier) or "Unknown Tool"
    return prefix.lower(), format_action_words(remainder)


def _first_sub_tool(input_payload: Any) -> tuple[str, Any] | None:
    """Return (identifier, arguments) of the first nested batch call, if any."""
    if not isinstance(input_payload, dict):
        return None
    tools = input_payload.get("tools")
    if not isinstance(tools, list) or not tools:
        return None
    first = tools[0]
    if not isinstance(first, dict):
        return None
    slug = first.get("tool_slug") or first.get("toolSlug") or first.get("name")
    if not isinstance(slug, str) or not slug:
        return None
    return slug, first.get("arguments", first.get("input"))


def _search_query_text(input_payload: Any) -> str | None:
    """Extract the free-text query of a tool search, or None when absent."""
    if not isinstance(input_payload, dict):
        return None
    queries = input_payload.get("queries")
    if isinstance(queries, list) and queries:
        first = queries[0]
        if isinstance(first, dict):
            text = first.get("use_case") or first.get("query") or ""
            return text if isinstance(text, str) else ""
        if isinstance(first, str):
            return first
        return ""
    for key in ("use_case", "query"):
        value = input_payload.get(key)
        if isinstance(value, str):
            return value
    return None


def _classify_search(query: str) -> tuple[str, str]:
    query_lower = query.lower()
    for keywords, toolkit, label in SEARCH_KEYWORD_RULES:
        if any(keyword in query_lower for keyword in keywords):
            return toolkit, label
    return INTERNAL_TOOLKIT, SEARCH_FALLBACK_LABEL


def _resolve(tool_identifier: str, input_payload: Any, depth: int) -> tuple[str, str]:
    if tool_identifier.startswith(META_TOOL_PREFIX):
        if tool_identifier == MULTI_EXECUTE_TOOL and depth < _MAX_UNWRAP_DEPTH:
            sub_tool = _first_sub_tool(input_payload)
            if sub_tool is not None:
                return _resolve(sub_tool[0], sub_tool[1], depth + 1)
        if tool_identifier == SEARCH_TOOLS:
            query = _search_query_text(input_payload)
            if query is not None:
                return _classify_search(query)
        label = META_TOOL_LABELS.get(tool_identifier)
        if label is None:
            label = format_action_words(tool_identifier[len(META_TOOL_PREFIX):])
        return INTERNAL_TOOLKIT, label or "Process Request"
    return _split_identifier(tool_identifier)


def classify(tool_identifier: str, input_payload: Any = None) -> ToolClassification:
    """Classify a tool call for display.

    Args:
        tool_identifier: Raw tool identifier from the stream (e.g.
            ``GOOGLECALENDAR_CREATE_EVENT`` or ``COMPOSIO_MULTI_EXECUTE_TOOL``).
        input_payload: The call's input. Only inspected for meta-tools.

    Returns:
        ToolClassification with toolkit id, action name and logo reference.
        Unrecognised identifiers resolve to the ``unknown`` toolkit.
    """
    if not isinstance(tool_identifier, str):
        tool_identifier = ""
    toolkit_id, action_name = _resolve(tool_identifier.strip(), input_payload, 0)
    return ToolClassification(
        toolkit_id=toolkit_id,
        action_name=action_name,
        logo_ref=toolkit_logo(toolkit_id),
    )


def summarize_toolkits(toolkits: Iterable[str]) -> str:
    """Build the one-line summary for a sequence of step toolkits.

    Args:
        toolkits: Toolkit ids in step order (duplicates allowed).

    Returns:
        "Processing..." with no steps, "Processing request..." when every
        step is internal or unattributed, otherwise "Using A" /
        "Using A, B" / "Using A, B +N".
    """
    all_toolkits = list(toolkits)
    if not all_toolkits:
        return "Processing..."

    distinct: list[str] = []
    for toolkit in all_toolkits:
        if toolkit not in NON_APP_TOOLKITS and toolkit not in distinct:
            distinct.append(toolkit)

    if not distinct:
        return "Processing request..."
    names = ", ".join(toolkit_display_name(t) for t in distinct[:2])
    extra = f" +{len(distinct) - 2}" if len(distinct) > 2 else ""
    return f"Using {names}{extra}"


def summarize_steps(steps: Iterable[HasToolkit]) -> str:
    """Build the one-line summary for a list of task steps."""
    return summarize_toolkits(step.toolkit for step in steps)
