"""Redaction helpers for tool payloads and stream error text.

Tool inputs and outputs pass through third-party apps and may carry
access tokens, OAuth codes, or connection secrets. Anything written to the
log or surfaced in an SSE error event goes through these helpers first.
"""

import json
import re
from typing import Any

# Substring patterns matched case-insensitively against mapping keys
_SENSITIVE_KEY_PATTERNS = frozenset({
    "secret", "token", "authorization", "api_key", "api-key", "apikey",
    "password", "credential", "client_secret", "cookie", "auth_code",
})

# Keys whose entire value is redacted regardless of content type
_CONTAINER_KEYS = frozenset({"credentials", "headers", "auth_config"})

_REDACTED = "***REDACTED***"


def _is_sensitive_key(key: str) -> bool:
    key_lower = key.lower()
    if key_lower in _CONTAINER_KEYS:
        return True
    return any(pattern in key_lower for pattern in _SENSITIVE_KEY_PATTERNS)


def redact_payload(payload: Any) -> Any:
    """Return a copy of a JSON-like payload with sensitive values masked.

    Walks nested mappings and sequences. Non-container values are returned
    unchanged. The input is never mutated.

    Args:
        payload: Tool input or output (dict, list, or scalar).

    Returns:
        Redacted copy of the payload.
    """
    if isinstance(payload, dict):
        return {
            key: _REDACTED if isinstance(key, str) and _is_sensitive_key(key)
            else redact_payload(value)
            for key, value in payload.items()
        }
    if isinstance(payload, (list, tuple)):
        return [redact_payload(item) for item in payload]
    return payload


def preview_payload(payload: Any, max_length: int = 300) -> str:
    """Render a redacted, truncated one-line preview of a payload for logs."""
    try:
        text = json.dumps(redact_payload(payload), default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        text = repr(payload)
    if len(text) > max_length:
        text = text[:max_length - 3] + "..."
    return text


_SENSITIVE_KEYWORDS = (
    r"secret|token|password|api[_-]?key|client_secret|authorization|credential"
)
_SENSITIVE_VALUE_PATTERNS = re.compile(
    r"(?i)"
    r"(?:"
    # Authorization: Bearer <token>
    r"Authorization\s*:\s*Bearer\s+\S+"
    r"|"
    # "key": "value"
    r'"(?:' + _SENSITIVE_KEYWORDS + r')"\s*:\s*"[^"]*"'
    r"|"
    # key=value or key: value
    r"(?:" + _SENSITIVE_KEYWORDS + r")\s*[=:]\s*\S+"
    r"|"
    # Provider-style secret keys
    r"\bsk-[A-Za-z0-9_-]{8,}"
    r")",
)


def sanitize_error_message(msg: str | None, max_length: int = 500) -> str | None:
    """Sanitize an error message before it is logged or shown in the chat.

    Redacts sensitive-looking values and truncates to max_length.

    Args:
        msg: Error message to sanitize (None passes through).
        max_length: Maximum length of the sanitized message.

    Returns:
        Sanitized and truncated message, or None.
    """
    if msg is None:
        return None
    sanitized = _SENSITIVE_VALUE_PATTERNS.sub(_REDACTED, msg)
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length - 3] + "..."
    return sanitized
