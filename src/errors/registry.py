"""Error code registry with E-XXXX format codes.

Codes are grouped by category:
- E-1xxx: Session and transcript errors
- E-2xxx: Integration (connected app) errors
- E-3xxx: Completion stream errors
- E-4xxx: System/internal errors
- E-5xxx: Authentication errors

Each error includes a code, title, message template, and remediation text
shown to the user.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    SESSION = "session"  # E-1xxx
    INTEGRATION = "integration"  # E-2xxx
    STREAM = "stream"  # E-3xxx
    SYSTEM = "system"  # E-4xxx
    AUTH = "auth"  # E-5xxx


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action user should take to resolve.
        is_retryable: Whether the user may simply resend.
    """

    code: str
    category: ErrorCategory
    title: str
    message_template: str
    remediation: str
    is_retryable: bool = False


ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Session errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.SESSION,
        title="Chat Not Found",
        message_template="{resource} '{identifier}' was not found.",
        remediation="Pick another chat from the history or start a new one.",
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.SESSION,
        title="Response In Progress",
        message_template="{message}",
        remediation="Wait for the current response to finish before sending again.",
        is_retryable=True,
    ),
    "E-1003": ErrorCode(
        code="E-1003",
        category=ErrorCategory.SESSION,
        title="Invalid Request",
        message_template="{message}",
        remediation="Correct the request and try again.",
    ),
    # Integration errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.INTEGRATION,
        title="Connected App Error",
        message_template="A connected app request failed: {message}",
        remediation="Check the app on the Apps page and reconnect it if needed.",
        is_retryable=True,
    ),
    "E-2002": ErrorCode(
        code="E-2002",
        category=ErrorCategory.INTEGRATION,
        title="Disconnect Failed",
        message_template="Failed to disconnect: {message}",
        remediation="Refresh the Apps page and try again.",
        is_retryable=True,
    ),
    # Stream errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.STREAM,
        title="Rate Limit Reached",
        message_template="Rate limit reached. Please wait {retry_after} seconds and try again.",
        remediation="Resend your message after the cool-down.",
        is_retryable=True,
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.STREAM,
        title="Response Failed",
        message_template="The assistant could not finish this response: {message}",
        remediation="Resend your message.",
        is_retryable=True,
    ),
    # System errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.SYSTEM,
        title="Internal Error",
        message_template="An unexpected error occurred: {message}",
        remediation="Try again. If the problem persists, contact support.",
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.SYSTEM,
        title="Save Failed",
        message_template="This conversation could not be saved: {message}",
        remediation="The answer is still shown; it may be missing after a reload.",
    ),
    # Auth errors (E-5xxx)
    "E-5001": ErrorCode(
        code="E-5001",
        category=ErrorCategory.AUTH,
        title="Not Signed In",
        message_template="Unauthorized. Please login first.",
        remediation="Sign in again.",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Get error definition by code.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Get all errors in a category."""
    return [e for e in ERROR_REGISTRY.values() if e.category == category]


def build_error_payload(code: str, **context: Any) -> dict[str, Any]:
    """Build the JSON error envelope body for a registry code.

    Missing template placeholders leave the template text in place rather
    than failing.

    Args:
        code: Error code in E-XXXX format.
        **context: Values for message template substitution.

    Returns:
        Dict with code, title, message, remediation and retryable keys.
    """
    error_def = get_error(code)
    if error_def is None:
        return {
            "code": code,
            "title": "Unknown Error",
            "message": str(context.get("message", f"Unknown error: {code}")),
            "remediation": "Contact support.",
            "retryable": False,
        }
    try:
        message = error_def.message_template.format(**context)
    except KeyError:
        message = error_def.message_template
    return {
        "code": error_def.code,
        "title": error_def.title,
        "message": message,
        "remediation": error_def.remediation,
        "retryable": error_def.is_retryable,
    }
