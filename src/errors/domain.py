"""Typed domain exceptions for API error mapping.

Services raise these; exception handlers in src/api/main.py translate
them into HTTP responses. Stream and persistence failures never reach a
handler as exceptions during a turn: they are turned into SSE events or
log lines so already-rendered content is never lost.

Usage:
    # In service layer
    raise NotFoundError("Session", session_id)

    # In route handler (or via the app-level handler)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
"""

# Cool-down applied when a rate-limited provider gives no backoff hint.
DEFAULT_RETRY_AFTER_SECONDS = 30


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class UnauthorizedError(DomainError):
    """No authenticated identity. Maps to HTTP 401 + login redirect."""

    def __init__(self, message: str = "Unauthorized. Please login first.") -> None:
        super().__init__(message)


class NotFoundError(DomainError):
    """Resource missing or not owned by the caller. Maps to HTTP 404."""

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class ConflictError(DomainError):
    """Operation conflicts with current state. Maps to HTTP 409."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class TurnInProgressError(ConflictError):
    """A turn is already streaming for this session."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' already has a response in progress")
        self.session_id = session_id


class ValidationError(DomainError):
    """Validation failure. Maps to HTTP 400."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class StreamError(DomainError):
    """The completion stream ended abnormally.

    Attributes:
        retry_after: Seconds the client should wait before resending.
            Set for rate limiting; None for other failures.
        rate_limited: Whether the provider rejected the request for rate.
    """

    def __init__(
        self,
        message: str,
        retry_after: int | None = None,
        rate_limited: bool = False,
    ) -> None:
        super().__init__(message)
        self.rate_limited = rate_limited
        if rate_limited and retry_after is None:
            retry_after = DEFAULT_RETRY_AFTER_SECONDS
        self.retry_after = retry_after


class PersistenceError(DomainError):
    """A transcript write failed. Logged; the rendered turn is kept."""

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to {operation}{detail}")
        self.operation = operation
        self.cause = cause


class IntegrationError(DomainError):
    """The integrations account service rejected or failed a request."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str = "E-2001",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
