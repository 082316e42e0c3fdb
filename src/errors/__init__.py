"""Error handling framework for iSuite.

This package provides:
- Typed domain exceptions mapped to HTTP statuses
- Error code registry with E-XXXX format codes and user-facing text

Error categories:
- E-1xxx: Session and transcript errors
- E-2xxx: Integration errors
- E-3xxx: Completion stream errors
- E-4xxx: System/internal errors
- E-5xxx: Authentication errors
"""

from src.errors.domain import (
    DEFAULT_RETRY_AFTER_SECONDS,
    ConflictError,
    DomainError,
    IntegrationError,
    NotFoundError,
    PersistenceError,
    StreamError,
    TurnInProgressError,
    UnauthorizedError,
    ValidationError,
)
from src.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    build_error_payload,
    get_error,
    get_errors_by_category,
)

__all__ = [
    # Domain exceptions
    "DomainError",
    "UnauthorizedError",
    "NotFoundError",
    "ConflictError",
    "TurnInProgressError",
    "ValidationError",
    "StreamError",
    "PersistenceError",
    "IntegrationError",
    "DEFAULT_RETRY_AFTER_SECONDS",
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    "build_error_payload",
]
