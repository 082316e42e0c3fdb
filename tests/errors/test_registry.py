"""Unit tests for src/errors/registry.py.

Tests verify:
- Every code is registered under the category its prefix names
- Payloads substitute context and tolerate missing placeholders
"""

import pytest

from src.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    build_error_payload,
    get_error,
    get_errors_by_category,
)

_PREFIX_CATEGORY = {
    "E-1": ErrorCategory.SESSION,
    "E-2": ErrorCategory.INTEGRATION,
    "E-3": ErrorCategory.STREAM,
    "E-4": ErrorCategory.SYSTEM,
    "E-5": ErrorCategory.AUTH,
}


@pytest.mark.parametrize("code", sorted(ERROR_REGISTRY))
def test_code_matches_category_prefix(code):
    error = get_error(code)
    assert error.code == code
    assert error.category == _PREFIX_CATEGORY[code[:3]]


def test_rate_limit_payload():
    payload = build_error_payload("E-3001", retry_after=42)
    assert payload["message"] == "Rate limit reached. Please wait 42 seconds and try again."
    assert payload["retryable"] is True
    assert payload["title"] == "Rate Limit Reached"


def test_not_found_payload():
    payload = build_error_payload("E-1001", resource="Session", identifier="abc")
    assert payload["message"] == "Session 'abc' was not found."
    assert payload["code"] == "E-1001"


def test_missing_placeholder_keeps_template():
    payload = build_error_payload("E-3002")
    assert "{message}" in payload["message"]


def test_unknown_code():
    payload = build_error_payload("E-9999", message="odd")
    assert payload["title"] == "Unknown Error"
    assert payload["message"] == "odd"


def test_errors_by_category():
    codes = {e.code for e in get_errors_by_category(ErrorCategory.STREAM)}
    assert codes == {"E-3001", "E-3002"}
