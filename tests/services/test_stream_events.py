"""Tests for completion-stream event decoding."""

import pytest

from src.errors.domain import DEFAULT_RETRY_AFTER_SECONDS
from src.services.stream_events import (
    StepFinished,
    StreamFailed,
    TextDelta,
    ToolCallResult,
    ToolCallStart,
    decode_event,
    is_rate_limit_message,
    parse_retry_after,
)


class TestTextEvents:
    @pytest.mark.parametrize("raw", [
        {"type": "text-delta", "delta": "Hi"},
        {"type": "text-delta", "textDelta": "Hi"},
        {"type": "text", "text": "Hi"},
    ])
    def test_aliases(self, raw):
        assert decode_event(raw) == TextDelta(text="Hi")

    def test_empty_delta_is_skipped(self):
        assert decode_event({"type": "text-delta", "delta": ""}) is None


class TestToolCallStart:
    def test_ai_sdk_shape(self):
        raw = {
            "type": "tool-call",
            "toolCallId": "call_1",
            "toolName": "GMAIL_SEND_EMAIL",
            "input": {"to": "a@example.com"},
        }
        assert decode_event(raw) == ToolCallStart(
            call_id="call_1", tool_name="GMAIL_SEND_EMAIL", input={"to": "a@example.com"}
        )

    def test_args_alias(self):
        event = decode_event({"type": "tool_call", "id": "x", "name": "SLACK_SEND", "args": {"a": 1}})
        assert event.input == {"a": 1}
        assert event.call_id == "x"

    def test_json_string_arguments_are_parsed(self):
        event = decode_event({"type": "tool-call", "toolName": "T_X", "arguments": '{"q": "hi"}'})
        assert event.input == {"q": "hi"}

    def test_invalid_json_arguments_kept_as_text(self):
        event = decode_event({"type": "tool-call", "toolName": "T_X", "arguments": "not json"})
        assert event.input == "not json"

    def test_missing_call_id(self):
        event = decode_event({"type": "tool-call", "toolName": "T_X"})
        assert event.call_id is None
        assert event.input == {}


class TestToolCallResult:
    def test_output_alias(self):
        event = decode_event({"type": "tool-result", "toolCallId": "c1", "output": {"ok": True}})
        assert event == ToolCallResult(call_id="c1", output={"ok": True}, tool_name=None)

    def test_result_alias_with_tool_use_id(self):
        event = decode_event({"type": "tool_result", "tool_use_id": "c2", "result": "done"})
        assert event.call_id == "c2"
        assert event.output == "done"


class TestStepAndError:
    def test_finish_step(self):
        assert decode_event({"type": "finish-step", "finishReason": "tool-calls"}) == StepFinished(
            reason="tool-calls"
        )

    def test_plain_error(self):
        event = decode_event({"type": "error", "errorText": "boom"})
        assert event == StreamFailed(message="boom", retry_after=None, rate_limited=False)

    def test_rate_limit_with_hint_in_text(self):
        event = decode_event({
            "type": "error",
            "errorText": "Rate limit exceeded. Please try again in 12.4s",
        })
        assert event.rate_limited is True
        assert event.retry_after == 13

    def test_rate_limit_flag_without_hint(self):
        event = decode_event({"type": "error", "errorText": "slow down", "rate_limited": True})
        assert event.retry_after == DEFAULT_RETRY_AFTER_SECONDS

    def test_explicit_retry_after(self):
        event = decode_event({
            "type": "error", "errorText": "x", "code": 429, "retryAfter": "7",
        })
        assert event.rate_limited is True
        assert event.retry_after == 7

    def test_nested_error_object(self):
        event = decode_event({"type": "error", "error": {"message": "overloaded"}})
        assert event.message == "overloaded"


class TestIgnoredEvents:
    @pytest.mark.parametrize("raw", [
        {"type": "start"},
        {"type": "reasoning-delta", "delta": "thinking"},
        {"no_type": True},
        "text-delta",
        None,
    ])
    def test_returns_none(self, raw):
        assert decode_event(raw) is None


class TestRetryAfter:
    def test_hint_wins(self):
        assert parse_retry_after("try again in 5s", hint=2.1) == 3

    def test_message_hint(self):
        assert parse_retry_after("Please try again in 20 seconds") == 20

    def test_default(self):
        assert parse_retry_after("nope") == DEFAULT_RETRY_AFTER_SECONDS
        assert parse_retry_after(None, hint="garbage") == DEFAULT_RETRY_AFTER_SECONDS

    def test_rate_limit_detection(self):
        assert is_rate_limit_message("Rate limit reached for model")
        assert is_rate_limit_message("", code="rate_limit_error")
        assert not is_rate_limit_message("connection reset")
