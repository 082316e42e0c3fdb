"""Tests for the streaming turn reducer."""

import pytest

from src.services.stream_events import (
    StepFinished,
    StreamFailed,
    TextDelta,
    ToolCallResult,
    ToolCallStart,
)
from src.services.stream_reducer import StepStatus, TaskStep, TurnReducer, TurnStatus


@pytest.fixture
def turn():
    return TurnReducer(message_id="msg-1", max_steps=3)


class TestText:
    def test_accumulates_in_order(self, turn):
        turn.apply(TextDelta("Hel"))
        turn.apply(TextDelta("lo"))
        assert turn.text == "Hello"
        assert turn.status is TurnStatus.streaming

    def test_generates_message_id(self):
        assert TurnReducer().message_id


class TestToolSteps:
    def test_start_appends_pending_step(self, turn):
        changed = turn.apply(ToolCallStart("c1", "GMAIL_SEND_EMAIL", {"to": "a"}))
        assert changed is True
        assert len(turn.steps) == 1
        step = turn.steps[0]
        assert step.status is StepStatus.pending
        assert step.toolkit == "gmail"
        assert step.name == "Send Email"

    def test_result_completes_matching_step(self, turn):
        turn.apply(ToolCallStart("c1", "GMAIL_SEND_EMAIL", {}))
        turn.apply(ToolCallStart("c2", "SLACK_SEND_MESSAGE", {}))
        turn.apply(ToolCallResult("c2", {"ok": True}))
        assert [s.status for s in turn.steps] == [StepStatus.pending, StepStatus.completed]
        assert turn.steps[1].output == {"ok": True}

    def test_step_count_equals_distinct_starts(self, turn):
        turn.apply(ToolCallStart("c1", "GMAIL_SEND_EMAIL", {}))
        turn.apply(ToolCallStart("c2", "GMAIL_SEND_EMAIL", {}))
        turn.apply(ToolCallStart("c1", "GMAIL_SEND_EMAIL", {"to": "b"}))
        assert len(turn.steps) == 2

    def test_repeated_start_reclassifies_in_place(self, turn):
        turn.apply(ToolCallStart("c1", "COMPOSIO_MULTI_EXECUTE_TOOL", {}))
        assert turn.steps[0].toolkit == "composio"
        turn.apply(ToolCallStart(
            "c1",
            "COMPOSIO_MULTI_EXECUTE_TOOL",
            {"tools": [{"tool_slug": "GOOGLECALENDAR_CREATE_EVENT"}]},
        ))
        assert len(turn.steps) == 1
        assert turn.steps[0].toolkit == "googlecalendar"
        assert turn.steps[0].name == "Create Event"

    def test_repeated_start_keeps_completed_status(self, turn):
        turn.apply(ToolCallStart("c1", "GMAIL_SEND_EMAIL", {}))
        turn.apply(ToolCallResult("c1", "sent"))
        turn.apply(ToolCallStart("c1", "GMAIL_SEND_EMAIL", {"to": "x"}))
        assert turn.steps[0].status is StepStatus.completed

    def test_result_before_start_is_held(self, turn):
        assert turn.apply(ToolCallResult("c9", "early")) is False
        assert turn.steps == []
        turn.apply(ToolCallStart("c9", "GITHUB_CREATE_ISSUE", {}))
        assert turn.steps[0].status is StepStatus.completed
        assert turn.steps[0].output == "early"

    def test_result_without_call_id_matches_earliest_pending(self, turn):
        turn.apply(ToolCallStart("c1", "GMAIL_FETCH_EMAILS", {}))
        turn.apply(ToolCallStart("c2", "GMAIL_FETCH_EMAILS", {}))
        turn.apply(ToolCallResult(None, "first", tool_name="GMAIL_FETCH_EMAILS"))
        assert turn.steps[0].status is StepStatus.completed
        assert turn.steps[1].status is StepStatus.pending

    def test_duplicate_result_is_ignored(self, turn):
        turn.apply(ToolCallStart("c1", "GMAIL_SEND_EMAIL", {}))
        assert turn.apply(ToolCallResult("c1", "one")) is True
        assert turn.apply(ToolCallResult("c1", "two")) is False
        assert turn.steps[0].output == "one"

    def test_start_without_call_id_gets_synthetic_id(self, turn):
        turn.apply(ToolCallStart(None, "NOTION_CREATE_PAGE", {}))
        assert turn.steps[0].call_id == "msg-1:0"

    def test_summary_follows_steps(self, turn):
        assert turn.summary == "Processing..."
        turn.apply(ToolCallStart("c1", "COMPOSIO_SEARCH_TOOLS", {"query": "weather"}))
        assert turn.summary == "Processing request..."
        turn.apply(ToolCallStart("c2", "GMAIL_SEND_EMAIL", {}))
        assert turn.summary == "Using Gmail"


class TestTerminalStates:
    def test_finish_marks_ready(self, turn):
        turn.apply(TextDelta("done"))
        turn.finish()
        assert turn.status is TurnStatus.ready
        assert turn.is_terminal

    def test_pending_steps_stay_pending_after_finish(self, turn):
        turn.apply(ToolCallStart("c1", "GMAIL_SEND_EMAIL", {}))
        turn.finish()
        assert turn.steps[0].status is StepStatus.pending

    def test_events_after_terminal_are_ignored(self, turn):
        turn.finish()
        assert turn.apply(TextDelta("late")) is False
        assert turn.apply(ToolCallStart("c1", "GMAIL_SEND_EMAIL", {})) is False
        assert turn.text == ""
        assert turn.steps == []

    def test_failure_keeps_partial_state(self, turn):
        turn.apply(TextDelta("partial"))
        turn.apply(StreamFailed("boom"))
        assert turn.status is TurnStatus.error
        assert turn.text == "partial"
        assert turn.error.message == "boom"

    def test_finish_after_failure_is_noop(self, turn):
        turn.fail(StreamFailed("boom"))
        turn.finish()
        assert turn.status is TurnStatus.error

    def test_step_limit(self, turn):
        for _ in range(3):
            assert turn.apply(StepFinished("tool-calls")) is False
        assert turn.steps_finished == 3
        assert turn.step_limit_reached is True


class TestSerialisation:
    def test_records_are_always_completed(self, turn):
        turn.apply(ToolCallStart("c1", "GMAIL_SEND_EMAIL", {"to": "a"}))
        records = turn.to_tool_call_records()
        assert records == [{
            "call_id": "c1",
            "tool_name": "GMAIL_SEND_EMAIL",
            "input": {"to": "a"},
            "output": None,
            "status": "completed",
        }]

    def test_step_rebuilt_from_record(self):
        step = TaskStep.from_record({"tool_name": "SLACK_SEND_MESSAGE", "output": "ok"}, 2)
        assert step.call_id == "restored-2"
        assert step.status is StepStatus.completed
        assert step.toolkit == "slack"

    def test_snapshot_includes_error(self, turn):
        turn.apply(StreamFailed("limited", retry_after=30, rate_limited=True))
        snap = turn.snapshot()
        assert snap["status"] == "error"
        assert snap["error"] == {"message": "limited", "retry_after": 30, "rate_limited": True}
