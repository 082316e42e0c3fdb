"""Test helpers for iSuite tests."""

from tests.helpers.fake_completion import FakeCompletionService, tool_turn_events
from tests.helpers.fake_integrations import FakeIntegrationsService

__all__ = ["FakeCompletionService", "FakeIntegrationsService", "tool_turn_events"]
