"""Service layer for iSuite.

Provides tool-call classification, turn stream reduction, transcript
storage and the session lifecycle used by the chat API.
"""

from src.services.persistence_reconciler import LiveMessage, PersistenceReconciler
from src.services.session_controller import (
    LiveSession,
    SessionLifecycleController,
    SessionRegistry,
)
from src.services.stream_reducer import TaskStep, TurnReducer
from src.services.tool_classifier import ToolClassification, classify, summarize_steps
from src.services.transcript_store import TranscriptStore

__all__ = [
    "classify",
    "summarize_steps",
    "ToolClassification",
    "TaskStep",
    "TurnReducer",
    "TranscriptStore",
    "LiveMessage",
    "PersistenceReconciler",
    "LiveSession",
    "SessionLifecycleController",
    "SessionRegistry",
]
