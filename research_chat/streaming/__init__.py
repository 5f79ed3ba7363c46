"""Streaming response engine.

Turns a chat prompt into a live-updating assistant reply.

Responsibilities:
    - Decoding the backend's event stream into typed events
    - Tracking the searching / responding / charting progress of a turn
    - Holding the conversation's message log and in-flight turn
    - Cancellation, error recovery and the chart follow-up request

Independent of any UI framework: state changes are published to listeners.
"""

from research_chat.streaming.orchestrator import (
    CancelToken,
    StreamEventError,
    StreamOrchestrator,
    TurnInProgressError,
)
from research_chat.streaming.reader import EventStreamReader, ServerSentEvent, stream_events
from research_chat.streaming.session import ChangeKind, ConversationSession
from research_chat.streaming.stages import Stage, StageState, StageTracker, StageTransitionError

__all__ = [
    "CancelToken",
    "ChangeKind",
    "ConversationSession",
    "EventStreamReader",
    "ServerSentEvent",
    "Stage",
    "StageState",
    "StageTracker",
    "StageTransitionError",
    "StreamEventError",
    "StreamOrchestrator",
    "TurnInProgressError",
    "stream_events",
]
