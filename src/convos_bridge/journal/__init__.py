"""Bridge journal — event models and JSONL recorder."""

from convos_bridge.journal.models import (
    CatchUpEvent,
    CommandEvent,
    ErrorEvent,
    InboundEvent,
    JournalEndEvent,
    JournalEvent,
    JournalStartEvent,
    LifecycleEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from convos_bridge.journal.recorder import BridgeRecorder, EndReason

__all__ = [
    "BridgeRecorder",
    "CatchUpEvent",
    "CommandEvent",
    "EndReason",
    "ErrorEvent",
    "InboundEvent",
    "JournalEndEvent",
    "JournalEvent",
    "JournalStartEvent",
    "LifecycleEvent",
    "ToolCallEvent",
    "ToolResultEvent",
]
