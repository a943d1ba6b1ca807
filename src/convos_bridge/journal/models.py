"""Pydantic v2 models for bridge journal events."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag


class _EventBase(BaseModel):
    """Common envelope fields shared by every journal event."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    ts: str = Field(description="ISO 8601 timestamp with milliseconds")
    seq: int = Field(ge=0, description="Monotonic sequence number")


class JournalStartEvent(_EventBase):
    """Emitted once when the journal is opened."""

    type: Literal["journal_start"] = "journal_start"
    journal_id: str = Field(description="Unique journal identifier")
    conversation_id: str | None = Field(
        default=None, description="Conversation restored from disk, if any"
    )


class JournalEndEvent(_EventBase):
    """Emitted once when the journal is closed."""

    type: Literal["journal_end"] = "journal_end"
    reason: Literal["shutdown", "ctrl_c", "error"] = Field(
        description="Why the bridge stopped",
    )
    duration_ms: int = Field(description="Time the journal was open, in milliseconds")


class InboundEvent(_EventBase):
    """A protocol event read from the Convos process."""

    type: Literal["inbound"] = "inbound"
    event: str = Field(description="Protocol event tag, e.g. 'message'")
    payload: dict[str, Any] = Field(description="Event fields as received")


class CommandEvent(_EventBase):
    """A command written (or dropped) on the way to the Convos process."""

    type: Literal["command"] = "command"
    command: str = Field(description="Protocol command tag, e.g. 'send'")
    payload: dict[str, Any] = Field(description="Command fields as written")
    delivered: bool = Field(description="False when stdin was not writable")


class LifecycleEvent(_EventBase):
    """Process start/ready/stop/exit transitions."""

    type: Literal["lifecycle"] = "lifecycle"
    state: str = Field(description="New supervisor state")
    pid: int | None = Field(default=None, description="Process id")
    returncode: int | None = Field(default=None, description="Exit code, if exited")


class CatchUpEvent(_EventBase):
    """Outcome of a missed-message reconciliation."""

    type: Literal["catch_up"] = "catch_up"
    fetched: int = Field(description="Messages returned by the query")
    summarized: int = Field(description="Messages from other members")
    watermark: str | None = Field(description="Watermark after reconciliation")


class ToolCallEvent(_EventBase):
    """Emitted when a tool is invoked."""

    type: Literal["tool_call"] = "tool_call"
    tool: str = Field(description="Tool name")
    args: dict[str, Any] = Field(description="Tool arguments")


class ToolResultEvent(_EventBase):
    """Emitted when a tool call returns."""

    type: Literal["tool_result"] = "tool_result"
    tool: str = Field(description="Tool name")
    is_error: bool = Field(description="Whether the tool reported an error")
    duration_ms: int = Field(description="Tool execution duration in milliseconds")


class ErrorEvent(_EventBase):
    """An error handled inside the bridge."""

    type: Literal["error"] = "error"
    error: str = Field(description="Error description")
    context: str | None = Field(
        default=None,
        description="Error context: startup, catch_up, attachment, protocol, ...",
    )


def _event_discriminator(v: Any) -> str:
    """Extract the discriminator value from raw data or a model instance."""
    if isinstance(v, dict):
        return str(v.get("type", ""))
    return str(getattr(v, "type", ""))


JournalEvent = Annotated[
    Annotated[JournalStartEvent, Tag("journal_start")]
    | Annotated[JournalEndEvent, Tag("journal_end")]
    | Annotated[InboundEvent, Tag("inbound")]
    | Annotated[CommandEvent, Tag("command")]
    | Annotated[LifecycleEvent, Tag("lifecycle")]
    | Annotated[CatchUpEvent, Tag("catch_up")]
    | Annotated[ToolCallEvent, Tag("tool_call")]
    | Annotated[ToolResultEvent, Tag("tool_result")]
    | Annotated[ErrorEvent, Tag("error")],
    Discriminator(_event_discriminator),
]
"""Discriminated union of all journal event types."""
