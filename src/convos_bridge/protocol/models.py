"""Pydantic v2 models for the ``convos agent serve`` ndjson protocol."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, field_validator

# ---------------------------------------------------------------------------
# Events (process -> bridge)
# ---------------------------------------------------------------------------


class _EventBase(BaseModel):
    """Common config for events read from the process's stdout."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class ReadyEvent(_EventBase):
    """The agent has joined (or created) its conversation."""

    event: Literal["ready"] = "ready"
    conversation_id: str = Field(alias="conversationId", min_length=1)
    invite_url: str | None = Field(default=None, alias="inviteUrl")
    qr_code_path: str | None = Field(default=None, alias="qrCodePath")


class MessageEvent(_EventBase):
    """A message received in the conversation."""

    event: Literal["message"] = "message"
    id: str
    sender_inbox_id: str = Field(alias="senderInboxId")
    content: str
    content_type: str = Field(alias="contentType")
    sent_at: str = Field(alias="sentAt", description="ISO 8601 send time")
    sent_at_ns: str | None = Field(
        default=None,
        alias="sentAtNs",
        description="Send time in nanoseconds, string-encoded",
    )

    @field_validator("sent_at", "sent_at_ns", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        # JSON numbers above 2**53 lose precision in most producers, so
        # timestamps travel as strings; accept ints for leniency.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def watermark(self) -> int | None:
        """Send time in nanoseconds, or ``None`` if it cannot be derived."""
        return send_time_ns(self.sent_at_ns, self.sent_at)


class MemberJoinedEvent(_EventBase):
    """A new member joined the conversation."""

    event: Literal["member_joined"] = "member_joined"
    inbox_id: str = Field(alias="inboxId")


class SentEvent(_EventBase):
    """Delivery confirmation for a message the bridge sent."""

    event: Literal["sent"] = "sent"
    id: str
    sent_at_ns: str | None = Field(default=None, alias="sentAtNs")

    @field_validator("sent_at_ns", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class ErrorEvent(_EventBase):
    """A non-fatal error reported by the process."""

    event: Literal["error"] = "error"
    message: str


class ExitEvent(_EventBase):
    """The process announced it is about to exit."""

    event: Literal["exit"] = "exit"
    code: int | None = None


def _event_discriminator(v: Any) -> str:
    """Extract the ``event`` tag from raw data or a model instance."""
    if isinstance(v, dict):
        return str(v.get("event", ""))
    return str(getattr(v, "event", ""))


ProtocolEvent = Annotated[
    Annotated[ReadyEvent, Tag("ready")]
    | Annotated[MessageEvent, Tag("message")]
    | Annotated[MemberJoinedEvent, Tag("member_joined")]
    | Annotated[SentEvent, Tag("sent")]
    | Annotated[ErrorEvent, Tag("error")]
    | Annotated[ExitEvent, Tag("exit")],
    Discriminator(_event_discriminator),
]
"""Discriminated union of every event the process can emit."""

EVENT_TYPES = frozenset({"ready", "message", "member_joined", "sent", "error", "exit"})


# ---------------------------------------------------------------------------
# Commands (bridge -> process)
# ---------------------------------------------------------------------------


class _CommandBase(BaseModel):
    """Common config for commands written to the process's stdin."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class SendCommand(_CommandBase):
    type: Literal["send"] = "send"
    text: str
    reply_to: str | None = Field(default=None, alias="replyTo")


class ReactCommand(_CommandBase):
    type: Literal["react"] = "react"
    message_id: str = Field(alias="messageId")
    emoji: str
    action: Literal["add", "remove"] = "add"


class AttachCommand(_CommandBase):
    type: Literal["attach"] = "attach"
    file: str
    mime_type: str | None = Field(default=None, alias="mimeType")
    reply_to: str | None = Field(default=None, alias="replyTo")


class RemoteAttachCommand(_CommandBase):
    """Share an already-encrypted attachment uploaded elsewhere."""

    type: Literal["remote-attach"] = "remote-attach"
    url: str
    content_digest: str = Field(alias="contentDigest")
    secret: str
    salt: str
    nonce: str
    content_length: int = Field(alias="contentLength", ge=0)
    filename: str | None = None
    scheme: str | None = None


class StopCommand(_CommandBase):
    type: Literal["stop"] = "stop"


ProtocolCommand = (
    SendCommand | ReactCommand | AttachCommand | RemoteAttachCommand | StopCommand
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


_FRACTION_RE = re.compile(r"\.(\d+)")


def send_time_ns(sent_at_ns: str | None, sent_at: str | None = None) -> int | None:
    """Resolve a send time to integer nanoseconds.

    Prefers the exact ``sentAtNs`` value; falls back to parsing the ISO
    ``sentAt`` string, keeping up to nine fractional digits. A ``sentAt``
    without a UTC offset is read as UTC.
    """
    if sent_at_ns:
        try:
            return int(sent_at_ns)
        except ValueError:
            pass
    if sent_at:
        return _iso_to_ns(sent_at)
    return None


def _iso_to_ns(sent_at: str) -> int | None:
    text = sent_at.strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"

    # datetime stops at microseconds, so the fraction is parsed separately.
    fraction_ns = 0
    m = _FRACTION_RE.search(text)
    if m is not None:
        fraction_ns = int(m.group(1)[:9].ljust(9, "0"))
        text = text[: m.start()] + text[m.end() :]

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp()) * 1_000_000_000 + fraction_ns
