"""Host runtime boundary — what the bridge needs from the agent runtime."""

from __future__ import annotations

from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from convos_bridge.constants import CUSTOM_TYPE

DeliverAs = Literal["steer", "followUp"]
NoticeLevel = Literal["info", "warning", "error"]


class TextPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    """Inline image, base64-encoded."""

    model_config = ConfigDict(frozen=True)

    type: Literal["image"] = "image"
    data: str
    mime_type: str = Field(description="e.g. image/png")


class HostMessage(BaseModel):
    """A message published into the host's conversation."""

    custom_type: str = CUSTOM_TYPE
    content: str | list[TextPart | ImagePart]
    display: bool = True
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def text(self) -> str:
        """Concatenated text content (image parts omitted)."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(p.text for p in self.content if isinstance(p, TextPart))


@runtime_checkable
class HostRuntime(Protocol):
    """Minimal surface of the agent runtime the bridge publishes into."""

    async def publish(
        self,
        message: HostMessage,
        *,
        trigger_turn: bool,
        deliver_as: DeliverAs | None = None,
    ) -> None:
        """Inject *message* into the conversation, optionally starting a turn."""
        ...

    async def notify(self, text: str, level: NoticeLevel = "info") -> None:
        """Show a transient operator-facing notice."""
        ...
