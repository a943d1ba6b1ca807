"""Remote-callable actions the agent uses to talk back to Convos."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

from convos_bridge.constants import NOT_RUNNING_MESSAGE
from convos_bridge.journal.models import ToolCallEvent, ToolResultEvent
from convos_bridge.protocol.models import (
    AttachCommand,
    ProtocolCommand,
    ReactCommand,
    RemoteAttachCommand,
    SendCommand,
)

if TYPE_CHECKING:
    from convos_bridge.bridge.controller import BridgeController
    from convos_bridge.journal.recorder import BridgeRecorder

logger = logging.getLogger(__name__)


class ToolResult(BaseModel):
    """What a tool hands back to the agent."""

    content: str
    is_error: bool = False
    details: dict[str, Any] = Field(default_factory=dict)


CONVOS_SEND_TOOL: dict[str, Any] = {
    "name": "convos_send",
    "description": (
        "Send a message to the active Convos conversation. Use this to reply "
        "to messages received from Convos users."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "text": {"type": "string", "description": "The message text to send"},
            "replyTo": {
                "type": "string",
                "description": "Message ID to reply to (optional)",
            },
        },
        "required": ["text"],
    },
}

CONVOS_REACT_TOOL: dict[str, Any] = {
    "name": "convos_react",
    "description": "Send a reaction emoji to a message in the active Convos conversation.",
    "input_schema": {
        "type": "object",
        "properties": {
            "messageId": {"type": "string", "description": "The message ID to react to"},
            "emoji": {
                "type": "string",
                "description": "The reaction emoji (e.g. 👍, ❤️, 😂)",
            },
            "action": {
                "type": "string",
                "enum": ["add", "remove"],
                "description": "Whether to add or remove the reaction (default: add)",
            },
        },
        "required": ["messageId", "emoji"],
    },
}

CONVOS_ATTACH_TOOL: dict[str, Any] = {
    "name": "convos_attach",
    "description": "Send a local file as an attachment to the active Convos conversation.",
    "input_schema": {
        "type": "object",
        "properties": {
            "file": {"type": "string", "description": "Path of the file to send"},
            "mimeType": {
                "type": "string",
                "description": "MIME type (optional, inferred from the extension)",
            },
            "replyTo": {
                "type": "string",
                "description": "Message ID to reply to (optional)",
            },
        },
        "required": ["file"],
    },
}

CONVOS_REMOTE_ATTACH_TOOL: dict[str, Any] = {
    "name": "convos_remote_attach",
    "description": (
        "Share an encrypted attachment that is already uploaded elsewhere, "
        "given its URL and decryption parameters."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "Where the encrypted payload lives"},
            "contentDigest": {"type": "string", "description": "Digest of the payload"},
            "secret": {"type": "string", "description": "Encryption secret"},
            "salt": {"type": "string", "description": "Encryption salt"},
            "nonce": {"type": "string", "description": "Encryption nonce"},
            "contentLength": {"type": "integer", "description": "Payload size in bytes"},
            "filename": {"type": "string", "description": "Display filename (optional)"},
            "scheme": {"type": "string", "description": "URL scheme hint (optional)"},
        },
        "required": ["url", "contentDigest", "secret", "salt", "nonce", "contentLength"],
    },
}

TOOL_SCHEMAS: dict[str, dict[str, Any]] = {
    tool["name"]: tool
    for tool in (
        CONVOS_SEND_TOOL,
        CONVOS_REACT_TOOL,
        CONVOS_ATTACH_TOOL,
        CONVOS_REMOTE_ATTACH_TOOL,
    )
}


class ToolRegistry:
    """Validates tool arguments, turns them into commands, and journals calls."""

    def __init__(self, controller: BridgeController, recorder: BridgeRecorder) -> None:
        self._controller = controller
        self._recorder = recorder

    @property
    def definitions(self) -> list[dict[str, Any]]:
        """Return all tool schemas for the host's tool interface."""
        return list(TOOL_SCHEMAS.values())

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Run tool *name*.  Never raises; failures come back as ``is_error``."""
        self._recorder.record(ToolCallEvent(ts="", seq=0, tool=name, args=arguments))
        start = time.monotonic()
        try:
            result = self._dispatch(name, arguments)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            )
            result = ToolResult(content=f"Invalid arguments: {problems}", is_error=True)
        except ValueError as exc:
            result = ToolResult(content=f"Error: {exc}", is_error=True)

        self._recorder.record(
            ToolResultEvent(
                ts="",
                seq=0,
                tool=name,
                is_error=result.is_error,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        )
        return result

    def _dispatch(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        if name not in TOOL_SCHEMAS:
            msg = f"Unknown tool: {name}"
            raise ValueError(msg)

        if not self._controller.ready:
            return ToolResult(content=NOT_RUNNING_MESSAGE, is_error=True)

        if name == "convos_send":
            send = SendCommand.model_validate(arguments)
            text = f'Sent: "{send.text}"'
            if send.reply_to:
                text += f" (reply to {send.reply_to})"
            return self._write(send, text, {"text": send.text, "replyTo": send.reply_to})

        if name == "convos_react":
            react = ReactCommand.model_validate(arguments)
            if react.action == "remove":
                text = f"Removed {react.emoji} reaction from message {react.message_id}"
            else:
                text = f"Reacted with {react.emoji} to message {react.message_id}"
            return self._write(react, text)

        if name == "convos_attach":
            attach = AttachCommand.model_validate(arguments)
            path = Path(attach.file).expanduser()
            if not path.is_file():
                return ToolResult(content=f"File not found: {attach.file}", is_error=True)
            attach = attach.model_copy(update={"file": str(path.resolve())})
            return self._write(attach, f"Attached {path.name}")

        remote = RemoteAttachCommand.model_validate(arguments)
        label = remote.filename or remote.url
        return self._write(remote, f"Shared remote attachment {label}")

    def _write(
        self,
        command: ProtocolCommand,
        text: str,
        details: dict[str, Any] | None = None,
    ) -> ToolResult:
        if not self._controller.send_command(command):
            return ToolResult(
                content="Convos agent is not accepting commands right now; nothing was sent.",
                is_error=True,
            )
        return ToolResult(content=text, details=details or {})
