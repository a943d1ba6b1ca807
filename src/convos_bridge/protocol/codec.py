"""ndjson codec — stdout lines in, stdin command lines out."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import TypeAdapter, ValidationError

from convos_bridge.errors import ProtocolParseError
from convos_bridge.protocol.models import EVENT_TYPES, ProtocolCommand, ProtocolEvent

logger = logging.getLogger(__name__)

_EVENT_ADAPTER: TypeAdapter[ProtocolEvent] = TypeAdapter(ProtocolEvent)

#: Max characters of a rejected line to include in debug logs.
_PREVIEW_LEN = 200


def parse_event(line: str | bytes) -> ProtocolEvent:
    """Parse one ndjson line into a typed event.

    Raises:
        ProtocolParseError: If the line is not JSON, not an object, carries
            an unknown ``event`` tag, or lacks required fields.
    """
    if isinstance(line, bytes):
        line = line.decode(errors="replace")
    text = line.strip()
    if not text:
        msg = "empty line"
        raise ProtocolParseError(msg)

    try:
        raw: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        msg = f"invalid JSON: {exc.msg}"
        raise ProtocolParseError(msg) from exc

    if not isinstance(raw, dict):
        msg = f"expected a JSON object, got {type(raw).__name__}"
        raise ProtocolParseError(msg)

    tag = raw.get("event")
    if tag not in EVENT_TYPES:
        msg = f"unknown event {tag!r}"
        raise ProtocolParseError(msg)

    try:
        return _EVENT_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        msg = f"invalid {tag!r} event: {exc.error_count()} error(s)"
        raise ProtocolParseError(msg) from exc


def decode_line(line: str | bytes) -> ProtocolEvent | None:
    """Parse *line*, returning ``None`` for anything unrecognised.

    Malformed or unknown lines are dropped here and never reach the
    dispatcher.
    """
    try:
        return parse_event(line)
    except ProtocolParseError as exc:
        logger.debug("dropping stdout line (%s): %r", exc, line[:_PREVIEW_LEN])
        return None


def encode_command(command: ProtocolCommand) -> bytes:
    """Serialize *command* as a single newline-terminated JSON line."""
    payload = command.model_dump(by_alias=True, exclude_none=True)
    return (json.dumps(payload, ensure_ascii=False) + "\n").encode()


class CommandWriter:
    """Fire-and-forget writer for the process's stdin.

    Commands are written only while the stream is writable; otherwise they
    are dropped without queueing. The ``sent`` event confirms delivery.
    """

    def __init__(self, stdin: Any, is_alive: Any = None) -> None:
        self._stdin = stdin
        self._is_alive = is_alive

    @property
    def writable(self) -> bool:
        """Whether a write would currently reach the process."""
        if self._stdin is None:
            return False
        if self._is_alive is not None and not self._is_alive():
            return False
        is_closing = getattr(self._stdin, "is_closing", None)
        return not (callable(is_closing) and is_closing())

    def write(self, command: ProtocolCommand) -> bool:
        """Write *command*; return ``True`` if it was handed to the stream."""
        if not self.writable:
            logger.debug("stdin not writable, dropping %s command", command.type)
            return False
        try:
            self._stdin.write(encode_command(command))
        except (BrokenPipeError, ConnectionResetError, OSError, RuntimeError) as exc:
            logger.debug("failed to write %s command: %s", command.type, exc)
            return False
        return True
