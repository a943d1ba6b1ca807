"""ndjson protocol — typed events, commands, and the line codec."""

from convos_bridge.protocol.codec import (
    CommandWriter,
    decode_line,
    encode_command,
    parse_event,
)
from convos_bridge.protocol.models import (
    AttachCommand,
    ErrorEvent,
    ExitEvent,
    MemberJoinedEvent,
    MessageEvent,
    ProtocolCommand,
    ProtocolEvent,
    ReactCommand,
    ReadyEvent,
    RemoteAttachCommand,
    SendCommand,
    SentEvent,
    StopCommand,
)

__all__ = [
    "AttachCommand",
    "CommandWriter",
    "ErrorEvent",
    "ExitEvent",
    "MemberJoinedEvent",
    "MessageEvent",
    "ProtocolCommand",
    "ProtocolEvent",
    "ReactCommand",
    "ReadyEvent",
    "RemoteAttachCommand",
    "SendCommand",
    "SentEvent",
    "StopCommand",
    "decode_line",
    "encode_command",
    "parse_event",
]
