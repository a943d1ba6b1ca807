"""The bridge controller and the tools it exposes to the agent."""

from convos_bridge.bridge.controller import BridgeController
from convos_bridge.bridge.tools import (
    CONVOS_ATTACH_TOOL,
    CONVOS_REACT_TOOL,
    CONVOS_REMOTE_ATTACH_TOOL,
    CONVOS_SEND_TOOL,
    TOOL_SCHEMAS,
    ToolRegistry,
    ToolResult,
)

__all__ = [
    "CONVOS_ATTACH_TOOL",
    "CONVOS_REACT_TOOL",
    "CONVOS_REMOTE_ATTACH_TOOL",
    "CONVOS_SEND_TOOL",
    "TOOL_SCHEMAS",
    "BridgeController",
    "ToolRegistry",
    "ToolResult",
]
