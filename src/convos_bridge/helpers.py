"""Shared helper functions for bridge components."""

from __future__ import annotations

import logging

from convos_bridge.journal.models import ErrorEvent
from convos_bridge.journal.recorder import BridgeRecorder


def format_stderr_preview(stderr_text: str, max_lines: int = 5) -> str:
    """Extract and format the last N non-empty lines from stderr output."""
    lines = [line for line in stderr_text.split("\n") if line.strip()]
    last = lines[-max_lines:] if len(lines) > max_lines else lines
    return "\n  ".join(last)


def record_error(
    recorder: BridgeRecorder,
    error_msg: str,
    context: str,
    logger: logging.Logger | None = None,
    level: int = logging.ERROR,
) -> None:
    """Log and journal an error event in one call."""
    if logger:
        logger.log(level, "%s: %s", context, error_msg)
    recorder.record(ErrorEvent(ts="", seq=0, error=error_msg, context=context))
