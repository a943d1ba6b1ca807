"""Supervision of the external Convos agent process."""

from convos_bridge.process.supervisor import (
    ExitNotice,
    ProcessExit,
    ProcessExited,
    ProcessHandle,
    ProcessState,
    ProcessSupervisor,
    StartupFailure,
    StdoutLine,
)

__all__ = [
    "ExitNotice",
    "ProcessExit",
    "ProcessExited",
    "ProcessHandle",
    "ProcessState",
    "ProcessSupervisor",
    "StartupFailure",
    "StdoutLine",
]
