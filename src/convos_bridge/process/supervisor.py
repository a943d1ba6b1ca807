"""Process supervisor — owns the ``convos agent serve`` child process."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
from collections import deque
from dataclasses import dataclass, field
from enum import StrEnum

from convos_bridge.constants import DIAGNOSTIC_CAPACITY, SERVE_SUBCOMMAND, STOP_GRACE_MS
from convos_bridge.errors import AlreadyRunningError, CollaboratorUnavailableError
from convos_bridge.protocol.codec import CommandWriter
from convos_bridge.protocol.models import ProtocolCommand, StopCommand

logger = logging.getLogger(__name__)

#: Maximum bytes per ndjson line from subprocess stdout (1 MB).
_MAX_LINE_BYTES = 1_048_576

#: Seconds to wait after the grace-period terminate before SIGKILL on shutdown.
_SIGTERM_WAIT = 3.0

#: Capacity of the line channel between the readers and the dispatcher.
_CHANNEL_SIZE = 1000


class ProcessState(StrEnum):
    STOPPED = "stopped"
    STARTING = "starting"
    READY = "ready"
    STOPPING = "stopping"
    EXITED = "exited"


@dataclass
class ProcessHandle:
    """One supervised child process and everything observed about it."""

    process: asyncio.subprocess.Process
    args: list[str]
    diagnostics: deque[str] = field(
        default_factory=lambda: deque(maxlen=DIAGNOSTIC_CAPACITY)
    )
    ready: bool = False
    stop_requested: bool = False
    returncode: int | None = None
    exited: asyncio.Event = field(default_factory=asyncio.Event)
    tasks: list[asyncio.Task[None]] = field(default_factory=list)

    @property
    def pid(self) -> int | None:
        return self.process.pid

    @property
    def live(self) -> bool:
        return not self.exited.is_set()


# ---------------------------------------------------------------------------
# Channel items and exit notices
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StdoutLine:
    """A raw line read from the process's stdout."""

    handle: ProcessHandle
    text: str


@dataclass(frozen=True)
class ProcessExit:
    """Queued after the last stdout line of a process."""

    handle: ProcessHandle
    returncode: int | None


@dataclass(frozen=True)
class StartupFailure:
    """The process exited non-zero before it ever became ready."""

    returncode: int | None
    diagnostics: list[str]

    def describe(self) -> str:
        text = f"Convos agent failed to start (exit code {self.returncode})."
        if self.diagnostics:
            text += "\n" + "\n".join(self.diagnostics)
        return text


@dataclass(frozen=True)
class ProcessExited:
    """The process exited after readiness (or cleanly before it)."""

    returncode: int | None
    requested: bool

    def describe(self) -> str:
        why = "stopped" if self.requested else "exited"
        return f"Convos agent {why} (exit code {self.returncode})."


ExitNotice = StartupFailure | ProcessExited


# ---------------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------------


class ProcessSupervisor:
    """Starts, watches, and stops the Convos agent process.

    Lines read from stdout are pushed onto :attr:`channel` in read order,
    followed by exactly one :class:`ProcessExit` once stdout reaches EOF and
    the process has been reaped.  Stderr lines feed a bounded diagnostic
    buffer instead of the channel.

    ``stop()`` sends a ``stop`` command and arms a grace timer; the timer
    is cancelled as soon as the exit is observed, so an already-exited
    process is never signalled.
    """

    def __init__(
        self,
        executable: str,
        *,
        grace_period: float = STOP_GRACE_MS / 1000,
        channel: asyncio.Queue[StdoutLine | ProcessExit] | None = None,
    ) -> None:
        self._executable = executable
        self._grace_period = grace_period
        self.channel: asyncio.Queue[StdoutLine | ProcessExit] = (
            channel if channel is not None else asyncio.Queue(maxsize=_CHANNEL_SIZE)
        )
        self._handle: ProcessHandle | None = None
        self._writer: CommandWriter | None = None
        self._grace_timer: asyncio.TimerHandle | None = None
        self._terminations = 0

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    @property
    def handle(self) -> ProcessHandle | None:
        return self._handle

    @property
    def state(self) -> ProcessState:
        handle = self._handle
        if handle is None:
            return ProcessState.STOPPED
        if not handle.live:
            return ProcessState.EXITED
        if handle.stop_requested:
            return ProcessState.STOPPING
        if handle.ready:
            return ProcessState.READY
        return ProcessState.STARTING

    @property
    def is_live(self) -> bool:
        return self._handle is not None and self._handle.live

    @property
    def is_ready(self) -> bool:
        """True once ``ready`` was seen and no stop has been requested."""
        return self.state is ProcessState.READY

    @property
    def diagnostics(self) -> list[str]:
        """Most recent stderr lines, oldest first."""
        if self._handle is None:
            return []
        return list(self._handle.diagnostics)

    @property
    def forced_terminations(self) -> int:
        """How many times the grace timer had to terminate a process."""
        return self._terminations

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self, args: list[str]) -> ProcessHandle:
        """Spawn ``<executable> agent serve <args>``.

        Raises:
            AlreadyRunningError: A previous process has not exited yet.
            CollaboratorUnavailableError: The executable cannot be found or
                spawned.  No process is left behind.
        """
        if self.is_live:
            msg = "Convos agent is already running"
            raise AlreadyRunningError(msg)

        if shutil.which(self._executable) is None:
            msg = (
                f"{self._executable} CLI not found. "
                "Install it: npm install -g @convos/cli"
            )
            raise CollaboratorUnavailableError(msg)

        cmd_args = [self._executable, *SERVE_SUBCOMMAND, *args]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd_args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_MAX_LINE_BYTES,
                env=dict(os.environ),
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            msg = f"{self._executable} CLI not found: {exc}"
            raise CollaboratorUnavailableError(msg) from exc
        except OSError as exc:
            msg = f"Failed to spawn {self._executable}: {exc}"
            raise CollaboratorUnavailableError(msg) from exc

        handle = ProcessHandle(process=proc, args=list(args))
        self._handle = handle
        self._writer = CommandWriter(proc.stdin, is_alive=lambda: handle.live)

        stderr_task = asyncio.create_task(self._pump_stderr(handle))
        stdout_task = asyncio.create_task(self._pump_stdout(handle, stderr_task))
        handle.tasks.extend([stdout_task, stderr_task])

        logger.info("Started %s (pid %s)", " ".join(cmd_args), proc.pid)
        return handle

    def mark_ready(self, handle: ProcessHandle | None = None) -> bool:
        """Flip the readiness flag; return ``True`` only on the first flip."""
        handle = handle or self._handle
        if handle is None or handle.ready or not handle.live:
            return False
        handle.ready = True
        return True

    def write(self, command: ProtocolCommand) -> bool:
        """Write *command* to stdin if it is writable; drop it otherwise."""
        if self._writer is None:
            return False
        return self._writer.write(command)

    def stop(self) -> bool:
        """Ask the process to stop and arm the grace timer.

        Returns ``False`` (and does nothing) when no process is live or a
        stop is already in progress.
        """
        handle = self._handle
        if handle is None or not handle.live or handle.stop_requested:
            return False

        handle.stop_requested = True
        self.write(StopCommand())

        loop = asyncio.get_running_loop()
        self._grace_timer = loop.call_later(
            self._grace_period, self._on_grace_expired, handle
        )
        logger.info("Stop requested (pid %s)", handle.pid)
        return True

    async def shutdown(self) -> None:
        """Stop the process and wait for it: stop -> grace -> SIGTERM -> SIGKILL."""
        handle = self._handle
        if handle is None:
            return

        if handle.live:
            self.stop()
            try:
                await asyncio.wait_for(
                    handle.exited.wait(),
                    timeout=self._grace_period + _SIGTERM_WAIT,
                )
            except TimeoutError:
                logger.warning("pid %s ignored SIGTERM, killing", handle.pid)
                with contextlib.suppress(ProcessLookupError):
                    handle.process.kill()
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(handle.exited.wait(), timeout=_SIGTERM_WAIT)

        for task in handle.tasks:
            if not task.done():
                task.cancel()
        for task in handle.tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if handle.live:
            # The readers never saw EOF; reap the process directly.
            self._on_exit(handle, await handle.process.wait())
        self._cancel_grace_timer()

    def classify_exit(self, item: ProcessExit) -> ExitNotice:
        """Turn an exit into a notice, using readiness as seen by the dispatcher."""
        handle = item.handle
        if not handle.ready and item.returncode not in (0, None):
            return StartupFailure(
                returncode=item.returncode,
                diagnostics=list(handle.diagnostics),
            )
        return ProcessExited(
            returncode=item.returncode,
            requested=handle.stop_requested,
        )

    # ------------------------------------------------------------------ #
    # Readers
    # ------------------------------------------------------------------ #

    async def _pump_stdout(
        self, handle: ProcessHandle, stderr_task: asyncio.Task[None]
    ) -> None:
        """Forward stdout lines to the channel, then report the exit."""
        proc = handle.process
        try:
            if proc.stdout is not None:
                while True:
                    try:
                        line = await proc.stdout.readline()
                    except ValueError:
                        logger.warning(
                            "stdout line exceeded %d bytes, skipping", _MAX_LINE_BYTES
                        )
                        continue
                    if not line:
                        break
                    text = line.decode(errors="replace").strip()
                    if text:
                        await self.channel.put(StdoutLine(handle=handle, text=text))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("stdout reader error: %s", exc)

        # Stderr must be fully drained so the exit notice sees every line.
        await asyncio.gather(stderr_task, return_exceptions=True)
        returncode = await proc.wait()
        self._on_exit(handle, returncode)
        await self.channel.put(ProcessExit(handle=handle, returncode=returncode))

    async def _pump_stderr(self, handle: ProcessHandle) -> None:
        """Append stderr lines to the bounded diagnostic buffer."""
        stream = handle.process.stderr
        if stream is None:
            return
        try:
            while True:
                try:
                    line = await stream.readline()
                except ValueError:
                    continue
                if not line:
                    break
                text = line.decode(errors="replace").rstrip("\r\n")
                handle.diagnostics.append(text)
                logger.debug("convos stderr: %s", text)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("stderr reader error: %s", exc)

    # ------------------------------------------------------------------ #
    # Exit / grace timer race
    # ------------------------------------------------------------------ #

    def _on_exit(self, handle: ProcessHandle, returncode: int | None) -> None:
        handle.returncode = returncode
        handle.exited.set()
        if handle is self._handle:
            self._cancel_grace_timer()
        logger.info("Convos agent (pid %s) exited with code %s", handle.pid, returncode)

    def _on_grace_expired(self, handle: ProcessHandle) -> None:
        self._grace_timer = None
        if not handle.live or handle.process.returncode is not None:
            return
        logger.warning(
            "Convos agent (pid %s) still running %.1fs after stop, terminating",
            handle.pid,
            self._grace_period,
        )
        self._terminations += 1
        with contextlib.suppress(ProcessLookupError):
            handle.process.terminate()

    def _cancel_grace_timer(self) -> None:
        if self._grace_timer is not None:
            self._grace_timer.cancel()
            self._grace_timer = None
