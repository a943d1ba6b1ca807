"""Bridge controller — one Convos agent process wired into the host runtime."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shlex
import shutil
import tempfile
from pathlib import Path
from typing import Any

from convos_bridge.attachments.resolver import AttachmentResolver
from convos_bridge.bridge.tools import ToolRegistry, ToolResult
from convos_bridge.collaborator.client import ConvosClient
from convos_bridge.config.models import BridgeConfig
from convos_bridge.constants import DEFAULT_SERVE_ARGS
from convos_bridge.errors import AlreadyRunningError, CollaboratorUnavailableError
from convos_bridge.helpers import record_error
from convos_bridge.host import HostRuntime
from convos_bridge.journal.models import (
    CatchUpEvent,
    CommandEvent,
    InboundEvent,
    LifecycleEvent,
)
from convos_bridge.journal.recorder import BridgeRecorder
from convos_bridge.messages import (
    error_message,
    inbound_message,
    member_joined_message,
    notice_message,
    ready_message,
)
from convos_bridge.process.supervisor import (
    ProcessExit,
    ProcessHandle,
    ProcessState,
    ProcessSupervisor,
    StartupFailure,
    StdoutLine,
)
from convos_bridge.protocol.codec import decode_line
from convos_bridge.protocol.models import (
    ErrorEvent,
    ExitEvent,
    MemberJoinedEvent,
    MessageEvent,
    ProtocolCommand,
    ReadyEvent,
    SentEvent,
    send_time_ns,
)
from convos_bridge.reconcile.catchup import CatchUpReconciler
from convos_bridge.routing.mode import ModeRouter
from convos_bridge.session.store import SessionState, SessionStore

logger = logging.getLogger(__name__)

#: Flag used to resume a stored conversation.
_CONVERSATION_FLAG = "--conversation"

#: Input sources that the bridge itself produces; they never flip the mode.
_BRIDGE_SOURCES = frozenset({"extension", "convos"})


class BridgeController:
    """Owns the Convos process, session state, and event dispatch.

    All session mutations happen on the single dispatcher task that drains
    the supervisor's channel, so no locking is needed.  Nothing raised
    inside the bridge propagates to the host: failures end in a log line,
    a published notice, or an aborted start.

    Lifecycle::

        controller = BridgeController(config, host, store, recorder)
        await controller.init()
        await controller.start()
        ...
        await controller.shutdown()
    """

    def __init__(
        self,
        config: BridgeConfig,
        host: HostRuntime,
        store: SessionStore,
        recorder: BridgeRecorder,
        *,
        client: ConvosClient | None = None,
        supervisor: ProcessSupervisor | None = None,
        temp_dir: Path | None = None,
    ) -> None:
        self._config = config
        self._host = host
        self._store = store
        self._recorder = recorder
        self._client = client or ConvosClient(
            config.executable, timeout=config.catch_up.timeout
        )
        self._supervisor = supervisor or ProcessSupervisor(
            config.executable, grace_period=config.stop_grace_ms / 1000
        )
        self._owns_temp_dir = temp_dir is None
        self._temp_dir = temp_dir
        self.mode = ModeRouter()
        self.tools = ToolRegistry(self, recorder)

        self._state = SessionState()
        self._dispatch_task: asyncio.Task[None] | None = None
        self._reconciler: CatchUpReconciler | None = None
        self._resolver: AttachmentResolver | None = None
        self._initialized = False

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    @property
    def running(self) -> bool:
        return self._supervisor.is_live

    @property
    def ready(self) -> bool:
        """True when commands can be sent."""
        return self._supervisor.is_ready

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def init(self) -> None:
        """Load persisted state and start the dispatcher."""
        if self._initialized:
            return
        self._state = self._store.load()
        if self._temp_dir is None:
            self._temp_dir = Path(tempfile.mkdtemp(prefix="convos-bridge-"))
        self._reconciler = CatchUpReconciler(
            self._client,
            self._host,
            self._store,
            limit=self._config.catch_up.limit,
            timeout=self._config.catch_up.timeout,
        )
        self._resolver = AttachmentResolver(
            self._client,
            self._host,
            self._temp_dir,
            timeout=self._config.download_timeout,
        )
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())
        self._initialized = True
        logger.info(
            "Bridge initialized (conversation=%s, watermark=%s)",
            self._state.conversation_id,
            self._state.last_seen_watermark,
        )

    async def shutdown(self) -> None:
        """Stop the process, drain the dispatcher, and clean up.  Idempotent."""
        if not self._initialized:
            return
        self._initialized = False

        await self._supervisor.shutdown()

        # Let the dispatcher deliver the exit notice before cancelling it.
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._supervisor.channel.join(), timeout=1.0)

        if self._dispatch_task is not None and not self._dispatch_task.done():
            self._dispatch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._dispatch_task
        self._dispatch_task = None

        if self._owns_temp_dir and self._temp_dir is not None:
            shutil.rmtree(self._temp_dir, ignore_errors=True)
            self._temp_dir = None

    async def start(self, args: list[str] | None = None) -> bool:
        """Spawn the Convos agent; return ``False`` if the start was aborted."""
        if not self._initialized:
            await self.init()

        serve_args = list(args) if args is not None else self._default_args()
        if self._state.conversation_id and _CONVERSATION_FLAG not in serve_args:
            serve_args += [_CONVERSATION_FLAG, self._state.conversation_id]

        try:
            handle = await self._supervisor.start(serve_args)
        except AlreadyRunningError:
            await self._host.notify("Convos agent is already running", "warning")
            return False
        except CollaboratorUnavailableError as exc:
            record_error(self._recorder, str(exc), "startup", logger=logger)
            await self._host.notify(str(exc), "error")
            return False

        self._record_lifecycle(ProcessState.STARTING, handle)
        return True

    def stop(self) -> bool:
        """Request a graceful stop; ``False`` if nothing was running."""
        handle = self._supervisor.handle
        if not self._supervisor.stop():
            return False
        self._record_lifecycle(ProcessState.STOPPING, handle)
        return True

    def status(self) -> str:
        """One-line human-readable status."""
        state = self._supervisor.state
        if state is ProcessState.READY:
            return (
                f"Convos agent running | Conversation: {self._state.conversation_id}"
                f" | Invite: {self._state.invite_url}"
            )
        if state is ProcessState.STARTING:
            return "Convos agent is starting"
        if state is ProcessState.STOPPING:
            return "Convos agent is stopping"
        return "Convos agent is not running"

    # ------------------------------------------------------------------ #
    # Host commands and hooks
    # ------------------------------------------------------------------ #

    async def handle_start(self, arg_string: str = "") -> None:
        """``/convos-start [args]``; quoted arguments are honoured."""
        if self.running:
            await self._host.notify("Convos agent is already running", "warning")
            return
        try:
            args = shlex.split(arg_string) if arg_string.strip() else None
        except ValueError as exc:
            await self._host.notify(f"Invalid arguments: {exc}", "error")
            return
        if await self.start(args):
            await self._host.notify("Starting Convos agent...", "info")

    async def handle_stop(self) -> None:
        """``/convos-stop``"""
        if not self.stop():
            await self._host.notify("Convos agent is not running", "info")
            return
        await self._host.notify("Convos agent stopped", "info")

    async def handle_status(self) -> None:
        """``/convos-status``"""
        await self._host.notify(self.status(), "info")

    async def on_session_shutdown(self) -> None:
        """Host ``session_shutdown`` hook."""
        await self.shutdown()

    def on_input(self, source: str = "interactive") -> None:
        """Host input hook; operator input switches routing to local mode."""
        if source in _BRIDGE_SOURCES:
            return
        self.mode.mark_local()

    def before_turn(self, instructions: str) -> str:
        """Host before-turn hook; returns instructions with the mode directive."""
        return self.mode.apply(instructions)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        return await self.tools.execute(name, arguments)

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #

    def send_command(self, command: ProtocolCommand) -> bool:
        """Write *command* to the process; ``False`` if it was dropped."""
        delivered = self._supervisor.write(command)
        self._recorder.record(
            CommandEvent(
                ts="",
                seq=0,
                command=command.type,
                payload=command.model_dump(by_alias=True, exclude_none=True),
                delivered=delivered,
            )
        )
        return delivered

    # ------------------------------------------------------------------ #
    # Dispatcher
    # ------------------------------------------------------------------ #

    async def _dispatch_loop(self) -> None:
        """Drain the supervisor channel, one item at a time, in order."""
        channel = self._supervisor.channel
        while True:
            item = await channel.get()
            try:
                if isinstance(item, StdoutLine):
                    await self._handle_line(item)
                else:
                    await self._handle_exit(item)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error dispatching %s", type(item).__name__)
            finally:
                channel.task_done()

    async def _handle_line(self, item: StdoutLine) -> None:
        event = decode_line(item.text)
        if event is None:
            return

        self._recorder.record(
            InboundEvent(
                ts="",
                seq=0,
                event=event.event,
                payload=event.model_dump(by_alias=True, exclude_none=True),
            )
        )

        if isinstance(event, ReadyEvent):
            await self._on_ready(item.handle, event)
        elif isinstance(event, MessageEvent):
            await self._on_message(event)
        elif isinstance(event, MemberJoinedEvent):
            await self._host.publish(
                member_joined_message(event), trigger_turn=True, deliver_as="steer"
            )
        elif isinstance(event, SentEvent):
            self._advance(send_time_ns(event.sent_at_ns))
        elif isinstance(event, ErrorEvent):
            record_error(
                self._recorder,
                event.message,
                "protocol",
                logger=logger,
                level=logging.WARNING,
            )
            await self._host.publish(error_message(event), trigger_turn=False)
        elif isinstance(event, ExitEvent):
            logger.info("Convos agent announced exit (code %s)", event.code)

    async def _on_ready(self, handle: ProcessHandle, event: ReadyEvent) -> None:
        if not self._supervisor.mark_ready(handle):
            logger.debug("Ignoring repeated ready event")
            return
        self._record_lifecycle(ProcessState.READY, handle)

        resumed = (
            self._state.conversation_id == event.conversation_id
            and self._state.watermark is not None
        )
        if self._state.conversation_id != event.conversation_id:
            if self._state.conversation_id is not None:
                logger.info(
                    "Conversation changed %s -> %s; resetting watermark",
                    self._state.conversation_id,
                    event.conversation_id,
                )
            self._state = SessionState(conversation_id=event.conversation_id)
        if event.invite_url is not None:
            self._state.invite_url = event.invite_url
        self._state.qr_code_path = event.qr_code_path
        self._store.save(self._state)

        await self._host.publish(ready_message(event), trigger_turn=True)

        if resumed and self._config.catch_up.enabled and self._reconciler is not None:
            result = await self._reconciler.run(self._state)
            self._recorder.record(
                CatchUpEvent(
                    ts="",
                    seq=0,
                    fetched=result.fetched,
                    summarized=len(result.summarized),
                    watermark=self._state.last_seen_watermark,
                )
            )
            if result.error is not None:
                record_error(
                    self._recorder,
                    result.error,
                    "catch_up",
                    logger=logger,
                    level=logging.WARNING,
                )
            if result.published:
                self.mode.mark_remote()

    async def _on_message(self, event: MessageEvent) -> None:
        handled = False
        if self._resolver is not None:
            handled = await self._resolver.resolve(event)
        if not handled:
            await self._host.publish(
                inbound_message(event), trigger_turn=True, deliver_as="steer"
            )
        self.mode.mark_remote()
        self._advance(event.watermark)

    async def _handle_exit(self, item: ProcessExit) -> None:
        notice = self._supervisor.classify_exit(item)
        self._state.qr_code_path = None
        self._record_lifecycle(ProcessState.EXITED, item.handle, item.returncode)

        if isinstance(notice, StartupFailure):
            record_error(self._recorder, notice.describe(), "startup", logger=logger)
            await self._host.publish(
                notice_message(
                    "startup_failure",
                    notice.describe(),
                    returncode=notice.returncode,
                    diagnostics=notice.diagnostics,
                ),
                trigger_turn=False,
            )
            await self._host.notify(notice.describe(), "error")
            return

        await self._host.publish(
            notice_message(
                "exit",
                notice.describe(),
                returncode=notice.returncode,
                requested=notice.requested,
            ),
            trigger_turn=False,
        )
        await self._host.notify(notice.describe(), "info")

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _advance(self, ns: int | None) -> None:
        if self._state.advance_watermark(ns):
            self._store.save(self._state)

    def _default_args(self) -> list[str]:
        configured = self._config.serve_args()
        return configured if configured is not None else list(DEFAULT_SERVE_ARGS)

    def _record_lifecycle(
        self,
        state: ProcessState,
        handle: ProcessHandle | None,
        returncode: int | None = None,
    ) -> None:
        self._recorder.record(
            LifecycleEvent(
                ts="",
                seq=0,
                state=state.value,
                pid=handle.pid if handle is not None else None,
                returncode=returncode,
            )
        )
