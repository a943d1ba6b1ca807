"""Integration tests for BridgeController with a mocked Convos process."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

from convos_bridge.bridge.controller import BridgeController
from convos_bridge.config.models import BridgeConfig, CatchUpConfig
from convos_bridge.constants import NOT_RUNNING_MESSAGE
from convos_bridge.errors import CollaboratorCallError
from convos_bridge.host import HostMessage
from convos_bridge.journal.recorder import BridgeRecorder
from convos_bridge.process.supervisor import ProcessSupervisor
from convos_bridge.protocol.models import MessageEvent
from convos_bridge.routing.mode import LOCAL_DIRECTIVE, REMOTE_DIRECTIVE
from convos_bridge.session.store import SessionState, SessionStore

_WHICH = "convos_bridge.process.supervisor.shutil.which"
OWN_INBOX = "inbox-bridge"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeHost:
    """Records published messages and notices."""

    def __init__(self) -> None:
        self.published: list[tuple[HostMessage, bool, str | None]] = []
        self.notices: list[tuple[str, str]] = []

    async def publish(
        self,
        message: HostMessage,
        *,
        trigger_turn: bool,
        deliver_as: str | None = None,
    ) -> None:
        self.published.append((message, trigger_turn, deliver_as))

    async def notify(self, text: str, level: str = "info") -> None:
        self.notices.append((text, level))

    def kinds(self) -> list[str]:
        return [m.details.get("type", "") for m, _, _ in self.published]


class MockAsyncStream:
    """Queue-backed stream; ``readline()`` blocks until fed or closed."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[bytes] = asyncio.Queue()

    def feed(self, data: bytes) -> None:
        self._queue.put_nowait(data)

    def close(self) -> None:
        self._queue.put_nowait(b"")

    async def readline(self) -> bytes:
        return await self._queue.get()


def _finish(proc: MagicMock, code: int) -> None:
    proc.exit_code = code
    proc.stdout.close()
    proc.stderr.close()


def _make_mock_process() -> MagicMock:
    proc = MagicMock()
    proc.pid = 4242
    proc.returncode = None
    proc.exit_code = 0

    stdin = MagicMock()
    stdin.write = MagicMock()
    stdin.is_closing = MagicMock(return_value=False)
    proc.stdin = stdin
    proc.stdout = MockAsyncStream()
    proc.stderr = MockAsyncStream()

    async def _wait() -> int:
        proc.returncode = proc.exit_code
        return proc.returncode

    proc.wait = AsyncMock(side_effect=_wait)
    proc.terminate = MagicMock(side_effect=lambda: _finish(proc, -15))
    proc.kill = MagicMock(side_effect=lambda: _finish(proc, -9))
    return proc


def _emit(proc: MagicMock, **fields: Any) -> None:
    """Write one protocol event to the mock process's stdout."""
    proc.stdout.feed(json.dumps(fields).encode() + b"\n")


def _emit_message(proc: MagicMock, msg_id: str, ns: int, content: str = "hi") -> None:
    _emit(
        proc,
        event="message",
        id=msg_id,
        senderInboxId="inbox-alice",
        content=content,
        contentType="text",
        sentAt="2026-03-01T12:00:00Z",
        sentAtNs=str(ns),
    )


def _history(msg_id: str, ns: int, sender: str = "inbox-alice") -> MessageEvent:
    return MessageEvent(
        id=msg_id,
        sender_inbox_id=sender,
        content=f"missed {msg_id}",
        content_type="text",
        sent_at="2026-03-01T11:00:00Z",
        sent_at_ns=str(ns),
    )


def _written(proc: MagicMock) -> list[dict[str, Any]]:
    """Commands written to the mock process's stdin."""
    return [json.loads(c.args[0]) for c in proc.stdin.write.call_args_list]


class Harness:
    """A controller wired to a fake host, mock client, and temp storage."""

    def __init__(
        self,
        tmp_path: Path,
        *,
        state: SessionState | None = None,
        config: BridgeConfig | None = None,
        history: list[MessageEvent] | None = None,
    ) -> None:
        self.store = SessionStore(tmp_path / "state" / "session.json")
        if state is not None:
            self.store.save(state)
        self.recorder = BridgeRecorder(journal_dir=tmp_path / "journal")
        self.host = FakeHost()
        self.client = MagicMock()
        self.client.list_messages = AsyncMock(return_value=history or [])
        self.client.whoami = AsyncMock(return_value=OWN_INBOX)
        self.client.download_attachment = AsyncMock()
        self.supervisor = ProcessSupervisor("convos", grace_period=0.5)
        self.controller = BridgeController(
            config or BridgeConfig(),
            self.host,
            self.store,
            self.recorder,
            client=self.client,
            supervisor=self.supervisor,
            temp_dir=tmp_path / "tmp",
        )
        self.proc = _make_mock_process()
        self.exec_mock: MagicMock | None = None

    async def start(self, args: list[str] | None = None) -> bool:
        await self.controller.init()
        with (
            patch(_WHICH, return_value="/usr/local/bin/convos"),
            patch("asyncio.create_subprocess_exec", return_value=self.proc) as mock_exec,
        ):
            started = await self.controller.start(args)
        self.exec_mock = mock_exec
        return started

    async def ready(self, conversation_id: str = "conv-1") -> None:
        _emit(
            self.proc,
            event="ready",
            conversationId=conversation_id,
            inviteUrl="https://convos.org/i/abc",
            qrCodePath="/tmp/qr.png",
        )
        await self.settle()

    async def settle(self) -> None:
        """Wait until the dispatcher has handled everything emitted so far."""
        await asyncio.sleep(0.02)
        await asyncio.wait_for(self.supervisor.channel.join(), timeout=1.0)

    async def exit(self, code: int = 0) -> None:
        _finish(self.proc, code)
        await asyncio.wait_for(self.supervisor.handle.exited.wait(), timeout=1.0)
        await self.settle()

    async def close(self) -> None:
        if self.supervisor.is_live:
            _finish(self.proc, 0)
        await self.controller.shutdown()
        self.recorder.end("shutdown")

    def journal_types(self) -> list[str]:
        lines = self.recorder.journal_file.read_text(encoding="utf-8").splitlines()
        return [json.loads(line)["type"] for line in lines]


# ===================================================================
# Ready and inbound messages
# ===================================================================


class TestReady:
    async def test_ready_publishes_and_persists(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        assert await h.start() is True
        assert h.controller.status() == "Convos agent is starting"

        await h.ready()

        message, trigger_turn, deliver_as = h.host.published[0]
        assert trigger_turn is True
        assert deliver_as is None
        assert "Conversation: conv-1" in message.text
        assert "Invite URL: https://convos.org/i/abc" in message.text
        assert message.custom_type == "convos"

        saved = h.store.load()
        assert saved.conversation_id == "conv-1"
        assert saved.invite_url == "https://convos.org/i/abc"
        assert h.controller.state.qr_code_path == "/tmp/qr.png"

        assert h.controller.ready
        assert h.controller.status() == (
            "Convos agent running | Conversation: conv-1 | Invite: https://convos.org/i/abc"
        )
        await h.close()

    async def test_default_serve_args(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()
        assert h.exec_mock is not None
        assert h.exec_mock.call_args.args == (
            "convos",
            "agent",
            "serve",
            "--name",
            "Chat with Agent",
            "--profile-name",
            "🤖 Agent",
        )
        await h.close()

    async def test_configured_serve_args(self, tmp_path: Path) -> None:
        config = BridgeConfig(name="Support", extra_args=["--env", "dev"])
        h = Harness(tmp_path, config=config)
        await h.start()
        assert h.exec_mock is not None
        assert h.exec_mock.call_args.args[3:] == ("--name", "Support", "--env", "dev")
        await h.close()

    async def test_repeated_ready_ignored(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()
        await h.ready()
        await h.ready()
        assert h.host.kinds() == ["ready"]
        await h.close()

    async def test_unrecognised_lines_ignored(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()
        h.proc.stdout.feed(b"Starting agent...\n")
        h.proc.stdout.feed(b'{"event": "typing"}\n')
        await h.settle()
        assert h.host.published == []
        assert h.controller.status() == "Convos agent is starting"
        await h.close()


class TestInbound:
    async def test_message_steers_and_advances_watermark(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()
        await h.ready()

        _emit_message(h.proc, "m1", 1_000, content="hello agent")
        await h.settle()

        message, trigger_turn, deliver_as = h.host.published[-1]
        assert message.text == "[Convos message from inbox-alice] hello agent"
        assert message.details["id"] == "m1"
        assert trigger_turn is True
        assert deliver_as == "steer"
        assert h.controller.mode.remote is True
        assert h.store.load().last_seen_watermark == "1000"
        await h.close()

    async def test_older_message_does_not_lower_watermark(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()
        await h.ready()

        _emit_message(h.proc, "new", 2_000)
        _emit_message(h.proc, "old", 1_000)
        await h.settle()

        assert h.controller.state.watermark == 2_000
        assert h.store.load().last_seen_watermark == "2000"
        await h.close()

    async def test_sent_advances_watermark(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()
        await h.ready()

        _emit(h.proc, event="sent", id="m5", sentAtNs="5000")
        await h.settle()

        assert h.controller.state.watermark == 5_000
        assert h.host.kinds() == ["ready"]
        await h.close()

    async def test_member_joined(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()
        await h.ready()

        _emit(h.proc, event="member_joined", inboxId="inbox-bob")
        await h.settle()

        message, trigger_turn, deliver_as = h.host.published[-1]
        assert message.text == "[Convos] New member joined: inbox-bob"
        assert (trigger_turn, deliver_as) == (True, "steer")
        await h.close()

    async def test_error_event_does_not_trigger_turn(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()
        await h.ready()

        _emit(h.proc, event="error", message="send failed")
        await h.settle()

        message, trigger_turn, _ = h.host.published[-1]
        assert message.text == "[Convos error] send failed"
        assert trigger_turn is False
        await h.close()
        assert "error" in h.journal_types()

    async def test_image_attachment_inlined(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)

        async def _download(url: str, dest: Path, *, timeout: float | None = None) -> Path:
            dest.write_bytes(b"png-bytes")
            return dest

        h.client.download_attachment = AsyncMock(side_effect=_download)
        await h.start()
        await h.ready()

        _emit_message(h.proc, "m1", 10, content="[remote attachment: cat.png https://cdn/x]")
        await h.settle()

        message, _, deliver_as = h.host.published[-1]
        assert isinstance(message.content, list)
        assert message.text.endswith("sent an image: cat.png")
        assert deliver_as == "steer"
        assert h.controller.state.watermark == 10
        await h.close()


# ===================================================================
# Resume and catch-up
# ===================================================================


class TestResume:
    async def test_resume_passes_conversation_and_catches_up_first(
        self, tmp_path: Path
    ) -> None:
        h = Harness(
            tmp_path,
            state=SessionState(conversation_id="conv-1", last_seen_watermark="100"),
            history=[
                _history("t1", 150),
                _history("t2", 200, sender=OWN_INBOX),
            ],
        )
        await h.start()
        assert h.exec_mock is not None
        assert h.exec_mock.call_args.args[-2:] == ("--conversation", "conv-1")

        _emit(h.proc, event="ready", conversationId="conv-1")
        _emit_message(h.proc, "live", 300, content="still there?")
        await h.settle()

        assert h.host.kinds() == ["ready", "catch_up", "message"]
        summary = h.host.published[1][0]
        assert "[inbox-alice] missed t1" in summary.text
        assert "missed t2" not in summary.text
        assert h.host.published[1][2] == "steer"

        h.client.list_messages.assert_awaited_once()
        assert h.client.list_messages.call_args.kwargs["after_ns"] == 100
        assert h.store.load().last_seen_watermark == "300"
        assert h.controller.mode.remote is True
        await h.close()
        assert "catch_up" in h.journal_types()

    async def test_explicit_conversation_arg_kept(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, state=SessionState(conversation_id="conv-1"))
        await h.start(["--conversation", "conv-9"])
        assert h.exec_mock is not None
        assert h.exec_mock.call_args.args[3:] == ("--conversation", "conv-9")
        await h.close()

    async def test_no_watermark_no_catch_up(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, state=SessionState(conversation_id="conv-1"))
        await h.start()
        await h.ready("conv-1")
        h.client.list_messages.assert_not_called()
        assert h.host.kinds() == ["ready"]
        await h.close()

    async def test_new_conversation_resets_watermark(self, tmp_path: Path) -> None:
        h = Harness(
            tmp_path,
            state=SessionState(conversation_id="conv-old", last_seen_watermark="900"),
            history=[_history("x", 1000)],
        )
        await h.start()
        await h.ready("conv-new")

        h.client.list_messages.assert_not_called()
        saved = h.store.load()
        assert saved.conversation_id == "conv-new"
        assert saved.last_seen_watermark is None
        await h.close()

    async def test_catch_up_disabled(self, tmp_path: Path) -> None:
        h = Harness(
            tmp_path,
            state=SessionState(conversation_id="conv-1", last_seen_watermark="100"),
            config=BridgeConfig(catch_up=CatchUpConfig(enabled=False)),
            history=[_history("t1", 150)],
        )
        await h.start()
        await h.ready("conv-1")
        h.client.list_messages.assert_not_called()
        await h.close()

    async def test_catch_up_failure_still_delivers_live(self, tmp_path: Path) -> None:
        h = Harness(
            tmp_path,
            state=SessionState(conversation_id="conv-1", last_seen_watermark="100"),
        )
        h.client.list_messages = AsyncMock(side_effect=CollaboratorCallError("timed out"))
        await h.start()

        _emit(h.proc, event="ready", conversationId="conv-1")
        _emit_message(h.proc, "live", 300)
        await h.settle()

        assert h.host.kinds() == ["ready", "message"]
        assert h.controller.state.watermark == 300
        await h.close()


# ===================================================================
# Tools and routing
# ===================================================================


class TestTools:
    async def test_not_running(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.controller.init()

        result = await h.controller.call_tool("convos_send", {"text": "hi"})

        assert result.is_error
        assert result.content == NOT_RUNNING_MESSAGE
        await h.close()

    async def test_not_ready_yet(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()

        result = await h.controller.call_tool("convos_react", {"messageId": "m", "emoji": "👍"})

        assert result.is_error
        assert _written(h.proc) == []
        await h.close()

    async def test_send_writes_ndjson(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()
        await h.ready()

        result = await h.controller.call_tool("convos_send", {"text": "hi", "replyTo": "m1"})

        assert not result.is_error
        assert result.content == 'Sent: "hi" (reply to m1)'
        assert _written(h.proc) == [{"type": "send", "text": "hi", "replyTo": "m1"}]
        await h.close()

    async def test_react_and_remove(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()
        await h.ready()

        added = await h.controller.call_tool("convos_react", {"messageId": "m1", "emoji": "👍"})
        removed = await h.controller.call_tool(
            "convos_react", {"messageId": "m1", "emoji": "👍", "action": "remove"}
        )

        assert added.content == "Reacted with 👍 to message m1"
        assert removed.content == "Removed 👍 reaction from message m1"
        assert [c["action"] for c in _written(h.proc)] == ["add", "remove"]
        await h.close()

    async def test_attach(self, tmp_path: Path) -> None:
        photo = tmp_path / "photo.png"
        photo.write_bytes(b"img")
        h = Harness(tmp_path)
        await h.start()
        await h.ready()

        missing = await h.controller.call_tool("convos_attach", {"file": "/nope/x.png"})
        ok = await h.controller.call_tool("convos_attach", {"file": str(photo)})

        assert missing.is_error
        assert missing.content.startswith("File not found")
        assert ok.content == "Attached photo.png"
        assert _written(h.proc) == [{"type": "attach", "file": str(photo.resolve())}]
        await h.close()

    async def test_invalid_and_unknown(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()
        await h.ready()

        invalid = await h.controller.call_tool("convos_send", {})
        unknown = await h.controller.call_tool("convos_dance", {})

        assert invalid.is_error and invalid.content.startswith("Invalid arguments")
        assert unknown.is_error and "Unknown tool" in unknown.content
        await h.close()

    async def test_definitions(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        names = [t["name"] for t in h.controller.tools.definitions]
        assert names == ["convos_send", "convos_react", "convos_attach", "convos_remote_attach"]
        h.recorder.close()


class TestRouting:
    async def test_local_input_switches_mode(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()
        await h.ready()
        _emit_message(h.proc, "m1", 10)
        await h.settle()

        assert h.controller.before_turn("Be brief.").endswith(REMOTE_DIRECTIVE)

        h.controller.on_input("extension")
        assert h.controller.mode.remote is True

        h.controller.on_input("interactive")
        assert h.controller.before_turn("Be brief.") == f"Be brief.\n\n{LOCAL_DIRECTIVE}"
        await h.close()


# ===================================================================
# Exit handling and host commands
# ===================================================================


class TestExit:
    async def test_startup_failure_reports_diagnostics(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()

        h.proc.stderr.feed(b"Error: wallet key missing\n")
        await h.exit(1)

        message, trigger_turn, _ = h.host.published[-1]
        assert message.details["type"] == "startup_failure"
        assert message.details["diagnostics"] == ["Error: wallet key missing"]
        assert trigger_turn is False
        text, level = h.host.notices[-1]
        assert level == "error"
        assert "failed to start (exit code 1)" in text
        assert "wallet key missing" in text
        assert h.controller.status() == "Convos agent is not running"
        await h.close()

    async def test_unexpected_exit_after_ready(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()
        await h.ready()
        await h.exit(2)

        message, trigger_turn, _ = h.host.published[-1]
        assert message.details == {"type": "exit", "returncode": 2, "requested": False}
        assert trigger_turn is False
        assert h.controller.state.qr_code_path is None
        assert not h.controller.ready

        result = await h.controller.call_tool("convos_send", {"text": "hi"})
        assert result.content == NOT_RUNNING_MESSAGE
        await h.close()

    async def test_exit_event_is_informational(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()
        await h.ready()

        _emit(h.proc, event="exit", code=0)
        await h.settle()

        assert h.host.kinds() == ["ready"]
        assert h.controller.ready
        await h.close()


class TestHostCommands:
    async def test_start_and_stop(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.controller.init()
        with (
            patch(_WHICH, return_value="/usr/local/bin/convos"),
            patch("asyncio.create_subprocess_exec", return_value=h.proc) as mock_exec,
        ):
            await h.controller.handle_start('--name "Team Chat"')

        assert mock_exec.call_args.args[3:] == ("--name", "Team Chat")
        assert h.host.notices[-1] == ("Starting Convos agent...", "info")

        await h.ready()
        await h.controller.handle_stop()
        assert h.host.notices[-1] == ("Convos agent stopped", "info")
        assert _written(h.proc) == [{"type": "stop"}]
        assert h.controller.status() == "Convos agent is stopping"

        await h.exit(0)
        assert h.host.published[-1][0].details["requested"] is True
        assert h.proc.terminate.call_count == 0
        await h.close()

    async def test_start_while_running(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()

        await h.controller.handle_start()

        assert h.host.notices[-1] == ("Convos agent is already running", "warning")
        await h.close()

    async def test_start_without_cli(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.controller.init()
        with patch(_WHICH, return_value=None):
            await h.controller.handle_start()

        text, level = h.host.notices[-1]
        assert level == "error"
        assert "npm install -g @convos/cli" in text
        assert not h.controller.running
        await h.close()

    async def test_stop_when_not_running(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.controller.init()
        await h.controller.handle_stop()
        assert h.host.notices[-1] == ("Convos agent is not running", "info")
        await h.close()

    async def test_status(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.controller.init()
        await h.controller.handle_status()
        assert h.host.notices[-1] == ("Convos agent is not running", "info")
        await h.close()

    async def test_session_shutdown_stops_process(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.start()
        await h.ready()

        await h.controller.on_session_shutdown()

        assert {"type": "stop"} in _written(h.proc)
        assert not h.controller.running
        await h.controller.shutdown()
        h.recorder.end("shutdown")
        types = h.journal_types()
        assert types[0] == "journal_start"
        assert types[-1] == "journal_end"
        assert "lifecycle" in types
