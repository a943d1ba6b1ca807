"""convos-bridge serve — run the bridge with a console host and REPL."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import select
import signal
import sys
import threading
from pathlib import Path

import click

from convos_bridge.bridge.controller import BridgeController
from convos_bridge.config.models import BridgeConfig
from convos_bridge.config.parser import (
    ConfigError,
    load_config,
    resolve_journal_dir,
    resolve_state_path,
)
from convos_bridge.host import DeliverAs, HostMessage, ImagePart, NoticeLevel, TextPart
from convos_bridge.journal.recorder import BridgeRecorder, EndReason
from convos_bridge.session.store import SessionStore

logger = logging.getLogger(__name__)

_NOTICE_COLORS: dict[str, str] = {"info": "cyan", "warning": "yellow", "error": "red"}

_HELP = """\
  /start [args]        start `convos agent serve` (args are passed through)
  /stop                stop the agent
  /status              show agent status
  /send <text>         send <text> to the conversation
  /react <id> <emoji>  react to a message
  /mode                show the current reply directive
  /quit                stop everything and exit
  <text>               send <text> to the conversation"""


class ConsoleHost:
    """Host runtime that prints published messages to the terminal."""

    async def publish(
        self,
        message: HostMessage,
        *,
        trigger_turn: bool,
        deliver_as: DeliverAs | None = None,
    ) -> None:
        marker = "»" if deliver_as == "steer" else "·"
        if isinstance(message.content, str):
            click.echo(f"{marker} {message.content}")
            return
        for part in message.content:
            if isinstance(part, TextPart):
                click.echo(f"{marker} {part.text}")
            elif isinstance(part, ImagePart):
                size = len(part.data) * 3 // 4
                click.echo(f"{marker} <{part.mime_type} image, ~{size} bytes>")

    async def notify(self, text: str, level: NoticeLevel = "info") -> None:
        click.echo(click.style(text, fg=_NOTICE_COLORS.get(level)), err=True)


@click.command(context_settings={"ignore_unknown_options": True})
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Path to convos-bridge.yaml (default: ./convos-bridge.yaml).",
)
@click.option(
    "--start/--no-start",
    "autostart",
    default=False,
    help="Start the Convos agent immediately.",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.argument("serve_args", nargs=-1, type=click.UNPROCESSED)
def serve(
    config_file: str | None,
    autostart: bool,
    verbose: bool,
    serve_args: tuple[str, ...],
) -> None:
    """Run the bridge in the foreground with an interactive console."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        loaded = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    store = SessionStore(resolve_state_path(loaded))
    recorder = BridgeRecorder(
        journal_dir=resolve_journal_dir(loaded),
        conversation_id=store.load().conversation_id,
    )
    args = list(serve_args) if serve_args else None
    asyncio.run(_run(loaded.config, store, recorder, autostart or bool(args), args))


async def _run(
    config: BridgeConfig,
    store: SessionStore,
    recorder: BridgeRecorder,
    autostart: bool,
    args: list[str] | None,
) -> None:
    """Wire up the controller and run the REPL until shutdown."""
    host = ConsoleHost()
    controller = BridgeController(config, host, store, recorder)
    await controller.init()

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, shutdown_event.set)

    reason: EndReason = "error"
    try:
        if autostart:
            await controller.start(args)
        click.echo("convos-bridge ready (/help for commands)")
        reason = await _repl_loop(controller, shutdown_event)
    finally:
        await controller.shutdown()
        recorder.end(reason)
        click.echo(f"Journal: {recorder.journal_file}")


async def _repl_loop(
    controller: BridgeController,
    shutdown_event: asyncio.Event,
) -> EndReason:
    """Read operator input until /quit, EOF, or a signal."""
    thread_cancel = threading.Event()

    async def _bridge_shutdown() -> None:
        await shutdown_event.wait()
        thread_cancel.set()

    bridge_task = asyncio.create_task(_bridge_shutdown())
    loop = asyncio.get_running_loop()

    try:
        while not shutdown_event.is_set():
            try:
                line = await loop.run_in_executor(
                    None, functools.partial(_read_input, thread_cancel)
                )
            except EOFError:
                break

            line = line.strip()
            if not line:
                continue

            if line.startswith("/"):
                if await _handle_command(line, controller):
                    break
                continue

            controller.on_input("interactive")
            result = await controller.call_tool("convos_send", {"text": line})
            if result.is_error:
                click.echo(click.style(result.content, fg="red"), err=True)
    finally:
        bridge_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await bridge_task

    return "ctrl_c" if shutdown_event.is_set() else "shutdown"


def _read_input(cancel: threading.Event | None = None) -> str:
    """Blocking stdin reader for use with ``run_in_executor``.

    Polls with ``select.select`` so the thread notices *cancel* and raises
    ``EOFError`` instead of blocking forever.
    """
    sys.stdout.write("> ")
    sys.stdout.flush()

    while cancel is None or not cancel.is_set():
        ready, _, _ = select.select([sys.stdin], [], [], 0.5)
        if ready:
            break
        if cancel is None:
            break

    if cancel is not None and cancel.is_set():
        raise EOFError

    line = sys.stdin.readline()
    if not line:
        raise EOFError
    return line.rstrip("\n")


async def _handle_command(line: str, controller: BridgeController) -> bool:
    """Process a slash command. Returns ``True`` if the REPL should exit."""
    cmd, _, rest = line.partition(" ")
    cmd = cmd.lower()

    if cmd in ("/quit", "/exit"):
        return True

    if cmd == "/start":
        await controller.handle_start(rest)
        return False

    if cmd == "/stop":
        await controller.handle_stop()
        return False

    if cmd == "/status":
        await controller.handle_status()
        return False

    if cmd == "/send":
        if not rest.strip():
            click.echo("Usage: /send <text>")
            return False
        controller.on_input("interactive")
        result = await controller.call_tool("convos_send", {"text": rest})
        click.echo(result.content, err=result.is_error)
        return False

    if cmd == "/react":
        parts = rest.split()
        if len(parts) != 2:
            click.echo("Usage: /react <message-id> <emoji>")
            return False
        controller.on_input("interactive")
        result = await controller.call_tool(
            "convos_react", {"messageId": parts[0], "emoji": parts[1]}
        )
        click.echo(result.content, err=result.is_error)
        return False

    if cmd == "/mode":
        click.echo(controller.mode.directive())
        return False

    if cmd == "/help":
        click.echo(_HELP)
        return False

    click.echo(f"Unknown command: {cmd}")
    return False
