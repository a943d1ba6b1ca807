"""One-shot Convos CLI calls used outside the ndjson stream."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from convos_bridge.errors import CollaboratorCallError
from convos_bridge.helpers import format_stderr_preview
from convos_bridge.protocol.models import MessageEvent

logger = logging.getLogger(__name__)

#: Default seconds allowed for a query before it is abandoned.
DEFAULT_TIMEOUT = 15.0


class ConvosClient:
    """Runs short-lived ``convos`` sub-commands and parses their JSON output.

    Every call is bounded by a timeout; on expiry the child is killed and
    :class:`CollaboratorCallError` is raised.
    """

    def __init__(self, executable: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._executable = executable
        self._timeout = timeout

    async def list_messages(
        self,
        conversation_id: str,
        *,
        after_ns: int,
        limit: int,
        content_type: str = "text",
        timeout: float | None = None,
    ) -> list[MessageEvent]:
        """Messages sent strictly after *after_ns*, oldest first."""
        out = await self._run(
            [
                "conversation",
                "messages",
                conversation_id,
                "--after-ns",
                str(after_ns),
                "--limit",
                str(limit),
                "--direction",
                "ascending",
                "--content-type",
                content_type,
                "--json",
            ],
            timeout=timeout,
        )
        data = _load_json(out)
        if isinstance(data, dict):
            data = data.get("messages", [])
        if not isinstance(data, list):
            msg = f"expected a message list, got {type(data).__name__}"
            raise CollaboratorCallError(msg)

        messages: list[MessageEvent] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            try:
                messages.append(MessageEvent.model_validate(item))
            except ValidationError:
                logger.debug("skipping malformed history entry: %r", item)
        return messages

    async def whoami(self, *, timeout: float | None = None) -> str:
        """The inbox id of the identity the agent runs as."""
        data = _load_json(
            await self._run(["agent", "whoami", "--json"], timeout=timeout)
        )
        inbox_id = data.get("inboxId") if isinstance(data, dict) else None
        if not isinstance(inbox_id, str) or not inbox_id:
            msg = "whoami returned no inboxId"
            raise CollaboratorCallError(msg)
        return inbox_id

    async def download_attachment(
        self, url: str, dest: Path, *, timeout: float | None = None
    ) -> Path:
        """Download and decrypt a remote attachment into *dest*."""
        await self._run(
            ["conversation", "download-attachment", url, "--output", str(dest)],
            timeout=timeout,
        )
        if not dest.is_file():
            msg = f"download reported success but {dest} is missing"
            raise CollaboratorCallError(msg)
        return dest

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    async def _run(self, args: list[str], *, timeout: float | None) -> bytes:
        limit = self._timeout if timeout is None else timeout
        try:
            proc = await asyncio.create_subprocess_exec(
                self._executable,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=dict(os.environ),
            )
        except OSError as exc:
            msg = f"failed to run {self._executable} {args[0]}: {exc}"
            raise CollaboratorCallError(msg) from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=limit)
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            msg = f"{self._executable} {' '.join(args[:2])} timed out after {limit}s"
            raise CollaboratorCallError(msg) from None

        if proc.returncode != 0:
            preview = format_stderr_preview(stderr.decode(errors="replace"))
            msg = f"{self._executable} {' '.join(args[:2])} exited with code {proc.returncode}"
            if preview:
                msg += f": {preview}"
            raise CollaboratorCallError(msg)
        return stdout


def _load_json(out: bytes) -> Any:
    try:
        return json.loads(out.decode(errors="replace"))
    except json.JSONDecodeError as exc:
        msg = f"invalid JSON from convos: {exc.msg}"
        raise CollaboratorCallError(msg) from exc
