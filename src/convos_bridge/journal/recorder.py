"""Bridge recorder — append-only JSONL journal of bridge activity."""

from __future__ import annotations

import threading
import time
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import IO, Literal

from convos_bridge.journal.models import JournalEndEvent, JournalEvent, JournalStartEvent

EndReason = Literal["shutdown", "ctrl_c", "error"]


class BridgeRecorder:
    """Records bridge events to an append-only JSONL file.

    Thread-safe: all writes are serialized through a ``threading.Lock``.
    Crash-safe: the file is flushed after every event.
    """

    def __init__(
        self,
        journal_dir: Path | None = None,
        conversation_id: str | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._seq = 0
        self._closed = False
        self._start_ns = time.monotonic_ns()
        self._journal_id = uuid.uuid4().hex[:12]

        if journal_dir is None:
            journal_dir = Path(".convos-bridge") / "journal"
        journal_dir.mkdir(parents=True, exist_ok=True)

        date_str = datetime.now(tz=UTC).strftime("%Y-%m-%d")
        self._journal_file = journal_dir / f"{date_str}_{self._journal_id}.jsonl"

        self._fh: IO[str] | None = None
        try:
            self._fh = self._journal_file.open("a", encoding="utf-8")
            self.record(
                JournalStartEvent(
                    ts="",  # placeholder, record() overwrites
                    seq=0,  # placeholder, record() overwrites
                    journal_id=self._journal_id,
                    conversation_id=conversation_id,
                )
            )
        except Exception:
            self._close_handle()
            raise

    @property
    def journal_id(self) -> str:
        """Unique journal identifier (12-char hex)."""
        return self._journal_id

    @property
    def journal_file(self) -> Path:
        return self._journal_file

    @property
    def event_count(self) -> int:
        """Number of events recorded so far."""
        return self._seq

    def record(self, event: JournalEvent) -> None:
        """Write *event*, stamping ``ts`` and ``seq``.

        Silently drops events after the recorder has been closed.
        """
        with self._lock:
            if self._closed or self._fh is None:
                return
            event.seq = self._seq
            event.ts = _iso_now()
            self._seq += 1
            self._fh.write(event.model_dump_json(by_alias=True) + "\n")
            self._fh.flush()

    def end(self, reason: EndReason) -> None:
        """Write a ``journal_end`` event and close the file. Idempotent."""
        if self._closed:
            return
        elapsed_ns = time.monotonic_ns() - self._start_ns
        self.record(
            JournalEndEvent(
                ts="",
                seq=0,
                reason=reason,
                duration_ms=int(elapsed_ns / 1_000_000),
            )
        )
        self.close()

    def close(self) -> None:
        """Close the file **without** writing a ``journal_end`` event."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._close_handle()

    def _close_handle(self) -> None:
        if self._fh is not None and not self._fh.closed:
            self._fh.close()


def _iso_now() -> str:
    """Return the current UTC time as ISO 8601 with milliseconds."""
    return datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
