"""Session state store — durable conversation identity and watermark."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class SessionState(BaseModel):
    """Conversation identity and the last accounted-for send time."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    conversation_id: str | None = Field(default=None, alias="conversationId")
    invite_url: str | None = Field(default=None, alias="inviteUrl")
    qr_code_path: str | None = Field(
        default=None,
        alias="qrCodePath",
        exclude=True,
        description="Transient; never written to disk",
    )
    last_seen_watermark: str | None = Field(
        default=None,
        alias="lastSeenWatermark",
        description="Nanosecond send time, string-encoded to avoid precision loss",
    )

    @field_validator("last_seen_watermark", mode="before")
    @classmethod
    def _normalize_watermark(cls, value: object) -> object:
        if value is None or value == "":
            return None
        if isinstance(value, bool):
            msg = "watermark must be an integer"
            raise ValueError(msg)
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str):
            int(value)  # raises ValueError on garbage
            return value
        msg = f"watermark must be an integer, got {type(value).__name__}"
        raise ValueError(msg)

    @property
    def watermark(self) -> int | None:
        """The watermark as an integer, or ``None`` if none is stored."""
        if self.last_seen_watermark is None:
            return None
        return int(self.last_seen_watermark)

    def advance_watermark(self, ns: int | None) -> bool:
        """Move the watermark forward to *ns*.

        Returns ``True`` if the watermark changed. Values at or below the
        current watermark are ignored.
        """
        if ns is None:
            return False
        current = self.watermark
        if current is not None and ns <= current:
            return False
        self.last_seen_watermark = str(ns)
        return True

    def to_json(self) -> str:
        """Serialize in the persisted wire format."""
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)


class SessionStore:
    """Loads and saves ``SessionState`` at an opaque path.

    Neither operation raises: a missing or corrupt file loads as an empty
    state, and a failed write is logged and skipped.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> SessionState:
        """Return the stored state, or an empty one on any failure."""
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return SessionState()
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Cannot read session state %s: %s", self._path, exc)
            return SessionState()

        try:
            return SessionState.model_validate_json(text)
        except ValidationError as exc:
            logger.warning(
                "Ignoring corrupt session state %s (%d error(s))",
                self._path,
                exc.error_count(),
            )
            return SessionState()

    def save(self, state: SessionState) -> bool:
        """Persist *state*; return ``True`` on success.

        A watermark already on disk for the same conversation is never
        lowered by a save.
        """
        to_write = state
        on_disk = self.load()
        if (
            on_disk.conversation_id is not None
            and on_disk.conversation_id == state.conversation_id
            and on_disk.watermark is not None
            and (state.watermark is None or on_disk.watermark > state.watermark)
        ):
            to_write = state.model_copy(
                update={"last_seen_watermark": on_disk.last_seen_watermark}
            )

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", dir=self._path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(to_write.to_json())
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            logger.error("Failed to save session state %s: %s", self._path, exc)
            return False
        return True

    def clear(self) -> None:
        """Remove the stored state, if any."""
        self._path.unlink(missing_ok=True)
