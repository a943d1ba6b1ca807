"""Attachment resolver — inlines images shared as remote attachments."""

from __future__ import annotations

import base64
import logging
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from convos_bridge.collaborator.client import ConvosClient
from convos_bridge.errors import AttachmentDownloadError, CollaboratorCallError
from convos_bridge.host import HostMessage, HostRuntime, ImagePart, TextPart
from convos_bridge.messages import message_details, sender_prefix
from convos_bridge.protocol.models import MessageEvent

logger = logging.getLogger(__name__)

#: How the Convos CLI renders a remote attachment as message text, e.g.
#: ``[remote attachment: cat.png (48213 bytes) https://host/abc]``.
_ATTACHMENT_RE = re.compile(
    r"^\[remote attachment: (?P<filename>.+?)"
    r"(?: \((?P<size>\d+) bytes\))?"
    r" (?P<url>https?://\S+)\]$"
)

#: Raster image extensions that can be inlined, with their MIME types.
IMAGE_MIME_TYPES: dict[str, str] = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
}

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]")


@dataclass(frozen=True)
class AttachmentRef:
    """A remote attachment referenced from message text."""

    filename: str
    url: str
    size: int | None = None

    @property
    def mime_type(self) -> str | None:
        """MIME type for inlineable images, else ``None``."""
        return IMAGE_MIME_TYPES.get(PurePosixPath(self.filename).suffix.lower())


def match_attachment(content: str) -> AttachmentRef | None:
    """Parse attachment-shaped message text."""
    m = _ATTACHMENT_RE.match(content.strip())
    if m is None:
        return None
    size = m.group("size")
    return AttachmentRef(
        filename=m.group("filename"),
        url=m.group("url"),
        size=int(size) if size else None,
    )


class AttachmentResolver:
    """Downloads image attachments and publishes them inline.

    :meth:`resolve` returns ``False`` for anything it does not handle so
    the caller can fall back to plain message publishing.
    """

    def __init__(
        self,
        client: ConvosClient,
        host: HostRuntime,
        temp_dir: Path,
        *,
        timeout: float | None = None,
    ) -> None:
        self._client = client
        self._host = host
        self._temp_dir = temp_dir
        self._timeout = timeout

    async def resolve(self, event: MessageEvent) -> bool:
        """Publish *event* with its image inlined; ``True`` if handled."""
        ref = match_attachment(event.content)
        if ref is None or ref.mime_type is None:
            return False

        try:
            data = await self._fetch(event, ref)
        except AttachmentDownloadError as exc:
            logger.warning("Attachment %s from %s: %s", ref.filename, event.id, exc)
            await self._host.publish(
                HostMessage(
                    content=(
                        f"{sender_prefix(event)} sent an attachment ({ref.filename}) "
                        f"but it could not be downloaded: {exc}"
                    ),
                    details={
                        **message_details(event),
                        "attachment": {"filename": ref.filename, "url": ref.url},
                        "downloadError": str(exc),
                    },
                ),
                trigger_turn=True,
                deliver_as="steer",
            )
            return True

        await self._host.publish(
            HostMessage(
                content=[
                    TextPart(text=f"{sender_prefix(event)} sent an image: {ref.filename}"),
                    ImagePart(
                        data=base64.b64encode(data).decode("ascii"),
                        mime_type=ref.mime_type,
                    ),
                ],
                details={
                    **message_details(event),
                    "attachment": {
                        "filename": ref.filename,
                        "url": ref.url,
                        "mimeType": ref.mime_type,
                        "size": len(data),
                    },
                },
            ),
            trigger_turn=True,
            deliver_as="steer",
        )
        return True

    async def _fetch(self, event: MessageEvent, ref: AttachmentRef) -> bytes:
        dest = self._temp_dir / _temp_name(event.id, ref.filename)
        try:
            self._temp_dir.mkdir(parents=True, exist_ok=True)
            await self._client.download_attachment(ref.url, dest, timeout=self._timeout)
            return dest.read_bytes()
        except CollaboratorCallError as exc:
            raise AttachmentDownloadError(str(exc)) from exc
        except OSError as exc:
            msg = f"cannot read downloaded file: {exc}"
            raise AttachmentDownloadError(msg) from exc
        finally:
            try:
                dest.unlink(missing_ok=True)
            except OSError as exc:
                logger.debug("could not remove %s: %s", dest, exc)


def _temp_name(message_id: str, filename: str) -> str:
    safe_id = _UNSAFE_CHARS_RE.sub("_", message_id)[:64]
    safe_name = _UNSAFE_CHARS_RE.sub("_", PurePosixPath(filename).name)[:128]
    return f"{safe_id}-{safe_name}"
