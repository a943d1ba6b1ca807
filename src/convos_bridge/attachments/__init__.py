"""Inline resolution of remote image attachments."""

from convos_bridge.attachments.resolver import (
    IMAGE_MIME_TYPES,
    AttachmentRef,
    AttachmentResolver,
    match_attachment,
)

__all__ = ["IMAGE_MIME_TYPES", "AttachmentRef", "AttachmentResolver", "match_attachment"]
