"""Builders for the messages the bridge publishes into the host."""

from __future__ import annotations

from typing import Any

from convos_bridge.host import HostMessage
from convos_bridge.protocol.models import (
    ErrorEvent,
    MemberJoinedEvent,
    MessageEvent,
    ReadyEvent,
)


def message_details(event: MessageEvent) -> dict[str, Any]:
    """Identifying fields of an inbound message, as carried in ``details``."""
    return {
        "type": "message",
        "id": event.id,
        "senderInboxId": event.sender_inbox_id,
        "contentType": event.content_type,
        "content": event.content,
        "sentAt": event.sent_at,
    }


def sender_prefix(event: MessageEvent) -> str:
    return f"[Convos message from {event.sender_inbox_id}]"


def ready_message(event: ReadyEvent) -> HostMessage:
    lines = [
        "Convos agent is ready and listening for messages.",
        f"Conversation: {event.conversation_id}",
        f"Invite URL: {event.invite_url}",
        f"QR code: {event.qr_code_path}",
        "",
        "Use the read tool on the QR code path to display it inline for the user.",
        "Use convos_send to reply to messages. Use convos_react to react.",
    ]
    return HostMessage(
        content="\n".join(lines),
        details={
            "type": "ready",
            "conversationId": event.conversation_id,
            "inviteUrl": event.invite_url,
            "qrCodePath": event.qr_code_path,
        },
    )


def inbound_message(event: MessageEvent) -> HostMessage:
    return HostMessage(
        content=f"{sender_prefix(event)} {event.content}",
        details=message_details(event),
    )


def member_joined_message(event: MemberJoinedEvent) -> HostMessage:
    return HostMessage(
        content=f"[Convos] New member joined: {event.inbox_id}",
        details={"type": "member_joined", "inboxId": event.inbox_id},
    )


def error_message(event: ErrorEvent) -> HostMessage:
    return HostMessage(
        content=f"[Convos error] {event.message}",
        details={"type": "error", "message": event.message},
    )


def notice_message(kind: str, text: str, **details: Any) -> HostMessage:
    """Bridge-originated notice (startup failure, process exit)."""
    return HostMessage(content=text, details={"type": kind, **details})
