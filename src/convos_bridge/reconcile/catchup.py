"""Catch-up reconciler — summarizes messages missed while the bridge was down."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from convos_bridge.collaborator.client import ConvosClient
from convos_bridge.constants import CATCH_UP_LIMIT
from convos_bridge.errors import CatchUpError, CollaboratorCallError
from convos_bridge.host import HostMessage, HostRuntime
from convos_bridge.protocol.models import MessageEvent
from convos_bridge.session.store import SessionState, SessionStore

logger = logging.getLogger(__name__)

_REVIEW_INSTRUCTION = (
    "Review these messages and reply with convos_send where a response is "
    "needed before continuing with any other work."
)
_UNFILTERED_NOTE = (
    "Your own inbox id could not be resolved, so some of these may be "
    "messages you sent yourself. Do not reply to those."
)


@dataclass
class CatchUpResult:
    """What a reconciliation run did."""

    fetched: int = 0
    summarized: list[MessageEvent] = field(default_factory=list)
    watermark: int | None = None
    published: bool = False
    error: str | None = None


class CatchUpReconciler:
    """Fetches history after the stored watermark and injects one summary.

    Self-authored messages are left out of the summary but still count
    toward the new watermark, so the bridge's own replies are never
    fetched again.
    """

    def __init__(
        self,
        client: ConvosClient,
        host: HostRuntime,
        store: SessionStore,
        *,
        limit: int = CATCH_UP_LIMIT,
        timeout: float | None = None,
    ) -> None:
        self._client = client
        self._host = host
        self._store = store
        self._limit = limit
        self._timeout = timeout
        self._own_inbox_id: str | None = None

    async def own_inbox_id(self) -> str | None:
        """The bridge's inbox id, resolved once and cached for the session."""
        if self._own_inbox_id is None:
            try:
                self._own_inbox_id = await self._client.whoami(timeout=self._timeout)
            except CollaboratorCallError as exc:
                logger.warning("Could not resolve own inbox id: %s", exc)
                return None
        return self._own_inbox_id

    async def run(self, state: SessionState) -> CatchUpResult:
        """Reconcile *state* against the conversation history.

        Never raises; failures are logged and reported in the result.
        """
        result = CatchUpResult(watermark=state.watermark)
        if state.conversation_id is None or state.watermark is None:
            return result

        try:
            fetched = await self._fetch(state.conversation_id, state.watermark)
        except CatchUpError as exc:
            logger.warning("Catch-up skipped: %s", exc)
            result.error = str(exc)
            return result

        result.fetched = len(fetched)
        if not fetched:
            logger.info("Catch-up: no messages after %s", state.watermark)
            return result

        own_id = await self.own_inbox_id()
        others = [m for m in fetched if m.sender_inbox_id != own_id]
        result.summarized = others

        if others:
            details: dict[str, object] = {
                "type": "catch_up",
                "count": len(others),
                "messageIds": [m.id for m in others],
            }
            if own_id is None:
                details["unfiltered"] = True
            await self._host.publish(
                HostMessage(
                    content=build_summary(others, unfiltered=own_id is None),
                    details=details,
                ),
                trigger_turn=True,
                deliver_as="steer",
            )
            result.published = True

        newest = max(m.watermark or 0 for m in fetched)
        if state.advance_watermark(newest):
            self._store.save(state)
        result.watermark = state.watermark
        logger.info(
            "Catch-up: fetched %d, summarized %d, watermark %s",
            result.fetched,
            len(others),
            result.watermark,
        )
        return result

    async def _fetch(self, conversation_id: str, after_ns: int) -> list[MessageEvent]:
        try:
            messages = await self._client.list_messages(
                conversation_id,
                after_ns=after_ns,
                limit=self._limit,
                content_type="text",
                timeout=self._timeout,
            )
        except CollaboratorCallError as exc:
            raise CatchUpError(str(exc)) from exc

        # The CLI filter is trusted loosely: keep strictly-newer messages only.
        newer = [m for m in messages if (m.watermark or 0) > after_ns]
        newer.sort(key=lambda m: m.watermark or 0)
        return newer


def build_summary(messages: list[MessageEvent], *, unfiltered: bool = False) -> str:
    """One steer-ready block listing *messages*, each tagged with its sender.

    With *unfiltered*, the block warns that the bridge's own messages could
    not be told apart and may be among those listed.
    """
    count = len(messages)
    noun = "message" if count == 1 else "messages"
    lines = [f"[Convos] {count} {noun} arrived while you were away:"]
    lines.extend(f"[{m.sender_inbox_id}] {m.content}" for m in messages)
    lines.append("")
    if unfiltered:
        lines.append(_UNFILTERED_NOTE)
    lines.append(_REVIEW_INSTRUCTION)
    return "\n".join(lines)
