"""Mode router — tells the agent where its next reply should go."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

#: Appended to the turn instructions when the last trigger came from Convos.
REMOTE_DIRECTIVE = (
    "## Convos mode\n"
    "The latest input came from a Convos conversation. Reply to it with the "
    "convos_send tool (use convos_react for reactions); plain text you write "
    "outside a tool call is not delivered. Write plain text only: no "
    "Markdown, no code fences, no tables."
)

#: Appended to the turn instructions when the last trigger was the local operator.
LOCAL_DIRECTIVE = (
    "## Local mode\n"
    "The latest input came from the local operator, not from Convos. Answer "
    "here with normal formatting and do not call convos_send, convos_react, "
    "or other Convos tools unless the operator asks you to."
)


class ModeRouter:
    """Tracks whether the latest turn trigger was remote or local.

    The directive is recomputed on every turn from a single flag, so it
    cannot go stale between turns.
    """

    def __init__(self) -> None:
        self._remote = False

    @property
    def remote(self) -> bool:
        """True when the last trigger was a Convos message."""
        return self._remote

    def mark_remote(self) -> None:
        if not self._remote:
            logger.debug("mode -> remote")
        self._remote = True

    def mark_local(self) -> None:
        if self._remote:
            logger.debug("mode -> local")
        self._remote = False

    def directive(self) -> str:
        return REMOTE_DIRECTIVE if self._remote else LOCAL_DIRECTIVE

    def apply(self, instructions: str) -> str:
        """Return *instructions* with the current directive appended."""
        if not instructions:
            return self.directive()
        return f"{instructions.rstrip()}\n\n{self.directive()}"
