"""Exception types raised inside the bridge.

None of these escape ``BridgeController``; each is caught where it occurs
and ends in a log line or a host notice.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for bridge errors."""


class AlreadyRunningError(BridgeError):
    """Raised when ``start`` is called while a process is still live."""


class CollaboratorUnavailableError(BridgeError):
    """Raised when the Convos CLI cannot be located or spawned."""


class ProtocolParseError(BridgeError):
    """Raised for an ndjson line that is not a recognised event."""


class CatchUpError(BridgeError):
    """Raised when the missed-message query fails or times out."""


class AttachmentDownloadError(BridgeError):
    """Raised when a remote attachment cannot be fetched or read."""


class CollaboratorCallError(BridgeError):
    """Raised when a one-shot Convos CLI call fails, times out, or returns garbage."""
