"""Session persistence — identity and watermark across restarts."""

from convos_bridge.session.store import SessionState, SessionStore

__all__ = ["SessionState", "SessionStore"]
