"""Remote vs local turn routing."""

from convos_bridge.routing.mode import LOCAL_DIRECTIVE, REMOTE_DIRECTIVE, ModeRouter

__all__ = ["LOCAL_DIRECTIVE", "REMOTE_DIRECTIVE", "ModeRouter"]
