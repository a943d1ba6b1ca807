"""Short-lived Convos CLI calls (history, identity, downloads)."""

from convos_bridge.collaborator.client import DEFAULT_TIMEOUT, ConvosClient

__all__ = ["DEFAULT_TIMEOUT", "ConvosClient"]
