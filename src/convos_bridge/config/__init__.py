"""Configuration models and parser for convos-bridge.yaml."""

from convos_bridge.config.models import BridgeConfig, CatchUpConfig
from convos_bridge.config.parser import (
    ConfigError,
    LoadedConfig,
    load_config,
    resolve_journal_dir,
    resolve_state_path,
)

__all__ = [
    "BridgeConfig",
    "CatchUpConfig",
    "ConfigError",
    "LoadedConfig",
    "load_config",
    "resolve_journal_dir",
    "resolve_state_path",
]
