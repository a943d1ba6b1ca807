"""Load, validate, and resolve convos-bridge.yaml configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from convos_bridge.config.models import BridgeConfig

DEFAULT_CONFIG_NAME = "convos-bridge.yaml"

#: Env var naming an explicit config file.
CONFIG_ENV_VAR = "CONVOS_BRIDGE_CONFIG"

#: Project-scoped directory for state and journals.
STATE_DIR_NAME = ".convos-bridge"
STATE_FILE_NAME = "session.json"


class ConfigError(Exception):
    """User-facing configuration error."""


@dataclass(frozen=True)
class LoadedConfig:
    """A validated config plus the file it came from (``None`` for defaults)."""

    config: BridgeConfig
    path: Path | None

    @property
    def base_dir(self) -> Path:
        return self.path.parent if self.path is not None else Path.cwd()


def load_config(path: Path | None = None) -> LoadedConfig:
    """Load and validate a convos-bridge.yaml file.

    Args:
        path: Explicit config file path.  If None, ``$CONVOS_BRIDGE_CONFIG``
              is consulted, then ``convos-bridge.yaml`` in the current
              directory.  With no file at all, defaults are used.

    Raises:
        ConfigError: On a missing explicit file, bad YAML, or validation failure.
    """
    config_path = _resolve_path(path)
    if config_path is None:
        _load_env(Path.cwd())
        return LoadedConfig(config=BridgeConfig(), path=None)

    raw = _read_yaml(config_path)
    _load_env(config_path.parent)
    return LoadedConfig(config=_validate(raw), path=config_path)


def resolve_state_path(loaded: LoadedConfig) -> Path:
    """Where session state lives for this deployment."""
    configured = loaded.config.state_path
    if configured is not None:
        return configured if configured.is_absolute() else loaded.base_dir / configured
    return loaded.base_dir / STATE_DIR_NAME / STATE_FILE_NAME


def resolve_journal_dir(loaded: LoadedConfig) -> Path:
    configured = loaded.config.journal_dir
    if configured is not None:
        return configured if configured.is_absolute() else loaded.base_dir / configured
    return loaded.base_dir / STATE_DIR_NAME / "journal"


def _resolve_path(path: Path | None) -> Path | None:
    if path is None:
        env_value = os.environ.get(CONFIG_ENV_VAR)
        if env_value:
            path = Path(env_value)

    if path is not None:
        resolved = Path(path)
        if not resolved.is_file():
            msg = f"Config file not found: {resolved}"
            raise ConfigError(msg)
        return resolved

    default = Path.cwd() / DEFAULT_CONFIG_NAME
    return default if default.is_file() else None


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read config file: {exc}"
        raise ConfigError(msg) from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        detail = ""
        if hasattr(exc, "problem_mark") and exc.problem_mark is not None:
            mark = exc.problem_mark
            detail = f" (line {mark.line + 1}, column {mark.column + 1})"
        msg = f"Invalid YAML in {path.name}{detail}"
        raise ConfigError(msg) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {path.name}, got {type(data).__name__}"
        raise ConfigError(msg)

    return data


def _load_env(config_dir: Path) -> None:
    env_path = config_dir / ".env"
    if env_path.is_file():
        load_dotenv(env_path)


def _validate(raw: dict[str, Any]) -> BridgeConfig:
    try:
        return BridgeConfig.model_validate(raw)
    except ValidationError as exc:
        parts: list[str] = []
        for err in exc.errors():
            loc = " → ".join(str(s) for s in err["loc"]) or "(root)"
            msg = err["msg"]
            if "field required" in msg.lower():
                msg = "This field is required"
            elif "extra inputs are not permitted" in msg.lower():
                msg = "Unknown setting"
            elif "input should be" in msg.lower():
                msg = f"Invalid value: {msg}"
            parts.append(f"  {loc}: {msg}")
        joined = "\n".join(parts)
        msg = f"Config validation failed:\n{joined}"
        raise ConfigError(msg) from exc
