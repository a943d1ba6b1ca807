"""Pydantic v2 models for convos-bridge.yaml configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

from convos_bridge.constants import CATCH_UP_LIMIT, DEFAULT_EXECUTABLE, STOP_GRACE_MS


class CatchUpConfig(BaseModel):
    """Settings for missed-message reconciliation."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=True, description="Run catch-up on resume")
    limit: int = Field(
        default=CATCH_UP_LIMIT,
        ge=1,
        le=500,
        description="Maximum messages fetched per catch-up",
    )
    timeout: float = Field(
        default=15.0,
        gt=0,
        description="Seconds allowed for each history or identity query",
    )


class BridgeConfig(BaseModel):
    """Top-level convos-bridge.yaml configuration."""

    model_config = ConfigDict(extra="forbid")

    executable: str = Field(
        default=DEFAULT_EXECUTABLE,
        min_length=1,
        description="Convos CLI executable name or path",
    )
    name: str | None = Field(
        default=None,
        description="Conversation display name passed as --name",
    )
    profile_name: str | None = Field(
        default=None,
        description="Agent profile name passed as --profile-name",
    )
    extra_args: list[str] = Field(
        default_factory=list,
        description="Additional flags for `convos agent serve`",
    )
    state_path: Path | None = Field(
        default=None,
        description="Session state file (defaults next to the config file)",
    )
    journal_dir: Path | None = Field(
        default=None,
        description="Directory for JSONL journals",
    )
    stop_grace_ms: int = Field(
        default=STOP_GRACE_MS,
        ge=0,
        description="Milliseconds to wait after `stop` before terminating",
    )
    download_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds allowed for an attachment download",
    )
    catch_up: CatchUpConfig = Field(
        default_factory=CatchUpConfig,
        description="Missed-message reconciliation settings",
    )

    @model_validator(mode="after")
    def _validate_extra_args(self) -> BridgeConfig:
        reserved = {"--name", "--profile-name"}
        clash = sorted(reserved.intersection(self.extra_args))
        if clash and (self.name or self.profile_name):
            joined = ", ".join(f"'{a}'" for a in clash)
            msg = f"extra_args repeats {joined}; use the dedicated field instead"
            raise ValueError(msg)
        return self

    def serve_args(self) -> list[str] | None:
        """Flags derived from the config, or ``None`` if nothing is set."""
        args: list[str] = []
        if self.name:
            args += ["--name", self.name]
        if self.profile_name:
            args += ["--profile-name", self.profile_name]
        args += self.extra_args
        return args or None
