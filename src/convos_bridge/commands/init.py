"""convos-bridge init — scaffold a bridge config in the current directory."""

from __future__ import annotations

from pathlib import Path

import click

from convos_bridge.config.parser import DEFAULT_CONFIG_NAME

TEMPLATE_YAML = """\
# convos-bridge configuration

# Convos CLI executable (install with: npm install -g @convos/cli)
executable: convos

# Passed to `convos agent serve` as --name / --profile-name
name: Chat with Agent
profile_name: "🤖 Agent"

# Additional `convos agent serve` flags
# extra_args: []

# Where session identity and the message watermark are kept
# (default: .convos-bridge/session.json next to this file)
# state_path: .convos-bridge/session.json

# Milliseconds to wait after `stop` before terminating the agent
# stop_grace_ms: 2000

# Seconds allowed for an image attachment download
# download_timeout: 30

# Summarize messages missed while the bridge was offline
catch_up:
  enabled: true
  limit: 50
  timeout: 15
"""


@click.command()
@click.option(
    "--force",
    is_flag=True,
    help=f"Overwrite existing {DEFAULT_CONFIG_NAME} if it exists.",
)
def init(force: bool) -> None:
    """Create a convos-bridge.yaml in the current directory."""
    config_path = Path.cwd() / DEFAULT_CONFIG_NAME

    if config_path.exists() and not force:
        raise click.ClickException(
            f"{DEFAULT_CONFIG_NAME} already exists. Use --force to overwrite."
        )

    try:
        config_path.write_text(TEMPLATE_YAML, encoding="utf-8")
    except OSError as exc:
        raise click.ClickException(f"Cannot write {DEFAULT_CONFIG_NAME}: {exc}") from exc
    click.echo(f"  Created {DEFAULT_CONFIG_NAME}")

    click.echo()
    click.echo("Next steps:")
    click.echo(f"  1. Edit {DEFAULT_CONFIG_NAME} to name your agent")
    click.echo("  2. Run `convos-bridge serve` and type /start")
