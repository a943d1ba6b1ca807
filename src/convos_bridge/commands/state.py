"""convos-bridge state — inspect or clear persisted session state."""

from __future__ import annotations

from pathlib import Path

import click

from convos_bridge.config.parser import ConfigError, load_config, resolve_state_path
from convos_bridge.session.store import SessionStore


@click.command()
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Path to convos-bridge.yaml.",
)
@click.option("--clear", is_flag=True, help="Forget the stored conversation.")
def state(config_file: str | None, clear: bool) -> None:
    """Show the stored conversation and watermark."""
    try:
        loaded = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    store = SessionStore(resolve_state_path(loaded))

    if clear:
        try:
            store.clear()
        except OSError as exc:
            click.echo(f"Error: cannot remove {store.path}: {exc}", err=True)
            raise SystemExit(1) from exc
        click.echo(f"Cleared session state ({store.path})")
        return

    current = store.load()
    if current.conversation_id is None:
        click.echo(f"No stored session ({store.path})")
        return

    click.echo(f"Conversation: {current.conversation_id}")
    click.echo(f"Invite URL:   {current.invite_url or '-'}")
    click.echo(f"Watermark:    {current.last_seen_watermark or '-'}")
    click.echo(f"State file:   {store.path}")
