"""Root CLI group and version flag."""

import click

from convos_bridge import __version__
from convos_bridge.commands.init import init
from convos_bridge.commands.serve import serve
from convos_bridge.commands.state import state


@click.group()
@click.version_option(version=__version__, prog_name="convos-bridge")
def cli() -> None:
    """convos-bridge — connect an agent runtime to a Convos conversation."""


cli.add_command(init)
cli.add_command(serve)
cli.add_command(state)
