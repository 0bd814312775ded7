"""Click CLI definitions - main entry point."""

from __future__ import annotations

import logging
import sys

import click

from agentrelay.commands.config_cmd import config_group
from agentrelay.commands.deliver_cmd import deliver_group
from agentrelay.commands.server_cmd import server_group


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, debug: bool) -> None:
    """agentrelay - notification delivery runtime for agent sessions."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


cli.add_command(config_group, "config")
cli.add_command(server_group, "server")
cli.add_command(deliver_group, "deliver")


if __name__ == "__main__":
    cli()
