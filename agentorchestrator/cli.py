"""Click CLI definitions - main entry point."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from agentorchestrator.commands.config_cmd import config_group
from agentorchestrator.commands.lifecycle_cmd import lifecycle_group
from agentorchestrator.commands.plugins_cmd import plugins_group
from agentorchestrator.commands.session_cmd import session_group


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), default=None,
    help="Config file (default: $AO_CONFIG or ~/.config/agentorchestrator/config.toml)",
)
@click.pass_context
def cli(ctx, debug: bool, config_path: Path | None) -> None:
    """agentorchestrator - run coding agents in parallel and react to their PRs."""
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = config_path


cli.add_command(session_group, "session")
cli.add_command(lifecycle_group, "lifecycle")
cli.add_command(plugins_group, "plugins")
cli.add_command(config_group, "config")


if __name__ == "__main__":
    cli()
