"""CLI handlers for plugin inspection."""

from __future__ import annotations

import click

from agentorchestrator.commands._helpers import make_context
from agentorchestrator.models.plugin import PluginSlot


@click.group("plugins")
def plugins_group():
    """Inspect plugins."""
    pass


@plugins_group.command("list")
@click.option(
    "--slot", "-s", type=click.Choice([s.value for s in PluginSlot]), default=None,
    help="Only show one slot",
)
@click.pass_context
def plugins_list(ctx, slot: str | None):
    """List available plugins and the ones the config uses."""
    app = make_context(ctx)
    selected = PluginSlot(slot) if slot else None
    registered = app.registry.registered(selected)
    in_use = {(m.slot, m.name) for _, m in registered}

    click.echo("Available:")
    for manifest in app.registry.available(selected):
        mark = "*" if manifest.key in in_use else " "
        click.echo(
            f"  {mark} {manifest.slot.value:<9} {manifest.name:<12} "
            f"v{manifest.version}  {manifest.description}"
        )

    click.echo("\nConfigured:")
    if not registered:
        click.echo("  (none)")
    for name, manifest in registered:
        alias = f" -> {manifest.name}" if name != manifest.name else ""
        click.echo(f"  {manifest.slot.value:<9} {name}{alias}")
