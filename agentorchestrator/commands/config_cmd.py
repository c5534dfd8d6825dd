"""CLI handlers for config commands."""

from __future__ import annotations

import json
import tomllib

import click
import tomli_w

from agentorchestrator.config import init_config, load_config, resolve_config_path
from agentorchestrator.errors import ConfigurationError


@click.group("config")
def config_group():
    """Manage configuration."""
    pass


@config_group.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
@click.pass_context
def config_init(ctx, force: bool):
    """Create default configuration file."""
    path = resolve_config_path((ctx.obj or {}).get("config_path"))
    if path.exists() and not force:
        click.echo(f"Configuration already exists at: {path} (use --force to overwrite)", err=True)
        return
    path = init_config(path)
    click.echo(f"Configuration created at: {path}")


@config_group.command("show")
@click.pass_context
def config_show(ctx):
    """Show current configuration."""
    try:
        config = load_config((ctx.obj or {}).get("config_path"))
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    d = config.defaults
    click.echo(f"Config file: {config.config_path}")
    click.echo(f"  Worktree dir: {config.resolved_worktree_dir}")
    click.echo(f"  Defaults: runtime={d.runtime}, agent={d.agent}, workspace={d.workspace}, terminal={d.terminal}")
    click.echo(f"  Default notifiers: {', '.join(d.notifiers) or '(none)'}")
    lc = config.lifecycle
    click.echo(
        f"  Lifecycle: every {lc.poll_interval:g}s, tick timeout {lc.tick_timeout:g}s, "
        f"concurrency {lc.max_concurrency}"
    )

    click.echo("\n  Projects:")
    if not config.projects:
        click.echo("    (none)")
    for project in config.projects.values():
        click.echo(
            f"    {project.id}: repo={project.repo or '-'}, path={project.resolved_path}, "
            f"branch={project.default_branch}, scm={project.scm or '-'}, tracker={project.tracker or '-'}"
        )

    click.echo("\n  Notifiers:")
    for name, notifier in config.notifiers.items():
        has_token = "token set" if notifier.options.get("token") else "no token"
        click.echo(f"    {name}: plugin={notifier.plugin} ({has_token})")

    click.echo("\n  Reactions:")
    for key, reaction in config.reactions.items():
        auto = "auto" if reaction.auto else "manual"
        click.echo(f"    {key}: {reaction.action.value} ({auto}, {reaction.priority.value})")
        escalate = reaction.escalate_after if reaction.escalate_after is not None else "-"
        click.echo(f"      retries={reaction.retries} escalate_after={escalate}")


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx, key: str, value: str):
    """Set a configuration value.

    Modifies the TOML config file. Key uses dot notation, e.g.:
    defaults.agent, lifecycle.poll_interval, projects.my-app.scm
    """
    path = resolve_config_path((ctx.obj or {}).get("config_path"))
    if not path.exists():
        click.echo("No config file found. Run 'agentorchestrator config init' first.", err=True)
        return

    with open(path, "rb") as f:
        data = tomllib.load(f)

    # Navigate dot-separated key
    parts = key.split(".")
    target = data
    for part in parts[:-1]:
        if part not in target:
            target[part] = {}
        target = target[part]
        if not isinstance(target, dict):
            raise click.ClickException(f"{key}: '{part}' is not a table")

    # Type coercion
    final_key = parts[-1]
    if value.lower() in ("true", "false"):
        target[final_key] = value.lower() == "true"
    elif value.isdigit():
        target[final_key] = int(value)
    elif value.startswith("[") or value.startswith("{"):
        try:
            target[final_key] = json.loads(value)
        except json.JSONDecodeError:
            target[final_key] = value
    else:
        target[final_key] = value

    with open(path, "wb") as f:
        tomli_w.dump(data, f)

    click.echo(f"Set {key} = {value}")
