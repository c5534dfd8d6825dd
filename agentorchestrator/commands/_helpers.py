"""Shared helpers for CLI commands."""

from __future__ import annotations

import asyncio

import click

from agentorchestrator.context import AppContext
from agentorchestrator.errors import OrchestratorError
from agentorchestrator.models.session import Session


def _run(coro):
    """Run an async function from sync context."""
    return asyncio.run(coro)


def make_context(ctx: click.Context) -> AppContext:
    """Build an AppContext from the --config option; config errors exit cleanly."""
    config_path = (ctx.obj or {}).get("config_path")
    try:
        app = AppContext(config_path=config_path)
        # Fail on unknown plugin names before any work starts
        app.registry
    except OrchestratorError as e:
        raise click.ClickException(str(e)) from e
    return app


def echo_session(session: Session) -> None:
    click.echo(f"Session: {session.id}")
    click.echo(f"  Project: {session.project_id}")
    click.echo(f"  Status: {session.status.value} ({session.activity.value})")
    if session.branch:
        click.echo(f"  Branch: {session.branch}")
    if session.issue_id:
        click.echo(f"  Issue: {session.issue_id}")
    if session.workspace_path:
        click.echo(f"  Workspace: {session.workspace_path}")
    handle = session.runtime_handle
    if handle is not None:
        click.echo(f"  Runtime: {handle.runtime_name}:{handle.id}")
        if handle.runtime_name == "tmux":
            click.echo(f"  Attach: tmux attach -t {handle.id}")
    if session.pr:
        click.echo(f"  PR: #{session.pr.number} {session.pr.url}")
    if session.restored_from:
        click.echo(f"  Restored from: {session.restored_from}")


def echo_session_table(sessions: list[Session]) -> None:
    if not sessions:
        click.echo("No sessions.")
        return
    for s in sessions:
        pr = f" PR #{s.pr.number}" if s.pr else ""
        click.echo(f"  {s.id} [{s.status.value}/{s.activity.value}] {s.branch}{pr}")


async def supervise(app: AppContext, session_ids: list[str], interval: float | None = None) -> None:
    """Run the lifecycle loop, echoing state changes until every session is terminal."""
    sessions = app.session_manager
    lifecycle = app.lifecycle_manager
    lifecycle.start(interval)
    seen: dict[str, tuple[str, str]] = {}
    try:
        while True:
            current = [s for s in (sessions.get(i) for i in session_ids) if s is not None]
            for s in current:
                state = (s.status.value, s.activity.value)
                if seen.get(s.id) != state:
                    seen[s.id] = state
                    pr = f" PR #{s.pr.number}" if s.pr else ""
                    click.echo(f"{s.id}: {state[0]} ({state[1]}){pr}")
            if all(s.status.is_terminal for s in current):
                return
            await asyncio.sleep(1)
    finally:
        await lifecycle.stop()
