"""CLI handlers for session commands."""

from __future__ import annotations

import click

from agentorchestrator.commands._helpers import _run, echo_session, make_context, supervise
from agentorchestrator.errors import OrchestratorError


@click.group("session")
def session_group():
    """Spawn and supervise agent sessions."""
    pass


@session_group.command("spawn")
@click.argument("project_id")
@click.option("--issue", "-i", "issue_id", default=None, help="Tracker issue to work on")
@click.option("--branch", "-b", default=None, help="Branch name (default: derived from the issue)")
@click.option("--prompt", "-p", default="", help="Initial prompt for the agent")
@click.option("--watch", "-w", is_flag=True, help="Keep supervising the session until it finishes")
@click.option("--interval", type=float, default=None, help="Poll interval in seconds (with --watch)")
@click.pass_context
def session_spawn(
    ctx, project_id: str, issue_id: str | None, branch: str | None, prompt: str,
    watch: bool, interval: float | None,
):
    """Start a coding agent session for a project."""

    async def _spawn():
        app = make_context(ctx)
        try:
            session = await app.session_manager.spawn(
                project_id, issue_id=issue_id, branch=branch, prompt=prompt,
            )
            echo_session(session)
            if watch:
                click.echo("Watching (Ctrl-C to stop)...")
                await supervise(app, [session.id], interval)
        except OrchestratorError as e:
            raise click.ClickException(str(e)) from e
        finally:
            await app.close()

    _run(_spawn())
