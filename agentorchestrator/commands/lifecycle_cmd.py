"""CLI handlers for the lifecycle loop."""

from __future__ import annotations

import logging

import click

from agentorchestrator.commands._helpers import _run, echo_session_table, make_context, supervise
from agentorchestrator.errors import OrchestratorError

logger = logging.getLogger(__name__)


@click.group("lifecycle")
def lifecycle_group():
    """Run the poll-and-react loop."""
    pass


@lifecycle_group.command("run")
@click.argument("project_id")
@click.option("--issue", "-i", "issues", multiple=True, help="Issue to spawn a session for (repeatable)")
@click.option("--prompt", "-p", default="", help="Initial prompt for every agent")
@click.option("--interval", type=float, default=None, help="Poll interval in seconds")
@click.option("--kill-on-exit", is_flag=True, help="Kill sessions still running when the loop stops")
@click.pass_context
def lifecycle_run(
    ctx, project_id: str, issues: tuple[str, ...], prompt: str,
    interval: float | None, kill_on_exit: bool,
):
    """Spawn sessions for PROJECT_ID and supervise them until interrupted.

    Without --issue a single session is spawned with no issue.
    """

    async def _run_loop():
        app = make_context(ctx)
        manager = app.session_manager
        spawned: list[str] = []
        try:
            for issue_id in issues or (None,):
                try:
                    session = await manager.spawn(project_id, issue_id=issue_id, prompt=prompt)
                except OrchestratorError as e:
                    click.echo(f"Spawn failed for issue {issue_id}: {e}", err=True)
                    continue
                spawned.append(session.id)
                click.echo(f"Spawned {session.id} on {session.branch}")

            if not spawned:
                raise click.ClickException("No sessions were started")

            click.echo(f"Supervising {len(spawned)} session(s) (Ctrl-C to stop)...")
            await supervise(app, spawned, interval)
        finally:
            if kill_on_exit:
                for session_id in spawned:
                    try:
                        await manager.kill(session_id)
                    except OrchestratorError:
                        logger.warning("Kill failed for %s", session_id, exc_info=True)
            if spawned:
                click.echo("Final state:")
                echo_session_table(manager.list(project_id))
            await app.close()

    _run(_run_loop())
