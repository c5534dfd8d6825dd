"""Session manager: spawn, message, kill, restore and clean up agent sessions."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from agentorchestrator.config import AppConfig, ProjectConfig
from agentorchestrator.errors import (
    CapabilityError,
    ConfigurationError,
    RuntimeSpawnError,
    SessionNotFound,
    SessionNotRestorable,
    WorkspaceError,
)
from agentorchestrator.models.plugin import PluginSlot
from agentorchestrator.models.scm import PRState
from agentorchestrator.models.session import ActivityState, Session, SessionStatus
from agentorchestrator.plugins.base import (
    Agent,
    AgentLaunchConfig,
    Runtime,
    RuntimeCreateConfig,
    Tracker,
    Workspace,
    WorkspaceCreateConfig,
)
from agentorchestrator.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    killed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)


class SessionManager:
    """Owns the in-memory session table.

    Reads (``get``/``list``) return immutable snapshots without locking.
    Mutations on one session are serialized by a per-session lock.
    """

    def __init__(self, config: AppConfig, registry: PluginRegistry) -> None:
        self._config = config
        self._registry = registry
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._counter = itertools.count(1)

    # --- reads ---

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def list(self, project_id: str | None = None) -> list[Session]:
        return [
            s for s in list(self._sessions.values())
            if project_id is None or s.project_id == project_id
        ]

    # --- mutations ---

    async def spawn(
        self,
        project_id: str,
        issue_id: str | None = None,
        branch: str | None = None,
        prompt: str = "",
    ) -> Session:
        """Create a workspace, start the agent in a runtime and register the session.

        Nothing is registered if any step fails.
        """
        return await self._spawn(project_id, issue_id, branch, prompt)

    async def _spawn(
        self,
        project_id: str,
        issue_id: str | None,
        branch: str | None,
        prompt: str,
        restored_from: str | None = None,
    ) -> Session:
        project = self._config.project(project_id)
        runtime: Runtime = self._require_plugin(
            PluginSlot.RUNTIME, self._config.runtime_for(project), project
        )
        agent: Agent = self._require_plugin(
            PluginSlot.AGENT, self._config.agent_for(project), project
        )
        workspace: Workspace = self._require_plugin(
            PluginSlot.WORKSPACE, self._config.workspace_for(project), project
        )

        session_id = self._next_id(project)
        branch = branch or await self._branch_for(project, issue_id, session_id)

        try:
            info = await workspace.create(WorkspaceCreateConfig(
                project_id=project.id,
                session_id=session_id,
                branch=branch,
                repo_path=str(project.resolved_path),
                default_branch=project.default_branch,
            ))
        except Exception as e:
            raise WorkspaceError(f"Failed to create workspace for {session_id}: {e}") from e

        launch = AgentLaunchConfig(
            session_id=session_id,
            project_id=project.id,
            workspace_path=info.path,
            issue_id=issue_id,
            prompt=prompt,
            permissions=project.agent_config.get("permissions", "default"),
            model=project.agent_config.get("model", ""),
            extra=dict(project.agent_config),
        )
        try:
            handle = await runtime.create(RuntimeCreateConfig(
                session_id=session_id,
                workspace_path=info.path,
                launch_command=agent.get_launch_command(launch),
                environment=agent.get_environment(launch),
            ))
        except Exception as e:
            await self._destroy_workspace(workspace, info.path)
            raise RuntimeSpawnError(f"Failed to start runtime for {session_id}: {e}") from e

        session = Session(
            id=session_id,
            project_id=project.id,
            status=SessionStatus.WORKING,
            activity=ActivityState.ACTIVE,
            branch=info.branch,
            issue_id=issue_id,
            workspace_path=info.path,
            runtime_handle=handle,
            restored_from=restored_from,
        )
        self._sessions[session_id] = session
        logger.info("Spawned session %s (project=%s, branch=%s)", session_id, project.id, branch)

        await self._open_terminal(session)
        return session

    async def send(self, session_id: str, message: str) -> Session:
        """Deliver *message* into the session's runtime."""
        async with self._lock(session_id):
            session = self._require(session_id)
            handle = session.runtime_handle
            if handle is None:
                raise CapabilityError(f"Session {session_id} has no running runtime")
            runtime = self._registry.get(PluginSlot.RUNTIME, handle.runtime_name)
            if runtime is None:
                raise CapabilityError(f"Runtime plugin '{handle.runtime_name}' is not registered")
            try:
                await runtime.send_message(handle, message)
            except Exception as e:
                raise CapabilityError(f"Failed to send message to {session_id}: {e}") from e

            session = self._store(session.touched())
        logger.debug("Sent %d chars to session %s", len(message), session_id)
        return session

    async def kill(self, session_id: str) -> Session:
        """Stop the runtime and mark the session killed; a no-op when already stopped."""
        async with self._lock(session_id):
            session = self._require(session_id)
            if session.runtime_handle is None and session.status.is_terminal:
                return session

            await self._destroy_runtime(session)
            session = session.with_runtime_handle(None)
            if not session.status.is_terminal:
                session = session.with_status(SessionStatus.KILLED)
            session = self._store(session)
        logger.info("Killed session %s", session_id)
        return session

    async def restore(self, session_id: str) -> Session:
        """Start a new session from a killed or cleaned-up one."""
        old = self._require(session_id)
        if not old.status.is_restorable:
            raise SessionNotRestorable(session_id, old.status.value)
        session = await self._spawn(
            old.project_id, old.issue_id, old.branch or None, "", restored_from=old.id
        )
        logger.info("Restored session %s as %s", old.id, session.id)
        return session

    async def cleanup(self, project_id: str | None = None) -> CleanupResult:
        """Tear down sessions whose PR merged, whose runtime died or whose issue closed."""
        result = CleanupResult()
        for session in self.list(project_id):
            if session.status.is_terminal:
                continue
            try:
                target = await self._cleanup_target(session)
            except Exception as e:
                logger.warning("Cleanup check failed for %s", session.id, exc_info=True)
                result.errors.append((session.id, str(e)))
                continue

            if target is None:
                result.skipped.append(session.id)
                continue

            try:
                await self._teardown(session.id, target)
            except Exception as e:
                logger.warning("Cleanup of %s failed", session.id, exc_info=True)
                result.errors.append((session.id, str(e)))
                continue
            result.killed.append(session.id)

        if result.killed:
            logger.info("Cleaned up %d sessions", len(result.killed))
        return result

    async def update(self, session_id: str, mutator: Callable[[Session], Session]) -> Session:
        """Apply *mutator* to the current snapshot under the session's lock."""
        async with self._lock(session_id):
            session = self._require(session_id)
            updated = mutator(session)
            if updated is session:
                return session
            return self._store(updated)

    # --- helpers ---

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def _store(self, session: Session) -> Session:
        self._sessions[session.id] = session
        return session

    def _lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._sessions:
            raise SessionNotFound(session_id)
        return self._locks.setdefault(session_id, asyncio.Lock())

    def _next_id(self, project: ProjectConfig) -> str:
        while True:
            session_id = f"{project.prefix}-{next(self._counter)}"
            if session_id not in self._sessions:
                return session_id

    def _require_plugin(self, slot: PluginSlot, name: str, project: ProjectConfig):
        plugin = self._registry.get(slot, name)
        if plugin is None:
            raise ConfigurationError(
                f"Project {project.id}: {slot.value} plugin '{name}' is not registered"
            )
        return plugin

    async def _branch_for(
        self, project: ProjectConfig, issue_id: str | None, session_id: str
    ) -> str:
        if not issue_id:
            return f"session/{session_id}"
        tracker: Tracker | None = self._registry.get(PluginSlot.TRACKER, project.tracker)
        if tracker is not None:
            try:
                return tracker.branch_name(issue_id, project)
            except Exception:
                logger.warning("Tracker branch_name failed for %s", issue_id, exc_info=True)
        return f"feat/{issue_id}"

    async def _cleanup_target(self, session: Session) -> SessionStatus | None:
        project = self._config.projects.get(session.project_id)

        if session.pr and project:
            scm = self._registry.get(PluginSlot.SCM, project.scm)
            if scm is not None and await scm.get_pr_state(session.pr) == PRState.MERGED:
                return SessionStatus.MERGED

        handle = session.runtime_handle
        if handle is not None:
            runtime = self._registry.get(PluginSlot.RUNTIME, handle.runtime_name)
            if runtime is not None and not await runtime.is_alive(handle):
                return SessionStatus.CLEANUP

        if session.issue_id and project:
            tracker = self._registry.get(PluginSlot.TRACKER, project.tracker)
            if tracker is not None and await tracker.is_completed(session.issue_id, project):
                return SessionStatus.CLEANUP
        return None

    async def _teardown(self, session_id: str, status: SessionStatus) -> None:
        async with self._lock(session_id):
            session = self._require(session_id)
            if session.status.is_terminal:
                return
            await self._destroy_runtime(session)
            if session.workspace_path:
                project = self._config.projects.get(session.project_id)
                name = self._config.workspace_for(project) if project else self._config.defaults.workspace
                workspace = self._registry.get(PluginSlot.WORKSPACE, name)
                if workspace is not None:
                    await self._destroy_workspace(workspace, session.workspace_path)
            self._store(session.with_runtime_handle(None).with_status(status))
        logger.info("Session %s cleaned up as %s", session_id, status.value)

    async def _destroy_runtime(self, session: Session) -> None:
        handle = session.runtime_handle
        if handle is None:
            return
        runtime = self._registry.get(PluginSlot.RUNTIME, handle.runtime_name)
        if runtime is None:
            logger.warning("No runtime plugin '%s' to stop %s", handle.runtime_name, session.id)
            return
        try:
            await runtime.destroy(handle)
        except Exception:
            logger.warning("Runtime destroy failed for %s", session.id, exc_info=True)

    async def _destroy_workspace(self, workspace: Workspace, path: str) -> None:
        try:
            await workspace.destroy(path)
        except Exception:
            logger.warning("Workspace destroy failed for %s", path, exc_info=True)

    async def _open_terminal(self, session: Session) -> None:
        terminal = self._registry.get(PluginSlot.TERMINAL, self._config.defaults.terminal)
        if terminal is None:
            return
        try:
            await terminal.open_session(session)
        except Exception:
            logger.warning("Terminal open failed for %s", session.id, exc_info=True)
