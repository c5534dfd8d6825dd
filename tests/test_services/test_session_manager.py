"""Tests for SessionManager with fake plugins."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentorchestrator.config import AppConfig, DefaultsConfig, ProjectConfig
from agentorchestrator.errors import (
    CapabilityError,
    ConfigurationError,
    RuntimeSpawnError,
    SessionNotFound,
    SessionNotRestorable,
    WorkspaceError,
)
from agentorchestrator.models.plugin import PluginManifest, PluginSlot
from agentorchestrator.models.scm import PRState
from agentorchestrator.models.session import PRInfo, RuntimeHandle, SessionStatus
from agentorchestrator.plugins.base import WorkspaceInfo
from agentorchestrator.plugins.registry import PluginRegistry
from agentorchestrator.services.session_manager import SessionManager


def register(registry: PluginRegistry, slot: PluginSlot, name: str, instance) -> None:
    module = SimpleNamespace(
        manifest=PluginManifest(name=name, slot=slot),
        create=lambda config=None: instance,
    )
    registry.register(module)


def make_runtime():
    runtime = AsyncMock()
    runtime.create.side_effect = lambda cfg: RuntimeHandle(id=cfg.session_id, runtime_name="fake")
    runtime.is_alive.return_value = True
    return runtime


def make_workspace():
    workspace = AsyncMock()
    workspace.create.side_effect = lambda cfg: WorkspaceInfo(
        path=f"/wt/{cfg.project_id}/{cfg.session_id}",
        branch=cfg.branch,
        session_id=cfg.session_id,
        project_id=cfg.project_id,
    )
    return workspace


def make_agent():
    agent = MagicMock()
    agent.get_launch_command.return_value = "agent --go"
    agent.get_environment.return_value = {"AO_SESSION_ID": "x"}
    return agent


@pytest.fixture
def plugins():
    return SimpleNamespace(
        runtime=make_runtime(),
        workspace=make_workspace(),
        agent=make_agent(),
        scm=AsyncMock(),
        tracker=MagicMock(),
        terminal=AsyncMock(),
    )


@pytest.fixture
def manager(plugins):
    config = AppConfig(
        defaults=DefaultsConfig(runtime="fake", agent="fake", workspace="fake", terminal="fake"),
        projects={
            "app": ProjectConfig(
                id="app", path="/repo", scm="fake", tracker="fake",
                agent_config={"permissions": "skip", "model": "opus"},
            ),
        },
    )
    plugins.tracker.branch_name.side_effect = lambda issue, project: f"feat/issue-{issue}"
    plugins.tracker.is_completed = AsyncMock(return_value=False)
    registry = PluginRegistry()
    register(registry, PluginSlot.RUNTIME, "fake", plugins.runtime)
    register(registry, PluginSlot.WORKSPACE, "fake", plugins.workspace)
    register(registry, PluginSlot.AGENT, "fake", plugins.agent)
    register(registry, PluginSlot.SCM, "fake", plugins.scm)
    register(registry, PluginSlot.TRACKER, "fake", plugins.tracker)
    register(registry, PluginSlot.TERMINAL, "fake", plugins.terminal)
    return SessionManager(config, registry)


class TestSpawn:
    @pytest.mark.asyncio
    async def test_spawn_registers_session(self, manager, plugins):
        session = await manager.spawn("app", issue_id="12", prompt="fix it")
        assert session.id == "app-1"
        assert session.status == SessionStatus.WORKING
        assert session.branch == "feat/issue-12"
        assert session.workspace_path == "/wt/app/app-1"
        assert session.runtime_handle.id == "app-1"
        assert manager.get("app-1") is session
        plugins.terminal.open_session.assert_awaited_once_with(session)

        launch = plugins.agent.get_launch_command.call_args.args[0]
        assert launch.permissions == "skip"
        assert launch.model == "opus"
        assert launch.prompt == "fix it"
        runtime_cfg = plugins.runtime.create.await_args.args[0]
        assert runtime_cfg.launch_command == "agent --go"
        assert runtime_cfg.workspace_path == "/wt/app/app-1"

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, manager):
        a = await manager.spawn("app")
        b = await manager.spawn("app")
        assert a.id != b.id
        assert a.branch == "session/app-1"

    @pytest.mark.asyncio
    async def test_explicit_branch(self, manager):
        session = await manager.spawn("app", issue_id="12", branch="hotfix")
        assert session.branch == "hotfix"

    @pytest.mark.asyncio
    async def test_unknown_project(self, manager):
        with pytest.raises(ConfigurationError, match="Unknown project"):
            await manager.spawn("nope")

    @pytest.mark.asyncio
    async def test_workspace_failure(self, manager, plugins):
        plugins.workspace.create.side_effect = RuntimeError("disk full")
        with pytest.raises(WorkspaceError, match="disk full") as exc:
            await manager.spawn("app")
        assert isinstance(exc.value.__cause__, RuntimeError)
        assert manager.list() == []
        plugins.runtime.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_runtime_failure_rolls_back_workspace(self, manager, plugins):
        plugins.runtime.create.side_effect = RuntimeError("no tmux")
        with pytest.raises(RuntimeSpawnError):
            await manager.spawn("app")
        plugins.workspace.destroy.assert_awaited_once_with("/wt/app/app-1")
        assert manager.list() == []

    @pytest.mark.asyncio
    async def test_terminal_failure_is_not_fatal(self, manager, plugins):
        plugins.terminal.open_session.side_effect = RuntimeError("no display")
        session = await manager.spawn("app")
        assert manager.get(session.id) is not None

    @pytest.mark.asyncio
    async def test_tracker_failure_falls_back(self, manager, plugins):
        plugins.tracker.branch_name.side_effect = RuntimeError("boom")
        session = await manager.spawn("app", issue_id="12")
        assert session.branch == "feat/12"


class TestSend:
    @pytest.mark.asyncio
    async def test_send(self, manager, plugins):
        session = await manager.spawn("app")
        updated = await manager.send(session.id, "hello")
        plugins.runtime.send_message.assert_awaited_once_with(session.runtime_handle, "hello")
        assert updated.last_activity_at >= session.last_activity_at

    @pytest.mark.asyncio
    async def test_send_unknown(self, manager):
        with pytest.raises(SessionNotFound):
            await manager.send("nope", "hello")

    @pytest.mark.asyncio
    async def test_send_after_kill(self, manager):
        session = await manager.spawn("app")
        await manager.kill(session.id)
        with pytest.raises(CapabilityError, match="no running runtime"):
            await manager.send(session.id, "hello")

    @pytest.mark.asyncio
    async def test_send_runtime_error_is_wrapped(self, manager, plugins):
        session = await manager.spawn("app")
        plugins.runtime.send_message.side_effect = RuntimeError("pane gone")
        with pytest.raises(CapabilityError, match="pane gone"):
            await manager.send(session.id, "hello")


class TestKillRestore:
    @pytest.mark.asyncio
    async def test_kill(self, manager, plugins):
        session = await manager.spawn("app")
        killed = await manager.kill(session.id)
        assert killed.status == SessionStatus.KILLED
        assert killed.runtime_handle is None
        plugins.runtime.destroy.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_kill_is_idempotent(self, manager, plugins):
        session = await manager.spawn("app")
        await manager.kill(session.id)
        again = await manager.kill(session.id)
        assert again.status == SessionStatus.KILLED
        assert plugins.runtime.destroy.await_count == 1

    @pytest.mark.asyncio
    async def test_kill_tolerates_destroy_failure(self, manager, plugins):
        session = await manager.spawn("app")
        plugins.runtime.destroy.side_effect = RuntimeError("gone")
        killed = await manager.kill(session.id)
        assert killed.status == SessionStatus.KILLED

    @pytest.mark.asyncio
    async def test_kill_unknown(self, manager):
        with pytest.raises(SessionNotFound):
            await manager.kill("nope")

    @pytest.mark.asyncio
    async def test_restore(self, manager):
        session = await manager.spawn("app", issue_id="12")
        await manager.kill(session.id)
        restored = await manager.restore(session.id)
        assert restored.id != session.id
        assert restored.restored_from == session.id
        assert restored.branch == session.branch
        assert restored.issue_id == "12"
        assert manager.get(session.id).status == SessionStatus.KILLED

    @pytest.mark.asyncio
    async def test_restore_live_session_rejected(self, manager):
        session = await manager.spawn("app")
        with pytest.raises(SessionNotRestorable, match="working"):
            await manager.restore(session.id)


class TestCleanup:
    @pytest.mark.asyncio
    async def test_dead_runtime_is_cleaned(self, manager, plugins):
        session = await manager.spawn("app")
        plugins.runtime.is_alive.return_value = False
        result = await manager.cleanup()
        assert result.killed == [session.id]
        assert manager.get(session.id).status == SessionStatus.CLEANUP
        plugins.workspace.destroy.assert_awaited_once_with(session.workspace_path)

    @pytest.mark.asyncio
    async def test_merged_pr_is_cleaned(self, manager, plugins):
        session = await manager.spawn("app")
        pr = PRInfo(number=3, url="u", owner="acme", repo="app")
        await manager.update(session.id, lambda s: s.with_pr(pr))
        plugins.scm.get_pr_state.return_value = PRState.MERGED
        result = await manager.cleanup("app")
        assert result.killed == [session.id]
        assert manager.get(session.id).status == SessionStatus.MERGED

    @pytest.mark.asyncio
    async def test_closed_issue_is_cleaned(self, manager, plugins):
        session = await manager.spawn("app", issue_id="12")
        plugins.tracker.is_completed.return_value = True
        result = await manager.cleanup()
        assert result.killed == [session.id]

    @pytest.mark.asyncio
    async def test_live_sessions_are_skipped(self, manager):
        session = await manager.spawn("app", issue_id="12")
        result = await manager.cleanup()
        assert result.skipped == [session.id]
        assert result.killed == []

    @pytest.mark.asyncio
    async def test_check_errors_are_collected(self, manager, plugins):
        session = await manager.spawn("app")
        plugins.runtime.is_alive.side_effect = RuntimeError("tmux crashed")
        result = await manager.cleanup()
        assert result.errors == [(session.id, "tmux crashed")]
        assert manager.get(session.id).status == SessionStatus.WORKING


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_applies_mutator(self, manager):
        session = await manager.spawn("app")
        updated = await manager.update(session.id, lambda s: s.with_metadata(note="x"))
        assert manager.get(session.id).metadata == {"note": "x"}
        assert updated is manager.get(session.id)

    @pytest.mark.asyncio
    async def test_list_by_project(self, manager):
        await manager.spawn("app")
        assert len(manager.list("app")) == 1
        assert manager.list("other") == []
