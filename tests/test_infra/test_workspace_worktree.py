"""Tests for the git worktree workspace with git calls mocked."""

from unittest.mock import AsyncMock, patch

import pytest

from agentorchestrator.plugins import workspace_worktree
from agentorchestrator.plugins.base import WorkspaceCreateConfig
from agentorchestrator.plugins.shell import CommandError
from agentorchestrator.plugins.workspace_worktree import WorktreeWorkspace, parse_worktree_list

TARGET = "agentorchestrator.plugins.workspace_worktree.check_output"

PORCELAIN = """\
worktree /repo
HEAD 1111111
branch refs/heads/main

worktree /wt/app/app-1
HEAD 2222222
branch refs/heads/feat/issue-12

worktree /wt/app/detached
HEAD 3333333
detached
"""


def git_stub(responses: dict[str, object]):
    """Fake check_output keyed on the git subcommand."""

    async def fake(*argv, cwd=None):
        result = responses.get(argv[1], "")
        if argv[1] == "worktree":
            result = responses.get(f"worktree {argv[2]}", "")
        if isinstance(result, Exception):
            raise result
        return result

    return AsyncMock(side_effect=fake)


@pytest.fixture
def config(tmp_path):
    return WorkspaceCreateConfig(
        project_id="app",
        session_id="app-2",
        branch="feat/issue-13",
        repo_path=str(tmp_path / "repo"),
        default_branch="main",
    )


class TestParseWorktreeList:
    def test_maps_branches(self):
        assert parse_worktree_list(PORCELAIN) == {
            "main": "/repo",
            "feat/issue-12": "/wt/app/app-1",
        }

    def test_empty(self):
        assert parse_worktree_list("") == {}


class TestWorktreeCreate:
    @pytest.mark.asyncio
    async def test_creates_new_worktree(self, tmp_path, config):
        ws = WorktreeWorkspace(tmp_path / "wt")
        check = git_stub({"worktree list": PORCELAIN})
        with patch(TARGET, new=check):
            info = await ws.create(config)

        expected = str(tmp_path / "wt" / "app" / "app-2")
        assert info.path == expected
        assert info.branch == "feat/issue-13"
        add = [c for c in check.await_args_list if c.args[:3] == ("git", "worktree", "add")]
        assert add[0].args == (
            "git", "worktree", "add", "-b", "feat/issue-13", expected, "origin/main"
        )

    @pytest.mark.asyncio
    async def test_fetch_failure_is_not_fatal(self, tmp_path, config):
        ws = WorktreeWorkspace(tmp_path / "wt")
        check = git_stub({"fetch": CommandError(("git", "fetch"), 128, "offline")})
        with patch(TARGET, new=check):
            info = await ws.create(config)
        assert info.path.endswith("app-2")

    @pytest.mark.asyncio
    async def test_existing_branch_is_checked_out(self, tmp_path, config):
        ws = WorktreeWorkspace(tmp_path / "wt")
        calls = []

        async def fake(*argv, cwd=None):
            calls.append(argv)
            if argv[1:4] == ("worktree", "add", "-b"):
                raise CommandError(argv, 255, "fatal: a branch named 'feat/issue-13' already exists")
            return ""

        with patch(TARGET, new=AsyncMock(side_effect=fake)):
            await ws.create(config)
        assert calls[-1][:3] == ("git", "worktree", "add")
        assert calls[-1][-1] == "feat/issue-13"

    @pytest.mark.asyncio
    async def test_other_add_errors_propagate(self, tmp_path, config):
        ws = WorktreeWorkspace(tmp_path / "wt")
        check = git_stub({"worktree add": CommandError(("git", "worktree"), 128, "invalid reference")})
        with patch(TARGET, new=check):
            with pytest.raises(CommandError, match="invalid reference"):
                await ws.create(config)

    @pytest.mark.asyncio
    async def test_reuses_worktree_for_branch(self, tmp_path, config):
        existing = tmp_path / "existing"
        existing.mkdir()
        porcelain = f"worktree {existing}\nHEAD 1\nbranch refs/heads/feat/issue-13\n"
        ws = WorktreeWorkspace(tmp_path / "wt")
        check = git_stub({"worktree list": porcelain})
        with patch(TARGET, new=check):
            info = await ws.create(config)
        assert info.path == str(existing)
        assert not any(c.args[1:3] == ("worktree", "add") for c in check.await_args_list)

    @pytest.mark.asyncio
    async def test_rejects_unsafe_session_id(self, tmp_path):
        ws = WorktreeWorkspace(tmp_path)
        with pytest.raises(ValueError, match="session_id"):
            await ws.create(WorkspaceCreateConfig(
                project_id="app", session_id="../escape", branch="b", repo_path="/r"
            ))


class TestWorktreeDestroy:
    @pytest.mark.asyncio
    async def test_remove_via_git(self, tmp_path):
        check = git_stub({"rev-parse": "/repo/.git"})
        with patch(TARGET, new=check):
            await WorktreeWorkspace(tmp_path).destroy("/wt/app/app-1")
        remove = check.await_args_list[-1]
        assert remove.args == ("git", "worktree", "remove", "--force", "/wt/app/app-1")
        assert remove.kwargs["cwd"] == "/repo"

    @pytest.mark.asyncio
    async def test_falls_back_to_rmtree(self, tmp_path):
        target = tmp_path / "orphan"
        target.mkdir()
        check = git_stub({"rev-parse": CommandError(("git", "rev-parse"), 128, "not a repo")})
        with patch(TARGET, new=check):
            await WorktreeWorkspace(tmp_path).destroy(str(target))
        assert not target.exists()

    @pytest.mark.asyncio
    async def test_exists(self, tmp_path):
        ws = WorktreeWorkspace(tmp_path)
        assert await ws.exists(str(tmp_path))
        assert not await ws.exists(str(tmp_path / "missing"))


class TestWorktreeFactory:
    def test_create_uses_worktree_dir(self, tmp_path):
        ws = workspace_worktree.create({"worktree_dir": str(tmp_path)})
        assert ws.base_dir == tmp_path
