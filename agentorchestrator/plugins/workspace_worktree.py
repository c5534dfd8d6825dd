"""Git worktree workspace: one worktree per session under a shared base dir."""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

from agentorchestrator.models.plugin import PluginManifest, PluginSlot
from agentorchestrator.plugins.base import WorkspaceCreateConfig, WorkspaceInfo
from agentorchestrator.plugins.shell import CommandError, check_output

logger = logging.getLogger(__name__)

manifest = PluginManifest(
    name="worktree",
    slot=PluginSlot.WORKSPACE,
    description="Workspace plugin: git worktrees",
)

SAFE_PATH_SEGMENT = re.compile(r"^[a-zA-Z0-9_-]+$")


def _validate_segment(value: str, label: str) -> None:
    if not SAFE_PATH_SEGMENT.match(value):
        raise ValueError(f"Invalid {label} {value!r}: must match {SAFE_PATH_SEGMENT.pattern}")


def parse_worktree_list(porcelain: str) -> dict[str, str]:
    """Map branch name -> worktree path from ``git worktree list --porcelain``."""
    by_branch: dict[str, str] = {}
    for block in porcelain.strip().split("\n\n"):
        path = branch = ""
        for line in block.strip().splitlines():
            if line.startswith("worktree "):
                path = line[len("worktree "):]
            elif line.startswith("branch "):
                branch = line[len("branch "):].removeprefix("refs/heads/")
        if path and branch:
            by_branch[branch] = path
    return by_branch


class WorktreeWorkspace:
    """Creates ``<base>/<project>/<session>`` worktrees off ``origin/<default_branch>``."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir

    async def create(self, config: WorkspaceCreateConfig) -> WorkspaceInfo:
        _validate_segment(config.project_id, "project_id")
        _validate_segment(config.session_id, "session_id")

        repo = str(Path(config.repo_path).expanduser())
        existing = await self._existing_worktree(repo, config.branch)
        if existing:
            logger.info("Reusing worktree %s for branch %s", existing, config.branch)
            return self._info(existing, config)

        project_dir = self.base_dir / config.project_id
        project_dir.mkdir(parents=True, exist_ok=True)
        path = str(project_dir / config.session_id)

        try:
            await check_output("git", "fetch", "origin", "--quiet", cwd=repo)
        except CommandError:
            logger.warning("git fetch failed in %s, continuing offline", repo)

        base_ref = f"origin/{config.default_branch}"
        try:
            await check_output("git", "worktree", "add", "-b", config.branch, path, base_ref, cwd=repo)
        except CommandError as e:
            if "already exists" not in e.stderr:
                raise
            # Branch exists without a worktree: check it out as-is
            await check_output("git", "worktree", "add", path, config.branch, cwd=repo)

        logger.info("Created worktree %s on branch %s", path, config.branch)
        return self._info(path, config)

    async def destroy(self, workspace_path: str) -> None:
        try:
            common_dir = await check_output(
                "git", "rev-parse", "--path-format=absolute", "--git-common-dir",
                cwd=workspace_path,
            )
            repo = str(Path(common_dir).parent)
            await check_output("git", "worktree", "remove", "--force", workspace_path, cwd=repo)
            logger.info("Removed worktree %s", workspace_path)
        except CommandError:
            logger.warning("git worktree remove failed for %s, deleting directory", workspace_path)
            shutil.rmtree(workspace_path, ignore_errors=True)

    async def exists(self, workspace_path: str) -> bool:
        return Path(workspace_path).is_dir()

    async def _existing_worktree(self, repo: str, branch: str) -> str | None:
        try:
            porcelain = await check_output("git", "worktree", "list", "--porcelain", cwd=repo)
        except CommandError:
            return None
        path = parse_worktree_list(porcelain).get(branch)
        if path and Path(path).is_dir() and Path(path).resolve() != Path(repo).resolve():
            return path
        return None

    @staticmethod
    def _info(path: str, config: WorkspaceCreateConfig) -> WorkspaceInfo:
        return WorkspaceInfo(
            path=path,
            branch=config.branch,
            session_id=config.session_id,
            project_id=config.project_id,
        )


def create(config: dict | None = None) -> WorktreeWorkspace:
    config = config or {}
    base = config.get("worktree_dir", "~/.agentorchestrator/worktrees")
    return WorktreeWorkspace(Path(base).expanduser())
