"""OpenCode agent plugin."""

from __future__ import annotations

import logging
import re
import shlex

from agentorchestrator.models.plugin import PluginManifest, PluginSlot
from agentorchestrator.models.session import ActivityState, AgentInfo, RuntimeHandle, Session
from agentorchestrator.plugins.base import AgentLaunchConfig
from agentorchestrator.plugins.shell import find_pane_process, pid_alive

logger = logging.getLogger(__name__)

manifest = PluginManifest(
    name="opencode",
    slot=PluginSlot.AGENT,
    description="Agent plugin: OpenCode",
)

PROMPT_LINE = re.compile(r"^[>$#]\s*$")
APPROVAL_PATTERNS = re.compile(r"approval required|\(y\)es.*\(n\)o", re.IGNORECASE)
PROCESS_RE = re.compile(r"(?:^|/)opencode(?:\s|$)")


class OpenCodeAgent:
    """Launches ``opencode run``.

    OpenCode keeps every session in one shared database, so per-session
    activity cannot be read from disk; activity comes from terminal text.
    """

    def get_launch_command(self, config: AgentLaunchConfig) -> str:
        parts = ["opencode"]
        if config.prompt:
            parts.extend(["run", shlex.quote(config.prompt)])
        if config.model:
            parts.extend(["--model", shlex.quote(config.model)])
        return " ".join(parts)

    def get_environment(self, config: AgentLaunchConfig) -> dict[str, str]:
        env = {
            "AO_SESSION_ID": config.session_id,
            "AO_PROJECT_ID": config.project_id,
        }
        if config.issue_id:
            env["AO_ISSUE_ID"] = config.issue_id
        return env

    def detect_activity(self, terminal_output: str) -> ActivityState:
        if not terminal_output.strip():
            return ActivityState.IDLE
        lines = terminal_output.rstrip().splitlines()
        if PROMPT_LINE.match(lines[-1].strip()):
            return ActivityState.IDLE
        if APPROVAL_PATTERNS.search(terminal_output):
            return ActivityState.WAITING_INPUT
        return ActivityState.ACTIVE

    async def get_activity_state(
        self, session: Session, ready_threshold_ms: int | None = None
    ) -> ActivityState:
        if session.runtime_handle is None:
            return ActivityState.EXITED
        if not await self.is_process_running(session.runtime_handle):
            return ActivityState.EXITED
        return ActivityState.UNKNOWN

    async def is_process_running(self, handle: RuntimeHandle) -> bool:
        if handle.runtime_name == "tmux":
            return await find_pane_process(handle.id, PROCESS_RE) is not None
        pid = handle.data.get("pid")
        return isinstance(pid, int) and pid > 0 and pid_alive(pid)

    async def get_session_info(self, session: Session) -> AgentInfo | None:
        return None


def create(config: dict | None = None) -> OpenCodeAgent:
    return OpenCodeAgent()
