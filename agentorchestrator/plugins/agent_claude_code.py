"""Claude Code agent plugin."""

from __future__ import annotations

import json
import logging
import re
import shlex
import time
from pathlib import Path

from agentorchestrator.models.plugin import PluginManifest, PluginSlot
from agentorchestrator.models.session import ActivityState, AgentInfo, RuntimeHandle, Session
from agentorchestrator.plugins.base import AgentLaunchConfig
from agentorchestrator.plugins.shell import find_pane_process, pid_alive

logger = logging.getLogger(__name__)

manifest = PluginManifest(
    name="claude-code",
    slot=PluginSlot.AGENT,
    description="Agent plugin: Claude Code CLI",
)

ACTIVE_PATTERNS = re.compile(r"⏺|esc to interrupt|Thinking|Pondering|Analyzing")
IDLE_PATTERNS = re.compile(r"^[❯>]\s*$", re.MULTILINE)
INPUT_PATTERNS = re.compile(
    r"\[y/N\]|\[Y/n\]|Continue\?|Proceed\?|Do you want|Allow|Approve|Permission",
    re.IGNORECASE,
)
# Kept specific so code the agent is editing ("fixed the error") does not match
BLOCKED_PATTERNS = re.compile(
    r"^Error:|^✗|ENOENT:|EACCES:|quota exceeded|rate limit exceeded|APIError:|NetworkError:",
    re.MULTILINE,
)

PROCESS_RE = re.compile(r"(?:^|/)claude(?:\s|$)")

DEFAULT_READY_THRESHOLD_MS = 30_000


def claude_project_dir(workspace_path: str, home: Path | None = None) -> Path:
    """Directory where the CLI keeps session logs for *workspace_path*.

    The CLI strips the leading slash and replaces ``/`` and ``.`` with ``-``.
    """
    encoded = re.sub(r"[/.]", "-", workspace_path.lstrip("/"))
    return (home or Path.home()) / ".claude" / "projects" / encoded


def _latest_session_file(project_dir: Path) -> Path | None:
    if not project_dir.is_dir():
        return None
    candidates = [
        p for p in project_dir.glob("*.jsonl") if not p.name.startswith("agent-")
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda p: p.stat().st_mtime)


def _read_jsonl(path: Path) -> list[dict]:
    entries = []
    for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(entry, dict):
            entries.append(entry)
    return entries


def _extract_summary(entries: list[dict]) -> str:
    for entry in reversed(entries):
        if entry.get("type") == "summary" and entry.get("summary"):
            return entry["summary"]
    # Fall back to the first user message
    for entry in entries:
        content = (entry.get("message") or {}).get("content")
        if entry.get("type") == "user" and isinstance(content, str) and content.strip():
            text = content.strip()
            return text[:120] + "..." if len(text) > 120 else text
    return ""


def _extract_cost(entries: list[dict]) -> float | None:
    total = 0.0
    input_tokens = 0
    output_tokens = 0
    for entry in entries:
        if isinstance(entry.get("costUSD"), (int, float)):
            total += entry["costUSD"]
        elif isinstance(entry.get("estimatedCostUsd"), (int, float)):
            total += entry["estimatedCostUsd"]
        usage = entry.get("usage") or {}
        input_tokens += (
            usage.get("input_tokens", 0)
            + usage.get("cache_read_input_tokens", 0)
            + usage.get("cache_creation_input_tokens", 0)
        )
        output_tokens += usage.get("output_tokens", 0)

    if total == 0 and input_tokens == 0 and output_tokens == 0:
        return None
    if total == 0:
        # Rough estimate at Sonnet-class pricing
        total = input_tokens / 1_000_000 * 3.0 + output_tokens / 1_000_000 * 15.0
    return round(total, 4)


class ClaudeCodeAgent:
    """Launches ``claude`` and reads its activity from the terminal and session logs."""

    def __init__(self, home: Path | None = None) -> None:
        self.home = home

    def get_launch_command(self, config: AgentLaunchConfig) -> str:
        parts = ["claude"]
        if config.permissions == "skip":
            parts.append("--dangerously-skip-permissions")
        if config.model:
            parts.extend(["--model", shlex.quote(config.model)])
        if config.prompt:
            parts.extend(["-p", shlex.quote(config.prompt)])
        return " ".join(parts)

    def get_environment(self, config: AgentLaunchConfig) -> dict[str, str]:
        env = {
            # Unset so the CLI does not think it is nested in another agent
            "CLAUDECODE": "",
            "AO_SESSION_ID": config.session_id,
            "AO_PROJECT_ID": config.project_id,
        }
        if config.issue_id:
            env["AO_ISSUE_ID"] = config.issue_id
        return env

    def detect_activity(self, terminal_output: str) -> ActivityState:
        if not terminal_output.strip():
            return ActivityState.IDLE
        # Blocked is checked before input: error text can contain "permission"
        if ACTIVE_PATTERNS.search(terminal_output):
            return ActivityState.ACTIVE
        if BLOCKED_PATTERNS.search(terminal_output):
            return ActivityState.BLOCKED
        if INPUT_PATTERNS.search(terminal_output):
            return ActivityState.WAITING_INPUT
        if IDLE_PATTERNS.search(terminal_output):
            return ActivityState.IDLE
        return ActivityState.ACTIVE

    async def get_activity_state(
        self, session: Session, ready_threshold_ms: int | None = None
    ) -> ActivityState:
        """A recently written session log means the agent is working.

        An old or missing log cannot tell idle from waiting, so the answer
        is UNKNOWN and the caller reads the terminal instead.
        """
        if session.runtime_handle is None:
            return ActivityState.EXITED
        if not await self.is_process_running(session.runtime_handle):
            return ActivityState.EXITED
        if not session.workspace_path:
            return ActivityState.UNKNOWN

        latest = _latest_session_file(claude_project_dir(session.workspace_path, self.home))
        if latest is None:
            return ActivityState.UNKNOWN
        threshold = ready_threshold_ms or DEFAULT_READY_THRESHOLD_MS
        age_ms = (time.time() - latest.stat().st_mtime) * 1000
        if age_ms < threshold:
            return ActivityState.ACTIVE
        return ActivityState.UNKNOWN

    async def is_process_running(self, handle: RuntimeHandle) -> bool:
        if handle.runtime_name == "tmux":
            return await find_pane_process(handle.id, PROCESS_RE) is not None
        pid = handle.data.get("pid")
        return isinstance(pid, int) and pid > 0 and pid_alive(pid)

    async def get_session_info(self, session: Session) -> AgentInfo | None:
        if not session.workspace_path:
            return None
        latest = _latest_session_file(claude_project_dir(session.workspace_path, self.home))
        if latest is None:
            return None
        try:
            entries = _read_jsonl(latest)
        except OSError:
            logger.debug("Cannot read session log %s", latest, exc_info=True)
            return None
        if not entries:
            return None
        last_type = next((e["type"] for e in reversed(entries) if e.get("type")), "")
        return AgentInfo(
            summary=_extract_summary(entries),
            agent_session_id=latest.stem,
            cost_usd=_extract_cost(entries),
            last_message=last_type,
        )


def create(config: dict | None = None) -> ClaudeCodeAgent:
    config = config or {}
    home = config.get("home")
    return ClaudeCodeAgent(home=Path(home).expanduser() if home else None)
