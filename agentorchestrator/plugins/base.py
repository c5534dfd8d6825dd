"""Capability protocols implemented by plugins.

Every call that crosses a process or network boundary is async. Agent
command/environment construction and text classification stay sync.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from agentorchestrator.models.scm import (
    AutomatedComment,
    CICheck,
    CIStatus,
    Issue,
    MergeMethod,
    MergeReadiness,
    PRState,
    Review,
    ReviewComment,
    ReviewDecision,
)
from agentorchestrator.models.session import (
    ActivityState,
    AgentInfo,
    PRInfo,
    RuntimeHandle,
    Session,
)

if TYPE_CHECKING:
    from agentorchestrator.config import ProjectConfig
    from agentorchestrator.models.reaction import NotificationEvent


@dataclass(frozen=True)
class RuntimeCreateConfig:
    session_id: str
    workspace_path: str
    launch_command: str
    environment: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AgentLaunchConfig:
    session_id: str
    project_id: str
    workspace_path: str = ""
    issue_id: str | None = None
    prompt: str = ""
    permissions: str = "default"  # "skip" bypasses permission prompts
    model: str = ""
    extra: dict = field(default_factory=dict)


@dataclass(frozen=True)
class WorkspaceCreateConfig:
    project_id: str
    session_id: str
    branch: str
    repo_path: str
    default_branch: str = "main"


@dataclass(frozen=True)
class WorkspaceInfo:
    path: str
    branch: str
    session_id: str
    project_id: str


@runtime_checkable
class Runtime(Protocol):
    """Hosts the agent process (tmux session, container, ...)."""

    async def create(self, config: RuntimeCreateConfig) -> RuntimeHandle:
        ...

    async def destroy(self, handle: RuntimeHandle) -> None:
        ...

    async def send_message(self, handle: RuntimeHandle, message: str) -> None:
        ...

    async def get_output(self, handle: RuntimeHandle, lines: int = 50) -> str:
        ...

    async def is_alive(self, handle: RuntimeHandle) -> bool:
        ...


@runtime_checkable
class Agent(Protocol):
    """Knows how to launch and observe one coding-agent CLI."""

    def get_launch_command(self, config: AgentLaunchConfig) -> str:
        ...

    def get_environment(self, config: AgentLaunchConfig) -> dict[str, str]:
        ...

    def detect_activity(self, terminal_output: str) -> ActivityState:
        ...

    async def get_activity_state(
        self, session: Session, ready_threshold_ms: int | None = None
    ) -> ActivityState:
        """Return ``ActivityState.UNKNOWN`` when per-session state cannot be told."""
        ...

    async def is_process_running(self, handle: RuntimeHandle) -> bool:
        ...

    async def get_session_info(self, session: Session) -> AgentInfo | None:
        ...


@runtime_checkable
class SCM(Protocol):
    """Source-control host: pull requests, CI and reviews."""

    async def detect_pr(self, session: Session, project: ProjectConfig) -> PRInfo | None:
        ...

    async def get_pr_state(self, pr: PRInfo) -> PRState:
        ...

    async def merge_pr(self, pr: PRInfo, method: MergeMethod = MergeMethod.SQUASH) -> None:
        ...

    async def close_pr(self, pr: PRInfo) -> None:
        ...

    async def get_ci_checks(self, pr: PRInfo) -> list[CICheck]:
        ...

    async def get_ci_summary(self, pr: PRInfo) -> CIStatus:
        ...

    async def get_reviews(self, pr: PRInfo) -> list[Review]:
        ...

    async def get_review_decision(self, pr: PRInfo) -> ReviewDecision:
        ...

    async def get_pending_comments(self, pr: PRInfo) -> list[ReviewComment]:
        ...

    async def get_automated_comments(self, pr: PRInfo) -> list[AutomatedComment]:
        ...

    async def get_mergeability(self, pr: PRInfo) -> MergeReadiness:
        ...


@runtime_checkable
class Tracker(Protocol):
    """Issue tracker."""

    async def get_issue(self, issue_id: str, project: ProjectConfig) -> Issue:
        ...

    async def is_completed(self, issue_id: str, project: ProjectConfig) -> bool:
        ...

    def issue_url(self, issue_id: str, project: ProjectConfig) -> str:
        ...

    def branch_name(self, issue_id: str, project: ProjectConfig) -> str:
        ...


@runtime_checkable
class Workspace(Protocol):
    """Materializes an isolated working directory per session."""

    async def create(self, config: WorkspaceCreateConfig) -> WorkspaceInfo:
        ...

    async def destroy(self, workspace_path: str) -> None:
        ...

    async def exists(self, workspace_path: str) -> bool:
        ...


@runtime_checkable
class Terminal(Protocol):
    """Human-facing view onto sessions."""

    async def open_session(self, session: Session) -> None:
        ...

    async def open_all(self, sessions: list[Session]) -> None:
        ...

    async def is_session_open(self, session: Session) -> bool:
        ...


@runtime_checkable
class Notifier(Protocol):
    async def notify(self, event: NotificationEvent) -> None:
        ...
