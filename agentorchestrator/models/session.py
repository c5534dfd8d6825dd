"""Session domain model."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    WORKING = "working"
    PR_OPEN = "pr_open"
    MERGED = "merged"
    KILLED = "killed"
    CLEANUP = "cleanup"

    @property
    def is_terminal(self) -> bool:
        return self in (
            SessionStatus.MERGED,
            SessionStatus.KILLED,
            SessionStatus.CLEANUP,
        )

    @property
    def is_restorable(self) -> bool:
        return self in (SessionStatus.KILLED, SessionStatus.CLEANUP)

    def can_transition_to(self, target: SessionStatus) -> bool:
        """Whether a lifecycle move from this status to *target* is allowed.

        Statuses only move forward; restoring a terminal session creates a
        new session instead of reviving this one.
        """
        if self == target:
            return True
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.WORKING: frozenset({
        SessionStatus.PR_OPEN,
        SessionStatus.MERGED,
        SessionStatus.KILLED,
        SessionStatus.CLEANUP,
    }),
    SessionStatus.PR_OPEN: frozenset({
        SessionStatus.MERGED,
        SessionStatus.KILLED,
        SessionStatus.CLEANUP,
    }),
    SessionStatus.MERGED: frozenset(),
    SessionStatus.KILLED: frozenset(),
    SessionStatus.CLEANUP: frozenset(),
}


class ActivityState(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    WAITING_INPUT = "waiting_input"
    BLOCKED = "blocked"
    EXITED = "exited"
    # Agent cannot tell; never stored on a Session.
    UNKNOWN = "unknown"


class InvalidTransition(ValueError):
    """Raised when a status change would move a session backwards."""


@dataclass(frozen=True)
class RuntimeHandle:
    """Binding from a session to a concrete runtime instance."""

    id: str
    runtime_name: str
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"id": self.id, "runtime_name": self.runtime_name, "data": dict(self.data)}

    @classmethod
    def from_dict(cls, doc: dict) -> RuntimeHandle:
        return cls(
            id=doc["id"],
            runtime_name=doc.get("runtime_name", ""),
            data=dict(doc.get("data") or {}),
        )


@dataclass(frozen=True)
class PRInfo:
    """Snapshot of a detected pull request."""

    number: int
    url: str
    title: str = ""
    owner: str = ""
    repo: str = ""
    branch: str = ""
    base_branch: str = ""
    is_draft: bool = False

    @property
    def owner_repo(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class AgentInfo:
    """Structured summary an agent plugin can report about its session."""

    summary: str = ""
    agent_session_id: str = ""
    cost_usd: float | None = None
    last_message: str = ""


@dataclass(frozen=True)
class Session:
    """One supervised coding-agent run.

    Instances are immutable snapshots; the ``with_*`` helpers return
    updated copies so concurrent readers never see a half-applied change.
    """

    id: str
    project_id: str
    status: SessionStatus = SessionStatus.WORKING
    activity: ActivityState = ActivityState.ACTIVE
    branch: str = ""
    issue_id: str | None = None
    pr: PRInfo | None = None
    workspace_path: str = ""
    runtime_handle: RuntimeHandle | None = None
    agent_info: AgentInfo | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_now)
    last_activity_at: datetime = field(default_factory=_now)
    restored_from: str | None = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Session must have an id")
        if not self.project_id:
            raise ValueError("Session must have a project_id")

    def with_status(self, status: SessionStatus) -> Session:
        """Return a copy with *status*, refusing backwards moves."""
        if not self.status.can_transition_to(status):
            raise InvalidTransition(
                f"Session {self.id}: cannot move from {self.status.value} to {status.value}"
            )
        if status == self.status:
            return self
        return replace(self, status=status)

    def with_activity(self, activity: ActivityState) -> Session:
        """Return a copy with *activity*; unknown and unchanged values are no-ops."""
        if activity == ActivityState.UNKNOWN or activity == self.activity:
            return self
        return replace(self, activity=activity, last_activity_at=_now())

    def with_pr(self, pr: PRInfo | None) -> Session:
        return replace(self, pr=pr)

    def with_runtime_handle(self, handle: RuntimeHandle | None) -> Session:
        return replace(self, runtime_handle=handle)

    def with_agent_info(self, info: AgentInfo | None) -> Session:
        return replace(self, agent_info=info)

    def with_metadata(self, **updates: str) -> Session:
        """Return a copy with merged metadata; empty values delete keys."""
        merged = dict(self.metadata)
        for key, value in updates.items():
            if value:
                merged[key] = value
            else:
                merged.pop(key, None)
        return replace(self, metadata=merged)

    def touched(self) -> Session:
        """Return a copy with ``last_activity_at`` set to now."""
        return replace(self, last_activity_at=_now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "status": self.status.value,
            "activity": self.activity.value,
            "branch": self.branch,
            "issue_id": self.issue_id,
            "pr": self.pr.url if self.pr else None,
            "workspace_path": self.workspace_path,
            "runtime_handle": self.runtime_handle.to_dict() if self.runtime_handle else None,
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "restored_from": self.restored_from,
        }
