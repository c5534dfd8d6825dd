"""Source-control domain models returned by SCM plugins."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class PRState(str, Enum):
    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"


class CIStatus(str, Enum):
    PENDING = "pending"
    PASSING = "passing"
    FAILING = "failing"
    NONE = "none"


class CheckStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ReviewDecision(str, Enum):
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    PENDING = "pending"
    NONE = "none"


class MergeMethod(str, Enum):
    MERGE = "merge"
    SQUASH = "squash"
    REBASE = "rebase"


@dataclass(frozen=True)
class CICheck:
    name: str
    status: CheckStatus
    url: str = ""
    conclusion: str = ""


@dataclass(frozen=True)
class Review:
    author: str
    state: str
    body: str = ""
    submitted_at: datetime | None = None


@dataclass(frozen=True)
class ReviewComment:
    """An inline or general review comment left by a human reviewer."""

    id: str
    author: str
    body: str
    path: str = ""
    line: int | None = None
    is_resolved: bool = False
    created_at: datetime | None = None
    url: str = ""


@dataclass(frozen=True)
class AutomatedComment:
    """A finding posted by a review bot."""

    id: str
    bot_name: str
    body: str
    path: str = ""
    line: int | None = None
    severity: str = "info"  # error, warning, info
    created_at: datetime | None = None
    url: str = ""


@dataclass(frozen=True)
class MergeReadiness:
    mergeable: bool
    ci_passing: bool = False
    approved: bool = False
    no_conflicts: bool = True
    blockers: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Issue:
    """Tracker issue summary."""

    id: str
    title: str
    url: str = ""
    state: str = "open"
    description: str = ""
    labels: tuple[str, ...] = ()
