"""Reaction and notification domain models."""

from __future__ import annotations

import hashlib
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

CI_FAILED = "ci-failed"
CHANGES_REQUESTED = "changes-requested"
BUGBOT_COMMENTS = "bugbot-comments"

REACTION_KEYS: tuple[str, ...] = (CI_FAILED, CHANGES_REQUESTED, BUGBOT_COMMENTS)


class ReactionAction(str, Enum):
    SEND_TO_AGENT = "send-to-agent"
    NOTIFY = "notify"
    SEND_AND_NOTIFY = "send-and-notify"

    @property
    def sends(self) -> bool:
        return self in (ReactionAction.SEND_TO_AGENT, ReactionAction.SEND_AND_NOTIFY)

    @property
    def notifies(self) -> bool:
        return self in (ReactionAction.NOTIFY, ReactionAction.SEND_AND_NOTIFY)


class EventPriority(str, Enum):
    URGENT = "urgent"
    ACTION = "action"
    WARNING = "warning"
    INFO = "info"


def fingerprint(parts: Iterable[str]) -> str:
    """Order-independent short digest of the identifiers behind a trigger."""
    joined = "\n".join(sorted(set(parts)))
    return hashlib.sha256(joined.encode()).hexdigest()[:16]


@dataclass(frozen=True)
class ReactionOccurrence:
    """A reaction key firing for a session, identified by its trigger data."""

    session_id: str
    reaction_key: str
    fingerprint: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.session_id, self.reaction_key)


@dataclass(frozen=True)
class ReactionResult:
    occurrence: ReactionOccurrence
    action: ReactionAction
    success: bool
    message: str = ""
    error: str = ""
    escalated: bool = False


@dataclass(frozen=True)
class NotificationEvent:
    """Message handed to notifier plugins."""

    type: str
    priority: EventPriority
    session_id: str
    project_id: str
    message: str
    data: dict = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "priority": self.priority.value,
            "session_id": self.session_id,
            "project_id": self.project_id,
            "message": self.message,
            "data": dict(self.data),
            "timestamp": self.timestamp.isoformat(),
        }
