"""Compose context-rich reaction messages from SCM and runtime data.

The builder only reads from plugins. Every plugin call is guarded so a
failure counts as "no data", and when nothing useful is found the
caller's fallback message is returned unchanged.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable
from typing import TypeVar

from agentorchestrator.models.reaction import BUGBOT_COMMENTS, CHANGES_REQUESTED, CI_FAILED
from agentorchestrator.models.scm import (
    AutomatedComment,
    CICheck,
    CheckStatus,
    Review,
    ReviewComment,
)
from agentorchestrator.models.session import PRInfo, Session
from agentorchestrator.plugins.base import SCM, Runtime

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_CHECKS = 4
MAX_COMMENTS = 3
MAX_COMMENT_CHARS = 160
MAX_OUTPUT_LINES = 8
MAX_OUTPUT_CHARS = 320
MAX_MESSAGE_CHARS = 2_400

OUTPUT_CAPTURE_LINES = 80

TRUNCATED_MARKER = "...(truncated)"
MESSAGE_TRUNCATED_SUFFIX = "\n\n...(message truncated)"

_SEVERITY_RANK = {"error": 0, "warning": 1, "info": 2}


def truncate_text(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return value[: max(0, limit - 1)].rstrip() + "…"


def single_line(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def format_location(path: str, line: int | None) -> str:
    if not path:
        return "general"
    return f"{path}:{line}" if line is not None else path


def with_count(total: int, limit: int) -> str:
    return str(total) if total <= limit else f"{limit} of {total}"


def output_snippet(raw: str) -> str | None:
    """Last lines of terminal output, capped and marked when cut."""
    trimmed = raw.strip()
    if not trimmed:
        return None
    lines = trimmed.split("\n")
    tail = "\n".join(lines[-MAX_OUTPUT_LINES:])
    if len(lines) <= MAX_OUTPUT_LINES and len(tail) <= MAX_OUTPUT_CHARS:
        return tail
    keep = max(0, MAX_OUTPUT_CHARS - len(TRUNCATED_MARKER) - 1)
    return f"{tail[:keep].rstrip()}\n{TRUNCATED_MARKER}"


def clamp_message(message: str, fallback: str) -> str:
    if not message.strip():
        return fallback
    if len(message) <= MAX_MESSAGE_CHARS:
        return message
    keep = max(0, MAX_MESSAGE_CHARS - len(MESSAGE_TRUNCATED_SUFFIX))
    return message[:keep].rstrip() + MESSAGE_TRUNCATED_SUFFIX


def _url_suffix(url: str) -> str:
    return f" {truncate_text(url, 120)}" if url else ""


def format_check(check: CICheck) -> str:
    name = truncate_text(single_line(check.name), 80)
    return f"- {name} [{check.status.value}]{_url_suffix(check.url)}"


def format_review_comment(comment: ReviewComment) -> str:
    excerpt = truncate_text(single_line(comment.body), MAX_COMMENT_CHARS)
    location = format_location(comment.path, comment.line)
    return f'- {comment.author} @ {location}: "{excerpt}"{_url_suffix(comment.url)}'


def format_automated_comment(comment: AutomatedComment) -> str:
    excerpt = truncate_text(single_line(comment.body), MAX_COMMENT_CHARS)
    location = format_location(comment.path, comment.line)
    return (
        f'- [{comment.severity}] {comment.bot_name} @ {location}: "{excerpt}"'
        f"{_url_suffix(comment.url)}"
    )


def format_steps(steps: list[str]) -> list[str]:
    return [f"{i}. {step}" for i, step in enumerate(steps, start=1)]


def sort_by_severity(comments: list[AutomatedComment]) -> list[AutomatedComment]:
    """Stable sort: error, then warning, then info, then anything else."""
    return sorted(comments, key=lambda c: _SEVERITY_RANK.get(c.severity, len(_SEVERITY_RANK)))


async def _safe(call: Awaitable[T], fallback: T) -> T:
    try:
        return await call
    except Exception:
        logger.debug("Reaction context lookup failed", exc_info=True)
        return fallback


def _header(label: str, pr: PRInfo) -> str:
    return f"{label} PR #{pr.number}: {truncate_text(single_line(pr.title), 120)}"


def _unresolved(comments: list[ReviewComment]) -> list[ReviewComment]:
    return [c for c in comments if not c.is_resolved]


def _failing(checks: list[CICheck]) -> list[CICheck]:
    return [c for c in checks if c.status == CheckStatus.FAILED]


async def _runtime_snippet(runtime: Runtime | None, session: Session) -> str | None:
    if runtime is None or session.runtime_handle is None:
        return None
    raw = await _safe(runtime.get_output(session.runtime_handle, OUTPUT_CAPTURE_LINES), "")
    return output_snippet(raw or "")


async def _ci_failed(fallback: str, session: Session, scm: SCM, runtime: Runtime | None) -> str:
    pr = session.pr
    checks, comments, snippet = await asyncio.gather(
        _safe(scm.get_ci_checks(pr), []),
        _safe(scm.get_pending_comments(pr), []),
        _runtime_snippet(runtime, session),
    )
    failing = _failing(checks or [])
    comments = _unresolved(comments or [])
    shown_checks = failing[:MAX_CHECKS]
    shown_comments = comments[:MAX_COMMENTS]
    if not shown_checks and not shown_comments:
        return fallback

    lines = [_header("CI failed for", pr), ""]
    if shown_checks:
        lines.append(f"Failing checks ({with_count(len(failing), MAX_CHECKS)}):")
        lines.extend(format_check(c) for c in shown_checks)
        lines.append("")
    if shown_comments:
        lines.append(f"Top unresolved review comments ({with_count(len(comments), MAX_COMMENTS)}):")
        lines.extend(format_review_comment(c) for c in shown_comments)
        lines.append("")
    if snippet:
        lines.append("Recent terminal output (truncated):")
        lines.append(snippet)
        lines.append("")

    steps = []
    if shown_checks:
        steps.append("Fix failing CI checks in the order listed above.")
    if shown_comments:
        steps.append("After CI is green, address unresolved review comments and push follow-up commits.")
        steps.append("Reply on each review thread once fixes are pushed.")
    steps.append("Run `gh pr checks` to confirm CI is passing.")
    lines.append("Recommended fix order:")
    lines.extend(format_steps(steps))

    return clamp_message("\n".join(lines), fallback)


def _review_bodies(reviews: list[Review]) -> list[ReviewComment]:
    """Top-level "request changes" review bodies, shown as general comments."""
    return [
        ReviewComment(id=f"review-{i}", author=r.author, body=r.body)
        for i, r in enumerate(reviews)
        if r.state == "changes_requested" and r.body.strip()
    ]


async def _changes_requested(fallback: str, session: Session, scm: SCM) -> str:
    pr = session.pr
    comments, checks, reviews = await asyncio.gather(
        _safe(scm.get_pending_comments(pr), []),
        _safe(scm.get_ci_checks(pr), []),
        _safe(scm.get_reviews(pr), []),
    )
    comments = _unresolved(comments or []) + _review_bodies(reviews or [])
    failing = _failing(checks or [])
    shown_comments = comments[:MAX_COMMENTS]
    shown_checks = failing[:MAX_CHECKS]
    if not shown_comments and not shown_checks:
        return fallback

    lines = [_header("Changes requested on", pr), ""]
    if shown_checks:
        lines.append(f"Still-failing CI checks ({with_count(len(failing), MAX_CHECKS)}):")
        lines.extend(format_check(c) for c in shown_checks)
        lines.append("")
    if shown_comments:
        lines.append(f"Unresolved review comments ({with_count(len(comments), MAX_COMMENTS)}):")
        lines.extend(format_review_comment(c) for c in shown_comments)
        lines.append("")

    steps = []
    if shown_checks:
        steps.append("Fix failing CI checks first so review validation can proceed cleanly.")
    if shown_comments:
        steps.append("Address unresolved review comments in the order listed above.")
    steps.append("Push the fixes and reply on each updated review thread.")
    steps.append("Run `gh pr checks` to verify all checks are green.")
    lines.append("Recommended fix order:")
    lines.extend(format_steps(steps))

    return clamp_message("\n".join(lines), fallback)


async def _bugbot_comments(fallback: str, session: Session, scm: SCM) -> str:
    pr = session.pr
    comments = await _safe(scm.get_automated_comments(pr), [])
    if not comments:
        return fallback

    ordered = sort_by_severity(comments)
    lines = [
        _header("Automated review feedback on", pr),
        "",
        f"Top bot findings ({with_count(len(ordered), MAX_COMMENTS)}):",
        *(format_automated_comment(c) for c in ordered[:MAX_COMMENTS]),
        "",
        "Recommended fix order:",
    ]
    severities = {c.severity for c in ordered}
    steps = []
    if "error" in severities:
        steps.append("Fix error-severity findings first.")
    if "warning" in severities:
        steps.append("Then fix warning-level findings.")
    steps.append("Re-run tests/checks and push updates.")
    lines.extend(format_steps(steps))

    return clamp_message("\n".join(lines), fallback)


async def build_reaction_message(
    reaction_key: str,
    fallback_message: str,
    session: Session,
    scm: SCM | None,
    runtime: Runtime | None,
) -> str:
    """Return the message to deliver for *reaction_key*.

    Returns ``fallback_message`` unchanged when there is no PR, no SCM,
    an unrecognized key, or no contextual data; an empty fallback yields
    an empty string.
    """
    if not fallback_message:
        return ""
    if session.pr is None or scm is None:
        return fallback_message

    if reaction_key == CI_FAILED:
        return await _ci_failed(fallback_message, session, scm, runtime)
    if reaction_key == CHANGES_REQUESTED:
        return await _changes_requested(fallback_message, session, scm)
    if reaction_key == BUGBOT_COMMENTS:
        return await _bugbot_comments(fallback_message, session, scm)
    return fallback_message
