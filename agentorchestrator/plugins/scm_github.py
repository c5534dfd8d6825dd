"""GitHub SCM plugin backed by the ``gh`` CLI."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime

from agentorchestrator.config import ProjectConfig
from agentorchestrator.models.plugin import PluginManifest, PluginSlot
from agentorchestrator.models.scm import (
    AutomatedComment,
    CICheck,
    CheckStatus,
    CIStatus,
    MergeMethod,
    MergeReadiness,
    PRState,
    Review,
    ReviewComment,
    ReviewDecision,
)
from agentorchestrator.models.session import PRInfo, Session
from agentorchestrator.plugins.shell import CommandError, check_output, run_command

logger = logging.getLogger(__name__)

manifest = PluginManifest(
    name="github",
    slot=PluginSlot.SCM,
    description="SCM plugin: GitHub pull requests, checks and reviews via gh",
)

# Review bots that do not carry the [bot] suffix on their login
KNOWN_BOTS = frozenset({"copilot-pull-request-reviewer", "coderabbitai", "cursor", "codex"})

_ERROR_HINTS = re.compile(r"\b(critical|error|bug|security|high severity)\b", re.IGNORECASE)
_WARNING_HINTS = re.compile(r"\b(warning|potential|medium severity|consider)\b", re.IGNORECASE)

_REVIEW_THREADS_QUERY = """
query($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    pullRequest(number: $number) {
      reviewThreads(first: 100) {
        nodes {
          isResolved
          comments(first: 1) {
            nodes { id databaseId body path line url createdAt author { login } }
          }
        }
      }
    }
  }
}
"""


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def is_bot(login: str, user_type: str = "") -> bool:
    name = login.lower()
    return user_type == "Bot" or name.endswith("[bot]") or name in KNOWN_BOTS


def infer_severity(body: str) -> str:
    if _ERROR_HINTS.search(body):
        return "error"
    if _WARNING_HINTS.search(body):
        return "warning"
    return "info"


def check_from_gh(doc: dict) -> CICheck:
    """Map one entry of ``gh pr checks --json`` to a CICheck."""
    bucket = (doc.get("bucket") or "").lower()
    state = (doc.get("state") or "").upper()
    if bucket == "pass":
        status = CheckStatus.PASSED
    elif bucket in ("fail", "cancel"):
        status = CheckStatus.FAILED
    elif bucket == "skipping":
        status = CheckStatus.SKIPPED
    elif state == "IN_PROGRESS":
        status = CheckStatus.RUNNING
    else:
        status = CheckStatus.PENDING
    return CICheck(
        name=doc.get("name", ""),
        status=status,
        url=doc.get("link", ""),
        conclusion=state.lower(),
    )


def summarize_checks(checks: list[CICheck]) -> CIStatus:
    statuses = {c.status for c in checks}
    if CheckStatus.FAILED in statuses:
        return CIStatus.FAILING
    if statuses & {CheckStatus.PENDING, CheckStatus.RUNNING}:
        return CIStatus.PENDING
    if CheckStatus.PASSED in statuses:
        return CIStatus.PASSING
    return CIStatus.NONE


_DECISIONS = {
    "APPROVED": ReviewDecision.APPROVED,
    "CHANGES_REQUESTED": ReviewDecision.CHANGES_REQUESTED,
    "REVIEW_REQUIRED": ReviewDecision.PENDING,
}


class GitHubSCM:
    """Talks to GitHub through an authenticated ``gh`` CLI."""

    def __init__(self, gh: str = "gh") -> None:
        self.gh = gh

    async def _json(self, *args: str):
        out = await check_output(self.gh, *args)
        return json.loads(out) if out else None

    async def _pr_view(self, pr: PRInfo, fields: str) -> dict:
        return await self._json(
            "pr", "view", str(pr.number), "--repo", pr.owner_repo, "--json", fields
        ) or {}

    async def detect_pr(self, session: Session, project: ProjectConfig) -> PRInfo | None:
        if not session.branch or "/" not in project.repo:
            return None
        found = await self._json(
            "pr", "list", "--repo", project.repo, "--head", session.branch,
            "--state", "all", "--limit", "1",
            "--json", "number,url,title,headRefName,baseRefName,isDraft",
        )
        if not found:
            return None
        doc = found[0]
        owner, repo = project.repo.split("/", 1)
        return PRInfo(
            number=int(doc["number"]),
            url=doc.get("url", ""),
            title=doc.get("title", ""),
            owner=owner,
            repo=repo,
            branch=doc.get("headRefName", session.branch),
            base_branch=doc.get("baseRefName", project.default_branch),
            is_draft=bool(doc.get("isDraft", False)),
        )

    async def get_pr_state(self, pr: PRInfo) -> PRState:
        state = (await self._pr_view(pr, "state")).get("state", "OPEN")
        return PRState(state.lower())

    async def merge_pr(self, pr: PRInfo, method: MergeMethod = MergeMethod.SQUASH) -> None:
        await check_output(
            self.gh, "pr", "merge", str(pr.number), "--repo", pr.owner_repo,
            f"--{method.value}", "--delete-branch",
        )
        logger.info("Merged PR #%d in %s", pr.number, pr.owner_repo)

    async def close_pr(self, pr: PRInfo) -> None:
        await check_output(self.gh, "pr", "close", str(pr.number), "--repo", pr.owner_repo)
        logger.info("Closed PR #%d in %s", pr.number, pr.owner_repo)

    async def get_ci_checks(self, pr: PRInfo) -> list[CICheck]:
        # gh exits non-zero when checks fail or are pending; the JSON is still valid
        result = await run_command(
            self.gh, "pr", "checks", str(pr.number), "--repo", pr.owner_repo,
            "--json", "name,state,bucket,link",
        )
        if not result.stdout.strip():
            if result.ok or "no checks reported" in result.stderr:
                return []
            raise CommandError(("gh", "pr", "checks"), result.returncode, result.stderr)
        return [check_from_gh(doc) for doc in json.loads(result.stdout)]

    async def get_ci_summary(self, pr: PRInfo) -> CIStatus:
        return summarize_checks(await self.get_ci_checks(pr))

    async def get_reviews(self, pr: PRInfo) -> list[Review]:
        docs = await self._json("api", f"repos/{pr.owner_repo}/pulls/{pr.number}/reviews") or []
        return [
            Review(
                author=(doc.get("user") or {}).get("login", ""),
                state=doc.get("state", "").lower(),
                body=doc.get("body") or "",
                submitted_at=_parse_time(doc.get("submitted_at")),
            )
            for doc in docs
        ]

    async def get_review_decision(self, pr: PRInfo) -> ReviewDecision:
        decision = (await self._pr_view(pr, "reviewDecision")).get("reviewDecision") or ""
        return _DECISIONS.get(decision, ReviewDecision.NONE)

    async def get_pending_comments(self, pr: PRInfo) -> list[ReviewComment]:
        """Unresolved human review threads, represented by their first comment."""
        data = await self._json(
            "api", "graphql",
            "-f", f"query={_REVIEW_THREADS_QUERY}",
            "-F", f"owner={pr.owner}",
            "-F", f"name={pr.repo}",
            "-F", f"number={pr.number}",
        ) or {}
        threads = (
            data.get("data", {}).get("repository", {})
            .get("pullRequest", {}).get("reviewThreads", {}).get("nodes", [])
        )
        comments = []
        for thread in threads:
            if thread.get("isResolved"):
                continue
            nodes = thread.get("comments", {}).get("nodes", [])
            if not nodes:
                continue
            doc = nodes[0]
            author = (doc.get("author") or {}).get("login", "")
            if is_bot(author):
                continue
            comments.append(ReviewComment(
                id=str(doc.get("databaseId") or doc.get("id", "")),
                author=author,
                body=doc.get("body", ""),
                path=doc.get("path") or "",
                line=doc.get("line"),
                is_resolved=False,
                created_at=_parse_time(doc.get("createdAt")),
                url=doc.get("url", ""),
            ))
        return comments

    async def get_automated_comments(self, pr: PRInfo) -> list[AutomatedComment]:
        docs = await self._json(
            "api", f"repos/{pr.owner_repo}/pulls/{pr.number}/comments?per_page=100"
        ) or []
        found = []
        for doc in docs:
            user = doc.get("user") or {}
            login = user.get("login", "")
            if not is_bot(login, user.get("type", "")):
                continue
            body = doc.get("body") or ""
            found.append(AutomatedComment(
                id=str(doc.get("id", "")),
                bot_name=login,
                body=body,
                path=doc.get("path") or "",
                line=doc.get("line") or doc.get("original_line"),
                severity=infer_severity(body),
                created_at=_parse_time(doc.get("created_at")),
                url=doc.get("html_url", ""),
            ))
        return found

    async def get_mergeability(self, pr: PRInfo) -> MergeReadiness:
        view = await self._pr_view(pr, "mergeable,reviewDecision,isDraft")
        ci = await self.get_ci_summary(pr)
        approved = view.get("reviewDecision") == "APPROVED"
        no_conflicts = view.get("mergeable") != "CONFLICTING"
        ci_passing = ci in (CIStatus.PASSING, CIStatus.NONE)

        blockers = []
        if not ci_passing:
            blockers.append(f"CI is {ci.value}")
        if not approved:
            blockers.append("Not approved")
        if not no_conflicts:
            blockers.append("Merge conflicts")
        if view.get("isDraft"):
            blockers.append("PR is a draft")
        return MergeReadiness(
            mergeable=not blockers,
            ci_passing=ci_passing,
            approved=approved,
            no_conflicts=no_conflicts,
            blockers=tuple(blockers),
        )


def create(config: dict | None = None) -> GitHubSCM:
    config = config or {}
    return GitHubSCM(gh=config.get("gh", "gh"))
