"""GitHub Issues tracker plugin backed by the ``gh`` CLI."""

from __future__ import annotations

import json
import logging
import re

from agentorchestrator.config import ProjectConfig
from agentorchestrator.models.plugin import PluginManifest, PluginSlot
from agentorchestrator.models.scm import Issue
from agentorchestrator.plugins.shell import check_output

logger = logging.getLogger(__name__)

manifest = PluginManifest(
    name="github",
    slot=PluginSlot.TRACKER,
    description="Tracker plugin: GitHub Issues via gh",
)


def _issue_number(issue_id: str) -> str:
    return issue_id.lstrip("#")


class GitHubTracker:
    def __init__(self, gh: str = "gh", branch_prefix: str = "feat/issue-") -> None:
        self.gh = gh
        self.branch_prefix = branch_prefix

    async def get_issue(self, issue_id: str, project: ProjectConfig) -> Issue:
        out = await check_output(
            self.gh, "issue", "view", _issue_number(issue_id), "--repo", project.repo,
            "--json", "number,title,url,state,body,labels",
        )
        doc = json.loads(out)
        return Issue(
            id=str(doc.get("number", issue_id)),
            title=doc.get("title", ""),
            url=doc.get("url", ""),
            state=doc.get("state", "OPEN").lower(),
            description=doc.get("body") or "",
            labels=tuple(label.get("name", "") for label in doc.get("labels", [])),
        )

    async def is_completed(self, issue_id: str, project: ProjectConfig) -> bool:
        issue = await self.get_issue(issue_id, project)
        return issue.state == "closed"

    def issue_url(self, issue_id: str, project: ProjectConfig) -> str:
        return f"https://github.com/{project.repo}/issues/{_issue_number(issue_id)}"

    def branch_name(self, issue_id: str, project: ProjectConfig) -> str:
        slug = re.sub(r"[^a-zA-Z0-9_-]+", "-", _issue_number(issue_id)).strip("-")
        return f"{self.branch_prefix}{slug}"


def create(config: dict | None = None) -> GitHubTracker:
    config = config or {}
    return GitHubTracker(
        gh=config.get("gh", "gh"),
        branch_prefix=config.get("branch_prefix", "feat/issue-"),
    )
