"""Configuration loading: TOML file + environment variable overlay."""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path

from agentorchestrator.errors import ConfigurationError
from agentorchestrator.models.reaction import (
    BUGBOT_COMMENTS,
    CHANGES_REQUESTED,
    CI_FAILED,
    EventPriority,
    ReactionAction,
)

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "agentorchestrator"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"


DEFAULT_CONFIG_TOML = """\
[general]
worktree_dir = "~/.agentorchestrator/worktrees"

[defaults]
runtime = "tmux"
agent = "claude-code"
workspace = "worktree"
terminal = "web"
notifiers = ["log"]

[lifecycle]
poll_interval = 30
tick_timeout = 120
max_concurrency = 8

[notifiers.log]
plugin = "log"

# [notifiers.team-hook]
# plugin = "webhook"
# url = "https://hooks.example.com/agentorchestrator"
# token_env = "AO_WEBHOOK_TOKEN"

[notification_routing]
urgent = ["log"]
action = ["log"]
warning = ["log"]
info = ["log"]

# [projects.my-app]
# repo = "acme/my-app"
# path = "~/code/my-app"
# default_branch = "main"
# scm = "github"
# tracker = "github"
#
# [projects.my-app.reactions.bugbot-comments]
# action = "notify"
# retries = 1
# escalate_after = "1h"
"""


@dataclass
class ReactionConfig:
    """How one reaction key is handled.

    ``escalate_after`` is either an attempt count (tightening ``retries``)
    or a duration such as ``"30m"`` measured from the first failed attempt.
    """

    auto: bool = True
    action: ReactionAction = ReactionAction.SEND_TO_AGENT
    message: str = ""
    priority: EventPriority = EventPriority.ACTION
    retries: int = 2
    escalate_after: int | str | None = None

    @property
    def attempt_limit(self) -> int:
        if isinstance(self.escalate_after, int):
            return min(self.retries, self.escalate_after)
        return self.retries

    @property
    def escalation_delay(self) -> float | None:
        """Seconds a failing occurrence may stay pending before escalating."""
        if isinstance(self.escalate_after, str):
            return parse_duration(self.escalate_after)
        return None


_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600}


def parse_duration(value: str) -> float | None:
    """Parse ``<n>s``, ``<n>m`` or ``<n>h`` into seconds."""
    match = re.fullmatch(r"(\d+)([smh])", value.strip())
    if not match:
        return None
    return int(match.group(1)) * _DURATION_UNITS[match.group(2)]


DEFAULT_REACTIONS: dict[str, ReactionConfig] = {
    CI_FAILED: ReactionConfig(
        message=(
            "CI is failing on your PR. Run `gh pr checks` to see the failures, "
            "fix them, and push."
        ),
        escalate_after=2,
    ),
    CHANGES_REQUESTED: ReactionConfig(
        message=(
            "There are review comments on your PR. Check with `gh pr view --comments` "
            "and `gh api` for inline comments. Address each one, push fixes, and reply."
        ),
        escalate_after="30m",
    ),
    BUGBOT_COMMENTS: ReactionConfig(
        message="Automated review comments found on your PR. Fix the issues flagged by the bot.",
        escalate_after="30m",
    ),
}


@dataclass
class DefaultsConfig:
    runtime: str = "tmux"
    agent: str = "claude-code"
    workspace: str = "worktree"
    terminal: str = "web"
    notifiers: list[str] = field(default_factory=lambda: ["log"])


@dataclass
class LifecycleConfig:
    poll_interval: float = 30.0
    tick_timeout: float = 120.0
    max_concurrency: int = 8


@dataclass
class NotifierConfig:
    """A named notifier instance: which plugin backs it and its options."""

    plugin: str
    options: dict = field(default_factory=dict)


@dataclass
class ProjectConfig:
    id: str
    repo: str = ""
    path: str = ""
    default_branch: str = "main"
    session_prefix: str = ""
    runtime: str = ""
    agent: str = ""
    workspace: str = ""
    scm: str = ""
    tracker: str = ""
    agent_config: dict = field(default_factory=dict)
    reactions: dict[str, ReactionConfig] = field(default_factory=dict)

    @property
    def resolved_path(self) -> Path:
        return Path(self.path).expanduser()

    @property
    def prefix(self) -> str:
        return self.session_prefix or _sanitize_prefix(self.id)


@dataclass
class AppConfig:
    worktree_dir: str = "~/.agentorchestrator/worktrees"
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    projects: dict[str, ProjectConfig] = field(default_factory=dict)
    notifiers: dict[str, NotifierConfig] = field(default_factory=dict)
    notification_routing: dict[str, list[str]] = field(default_factory=dict)
    reactions: dict[str, ReactionConfig] = field(
        default_factory=lambda: {k: replace(v) for k, v in DEFAULT_REACTIONS.items()}
    )
    plugin_options: dict[str, dict] = field(default_factory=dict)
    config_path: Path = DEFAULT_CONFIG_PATH

    @property
    def resolved_worktree_dir(self) -> Path:
        return Path(self.worktree_dir).expanduser()

    def project(self, project_id: str) -> ProjectConfig:
        project = self.projects.get(project_id)
        if project is None:
            raise ConfigurationError(f"Unknown project: {project_id}")
        return project

    def runtime_for(self, project: ProjectConfig) -> str:
        return project.runtime or self.defaults.runtime

    def agent_for(self, project: ProjectConfig) -> str:
        return project.agent or self.defaults.agent

    def workspace_for(self, project: ProjectConfig) -> str:
        return project.workspace or self.defaults.workspace

    def reaction_for(self, project_id: str, reaction_key: str) -> ReactionConfig | None:
        """Project-level reaction settings win over the global ones."""
        project = self.projects.get(project_id)
        if project and reaction_key in project.reactions:
            return project.reactions[reaction_key]
        return self.reactions.get(reaction_key)

    def notifiers_for(self, priority: EventPriority) -> list[str]:
        routed = self.notification_routing.get(priority.value)
        if routed is not None:
            return list(routed)
        return list(self.defaults.notifiers)


def _sanitize_prefix(project_id: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]+", "-", project_id).strip("-") or "session"


def _env_overlay(config: AppConfig) -> None:
    """Override config values with environment variables where applicable."""
    if interval := os.environ.get("AO_POLL_INTERVAL"):
        try:
            config.lifecycle.poll_interval = float(interval)
        except ValueError as e:
            raise ConfigurationError(f"AO_POLL_INTERVAL is not a number: {interval!r}") from e

    # Resolve notifier secrets from env vars
    for notifier in config.notifiers.values():
        token_env = notifier.options.get("token_env")
        if token_env:
            notifier.options["token"] = os.environ.get(token_env, "")


def _parse_reaction(key: str, data: dict, base: ReactionConfig | None) -> ReactionConfig:
    base = base or ReactionConfig()
    try:
        action = ReactionAction(data["action"]) if "action" in data else base.action
        priority = EventPriority(data["priority"]) if "priority" in data else base.priority
    except ValueError as e:
        raise ConfigurationError(f"Invalid reaction config for '{key}': {e}") from e

    retries = data.get("retries", base.retries)
    if isinstance(retries, bool) or not isinstance(retries, int) or retries < 0:
        raise ConfigurationError(f"Invalid reaction config for '{key}': retries must be >= 0")
    escalate_after = data.get("escalate_after", base.escalate_after)
    if isinstance(escalate_after, bool) or (
        isinstance(escalate_after, int) and escalate_after < 0
    ):
        raise ConfigurationError(
            f"Invalid reaction config for '{key}': escalate_after must be >= 0"
        )
    if isinstance(escalate_after, str) and parse_duration(escalate_after) is None:
        raise ConfigurationError(
            f"Invalid reaction config for '{key}': bad escalate_after duration {escalate_after!r}"
        )
    if escalate_after is not None and not isinstance(escalate_after, (int, str)):
        raise ConfigurationError(
            f"Invalid reaction config for '{key}': escalate_after must be a count or duration"
        )

    return ReactionConfig(
        auto=data.get("auto", base.auto),
        action=action,
        message=data.get("message", base.message),
        priority=priority,
        retries=retries,
        escalate_after=escalate_after,
    )


def _parse_reactions(
    raw: dict, base: dict[str, ReactionConfig]
) -> dict[str, ReactionConfig]:
    merged = {k: replace(v) for k, v in base.items()}
    for key, data in raw.items():
        merged[key] = _parse_reaction(key, data, base.get(key))
    return merged


def _parse_project(project_id: str, data: dict, reactions: dict[str, ReactionConfig]) -> ProjectConfig:
    project_reactions = {
        key: _parse_reaction(key, value, reactions.get(key))
        for key, value in data.get("reactions", {}).items()
    }
    return ProjectConfig(
        id=project_id,
        repo=data.get("repo", ""),
        path=data.get("path", ""),
        default_branch=data.get("default_branch", "main"),
        session_prefix=data.get("session_prefix", ""),
        runtime=data.get("runtime", ""),
        agent=data.get("agent", ""),
        workspace=data.get("workspace", ""),
        scm=data.get("scm", ""),
        tracker=data.get("tracker", ""),
        agent_config=dict(data.get("agent_config", {})),
        reactions=project_reactions,
    )


def _parse_notifier(name: str, data: dict) -> NotifierConfig:
    options = {k: v for k, v in data.items() if k != "plugin"}
    return NotifierConfig(plugin=data.get("plugin", name), options=options)


def resolve_config_path(config_path: Path | None = None) -> Path:
    if config_path:
        return config_path
    if env_path := os.environ.get("AO_CONFIG"):
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration from TOML file with env var overlay."""
    path = resolve_config_path(config_path)

    try:
        if path.exists():
            with open(path, "rb") as f:
                raw = tomllib.load(f)
        else:
            raw = tomllib.loads(DEFAULT_CONFIG_TOML)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Cannot parse {path}: {e}") from e

    general = raw.get("general", {})
    defaults_raw = raw.get("defaults", {})
    lifecycle_raw = raw.get("lifecycle", {})

    reactions = _parse_reactions(raw.get("reactions", {}), DEFAULT_REACTIONS)

    config = AppConfig(
        worktree_dir=general.get("worktree_dir", "~/.agentorchestrator/worktrees"),
        defaults=DefaultsConfig(
            runtime=defaults_raw.get("runtime", "tmux"),
            agent=defaults_raw.get("agent", "claude-code"),
            workspace=defaults_raw.get("workspace", "worktree"),
            terminal=defaults_raw.get("terminal", "web"),
            notifiers=list(defaults_raw.get("notifiers", ["log"])),
        ),
        lifecycle=LifecycleConfig(
            poll_interval=float(lifecycle_raw.get("poll_interval", 30)),
            tick_timeout=float(lifecycle_raw.get("tick_timeout", 120)),
            max_concurrency=int(lifecycle_raw.get("max_concurrency", 8)),
        ),
        projects={
            pid: _parse_project(pid, data, reactions)
            for pid, data in raw.get("projects", {}).items()
        },
        notifiers={
            name: _parse_notifier(name, data)
            for name, data in raw.get("notifiers", {}).items()
        },
        notification_routing={
            priority: list(names)
            for priority, names in raw.get("notification_routing", {}).items()
        },
        reactions=reactions,
        plugin_options={name: dict(data) for name, data in raw.get("plugins", {}).items()},
        config_path=path,
    )

    if config.lifecycle.max_concurrency < 1:
        raise ConfigurationError("lifecycle.max_concurrency must be at least 1")

    _env_overlay(config)
    return config


def init_config(config_path: Path | None = None) -> Path:
    """Create default config file."""
    path = resolve_config_path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_TOML)
    return path
