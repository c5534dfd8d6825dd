"""Tests for config loading."""

from pathlib import Path

import pytest

from agentorchestrator.config import (
    AppConfig,
    ProjectConfig,
    ReactionConfig,
    init_config,
    load_config,
    resolve_config_path,
)
from agentorchestrator.errors import ConfigurationError
from agentorchestrator.models.reaction import EventPriority, ReactionAction

SAMPLE = """\
[general]
worktree_dir = "~/wt"

[defaults]
notifiers = ["log"]

[lifecycle]
poll_interval = 5
max_concurrency = 2

[projects."my app"]
repo = "acme/my-app"
path = "~/code/my-app"
scm = "github"
tracker = "github"
agent_config = { permissions = "skip", model = "opus" }

[projects."my app".reactions.bugbot-comments]
action = "notify"
priority = "info"

[reactions.ci-failed]
message = "Fix CI please"

[notifiers.team]
plugin = "webhook"
url = "https://hooks.example.com/x"
token_env = "TEST_AO_TOKEN"

[notification_routing]
urgent = ["team", "log"]

[plugins.tmux]
enter_delay = 0.1
"""


def write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(text)
    return path


class TestConfig:
    def test_load_defaults(self):
        """Loading with no file should return defaults."""
        config = load_config(Path("/nonexistent/config.toml"))
        assert config.defaults.runtime == "tmux"
        assert config.defaults.agent == "claude-code"
        assert config.defaults.workspace == "worktree"
        assert config.lifecycle.poll_interval == 30
        assert config.lifecycle.tick_timeout == 120
        assert config.lifecycle.max_concurrency == 8
        assert config.projects == {}
        assert set(config.reactions) == {"ci-failed", "changes-requested", "bugbot-comments"}

    def test_resolved_worktree_dir(self):
        config = AppConfig(worktree_dir="~/test-worktrees")
        assert str(config.resolved_worktree_dir).startswith("/")
        assert "~" not in str(config.resolved_worktree_dir)

    def test_init_config(self, tmp_path):
        path = tmp_path / "nested" / "config.toml"
        result = init_config(path)
        assert result == path
        assert path.exists()
        # Should be loadable
        config = load_config(path)
        assert config.notifiers["log"].plugin == "log"
        assert config.notification_routing["urgent"] == ["log"]

    def test_load_sample(self, tmp_path, monkeypatch):
        monkeypatch.delenv("AO_POLL_INTERVAL", raising=False)
        monkeypatch.setenv("TEST_AO_TOKEN", "s3cret")
        config = load_config(write(tmp_path, SAMPLE))

        assert config.lifecycle.poll_interval == 5.0
        assert config.lifecycle.max_concurrency == 2
        project = config.project("my app")
        assert project.repo == "acme/my-app"
        assert project.prefix == "my-app"
        assert project.agent_config == {"permissions": "skip", "model": "opus"}
        assert config.notifiers["team"].plugin == "webhook"
        assert config.notifiers["team"].options["token"] == "s3cret"
        assert config.plugin_options["tmux"] == {"enter_delay": 0.1}

    def test_reaction_overrides(self, tmp_path):
        config = load_config(write(tmp_path, SAMPLE))
        ci = config.reaction_for("my app", "ci-failed")
        assert ci.message == "Fix CI please"
        assert ci.action == ReactionAction.SEND_TO_AGENT

        bugbot = config.reaction_for("my app", "bugbot-comments")
        assert bugbot.action == ReactionAction.NOTIFY
        assert bugbot.priority == EventPriority.INFO
        # The project override keeps the default message
        assert "bot" in bugbot.message

        assert config.reaction_for("other", "bugbot-comments").action == ReactionAction.SEND_TO_AGENT
        assert config.reaction_for("my app", "unknown") is None

    def test_notifier_routing_falls_back_to_defaults(self, tmp_path):
        config = load_config(write(tmp_path, SAMPLE))
        assert config.notifiers_for(EventPriority.URGENT) == ["team", "log"]
        assert config.notifiers_for(EventPriority.INFO) == ["log"]

    def test_env_poll_interval(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AO_POLL_INTERVAL", "2.5")
        config = load_config(write(tmp_path, SAMPLE))
        assert config.lifecycle.poll_interval == 2.5

    def test_env_poll_interval_invalid(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AO_POLL_INTERVAL", "soon")
        with pytest.raises(ConfigurationError, match="AO_POLL_INTERVAL"):
            load_config(write(tmp_path, SAMPLE))

    def test_invalid_toml(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot parse"):
            load_config(write(tmp_path, "[general\n"))

    def test_invalid_reaction_action(self, tmp_path):
        with pytest.raises(ConfigurationError, match="ci-failed"):
            load_config(write(tmp_path, '[reactions.ci-failed]\naction = "explode"\n'))

    def test_escalation_defaults(self):
        config = AppConfig()
        assert config.reactions["ci-failed"].attempt_limit == 2
        assert config.reactions["ci-failed"].escalation_delay is None
        assert config.reactions["changes-requested"].escalation_delay == 1800
        assert config.reactions["bugbot-comments"].attempt_limit == 2

    def test_escalation_overrides(self, tmp_path):
        config = load_config(write(
            tmp_path, '[reactions.ci-failed]\nretries = 4\nescalate_after = "2h"\n'
        ))
        ci = config.reactions["ci-failed"]
        assert ci.retries == 4
        assert ci.attempt_limit == 4
        assert ci.escalation_delay == 7200

    def test_negative_retries(self, tmp_path):
        with pytest.raises(ConfigurationError, match="retries"):
            load_config(write(tmp_path, "[reactions.ci-failed]\nretries = -1\n"))

    def test_bad_escalation_duration(self, tmp_path):
        with pytest.raises(ConfigurationError, match="duration"):
            load_config(write(tmp_path, '[reactions.ci-failed]\nescalate_after = "soon"\n'))

    def test_fractional_escalation_count(self, tmp_path):
        with pytest.raises(ConfigurationError, match="escalate_after"):
            load_config(write(tmp_path, "[reactions.ci-failed]\nescalate_after = 1.5\n"))

    def test_invalid_concurrency(self, tmp_path):
        with pytest.raises(ConfigurationError, match="max_concurrency"):
            load_config(write(tmp_path, "[lifecycle]\nmax_concurrency = 0\n"))

    def test_unknown_project(self):
        with pytest.raises(ConfigurationError, match="Unknown project"):
            AppConfig().project("nope")

    def test_resolve_config_path_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AO_CONFIG", str(tmp_path / "x.toml"))
        assert resolve_config_path() == tmp_path / "x.toml"
        assert resolve_config_path(tmp_path / "y.toml") == tmp_path / "y.toml"


class TestProjectConfig:
    def test_plugin_resolution_prefers_project(self):
        config = AppConfig(projects={"p": ProjectConfig(id="p", runtime="other")})
        project = config.project("p")
        assert config.runtime_for(project) == "other"
        assert config.agent_for(project) == "claude-code"
        assert config.workspace_for(project) == "worktree"

    def test_session_prefix_explicit(self):
        assert ProjectConfig(id="p", session_prefix="xy").prefix == "xy"

    def test_default_reactions_are_copies(self):
        a, b = AppConfig(), AppConfig()
        a.reactions["ci-failed"].auto = False
        assert b.reactions["ci-failed"].auto is True
        assert isinstance(b.reactions["ci-failed"], ReactionConfig)
