"""Plugin registry: maps (slot, name) to live plugin instances."""

from __future__ import annotations

import builtins
import logging
from collections.abc import Iterable
from typing import Any

from agentorchestrator.config import AppConfig
from agentorchestrator.errors import ConfigurationError
from agentorchestrator.models.plugin import PluginManifest, PluginModule, PluginSlot
from agentorchestrator.plugins import (
    agent_claude_code,
    agent_opencode,
    notifier_log,
    notifier_webhook,
    runtime_tmux,
    scm_github,
    terminal_web,
    tracker_github,
    workspace_worktree,
)

logger = logging.getLogger(__name__)

BUILTIN_MODULES: tuple[PluginModule, ...] = (
    runtime_tmux,
    agent_claude_code,
    agent_opencode,
    workspace_worktree,
    scm_github,
    tracker_github,
    notifier_webhook,
    notifier_log,
    terminal_web,
)


class PluginRegistry:
    """Holds one instance per (slot, name).

    Construct one per application; there is no module-level registry.
    Extra *modules* extend the builtin catalog consulted by
    :meth:`load_from_config`.
    """

    def __init__(self, modules: Iterable[PluginModule] | None = None) -> None:
        self._catalog: dict[tuple[PluginSlot, str], PluginModule] = {}
        for module in (*BUILTIN_MODULES, *(modules or ())):
            self._catalog[module.manifest.key] = module
        self._instances: dict[tuple[PluginSlot, str], Any] = {}
        self._manifests: dict[tuple[PluginSlot, str], PluginManifest] = {}

    def register(self, module: PluginModule, config: dict | None = None, name: str = "") -> Any:
        """Instantiate *module* and store it; the last registration for a key wins.

        *name* registers the instance under an alias instead of the
        manifest name (used for named notifier instances).
        """
        manifest = module.manifest
        key = (manifest.slot, name or manifest.name)
        instance = module.create(config)
        if key in self._instances:
            logger.debug("Replacing %s plugin '%s'", key[0].value, key[1])
        self._instances[key] = instance
        self._manifests[key] = manifest
        return instance

    def get(self, slot: PluginSlot, name: str) -> Any | None:
        if not name:
            return None
        return self._instances.get((slot, name))

    def list(self, slot: PluginSlot | None = None) -> builtins.list[PluginManifest]:
        return [
            manifest
            for (s, _), manifest in self._manifests.items()
            if slot is None or s == slot
        ]

    def registered(self, slot: PluginSlot | None = None) -> builtins.list[tuple[str, PluginManifest]]:
        """(registered name, manifest) pairs; aliases keep their own name."""
        return [
            (name, manifest)
            for (s, name), manifest in self._manifests.items()
            if slot is None or s == slot
        ]

    def instances(self) -> builtins.list[Any]:
        return builtins.list(self._instances.values())

    def available(self, slot: PluginSlot | None = None) -> builtins.list[PluginManifest]:
        """Manifests of every module in the catalog, registered or not."""
        return [
            module.manifest
            for (s, _), module in self._catalog.items()
            if slot is None or s == slot
        ]

    def load_from_config(self, config: AppConfig) -> None:
        """Register every plugin the defaults and projects refer to.

        Raises ConfigurationError for names missing from the catalog, before
        any session is started.
        """
        wanted: list[tuple[PluginSlot, str, str]] = [
            (PluginSlot.RUNTIME, config.defaults.runtime, "defaults"),
            (PluginSlot.AGENT, config.defaults.agent, "defaults"),
            (PluginSlot.WORKSPACE, config.defaults.workspace, "defaults"),
            (PluginSlot.TERMINAL, config.defaults.terminal, "defaults"),
        ]
        for project in config.projects.values():
            wanted.extend([
                (PluginSlot.RUNTIME, project.runtime, project.id),
                (PluginSlot.AGENT, project.agent, project.id),
                (PluginSlot.WORKSPACE, project.workspace, project.id),
                (PluginSlot.SCM, project.scm, project.id),
                (PluginSlot.TRACKER, project.tracker, project.id),
            ])

        for slot, name, owner in wanted:
            if not name or (slot, name) in self._instances:
                continue
            module = self._lookup(slot, name, owner)
            self.register(module, self._plugin_config(config, slot, name))

        self._load_notifiers(config)

    def _load_notifiers(self, config: AppConfig) -> None:
        names: list[str] = list(config.defaults.notifiers)
        for routed in config.notification_routing.values():
            names.extend(routed)
        names.extend(config.notifiers)

        for name in dict.fromkeys(names):
            if (PluginSlot.NOTIFIER, name) in self._instances:
                continue
            notifier = config.notifiers.get(name)
            plugin_name = notifier.plugin if notifier else name
            options = dict(notifier.options) if notifier else {}
            module = self._lookup(PluginSlot.NOTIFIER, plugin_name, f"notifier '{name}'")
            self.register(module, options, name=name)

    def _lookup(self, slot: PluginSlot, name: str, owner: str) -> PluginModule:
        module = self._catalog.get((slot, name))
        if module is None:
            raise ConfigurationError(
                f"Unknown {slot.value} plugin '{name}' (configured by {owner})"
            )
        return module

    @staticmethod
    def _plugin_config(config: AppConfig, slot: PluginSlot, name: str) -> dict:
        options = dict(config.plugin_options.get(name, {}))
        if slot == PluginSlot.WORKSPACE:
            options.setdefault("worktree_dir", str(config.resolved_worktree_dir))
        return options
