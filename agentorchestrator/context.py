"""AppContext: wires config, plugins, and services together."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from agentorchestrator.config import AppConfig, load_config

if TYPE_CHECKING:
    from pathlib import Path

    from agentorchestrator.plugins.registry import PluginRegistry
    from agentorchestrator.services.lifecycle_manager import LifecycleManager
    from agentorchestrator.services.session_manager import SessionManager

logger = logging.getLogger(__name__)


class AppContext:
    """Central wiring for all application dependencies.

    Lazily builds the plugin registry and services on first access. Call
    `close()` to stop the lifecycle loop and release notifier clients.
    """

    def __init__(self, config: AppConfig | None = None, config_path: Path | None = None) -> None:
        self.config = config or load_config(config_path)
        self._registry: PluginRegistry | None = None
        self._session_manager: SessionManager | None = None
        self._lifecycle_manager: LifecycleManager | None = None

    async def close(self) -> None:
        """Stop background work and close plugin resources."""
        if self._lifecycle_manager is not None:
            await self._lifecycle_manager.stop()
        if self._registry is not None:
            for plugin in self._registry.instances():
                close = getattr(plugin, "close", None)
                if close is None:
                    continue
                try:
                    await close()
                except Exception:
                    logger.warning("Closing plugin %r failed", plugin, exc_info=True)
        logger.info("AppContext closed")

    @property
    def registry(self) -> PluginRegistry:
        if self._registry is None:
            from agentorchestrator.plugins.registry import PluginRegistry

            self._registry = PluginRegistry()
            self._registry.load_from_config(self.config)
        return self._registry

    @property
    def session_manager(self) -> SessionManager:
        if self._session_manager is None:
            from agentorchestrator.services.session_manager import SessionManager

            self._session_manager = SessionManager(config=self.config, registry=self.registry)
        return self._session_manager

    @property
    def lifecycle_manager(self) -> LifecycleManager:
        if self._lifecycle_manager is None:
            from agentorchestrator.services.lifecycle_manager import LifecycleManager

            self._lifecycle_manager = LifecycleManager(
                config=self.config,
                registry=self.registry,
                session_manager=self.session_manager,
            )
        return self._lifecycle_manager
