"""Notifier that writes events to the application log."""

from __future__ import annotations

import logging

from agentorchestrator.models.plugin import PluginManifest, PluginSlot
from agentorchestrator.models.reaction import EventPriority, NotificationEvent

logger = logging.getLogger(__name__)

manifest = PluginManifest(
    name="log",
    slot=PluginSlot.NOTIFIER,
    description="Notifier plugin: application log",
)

_LEVELS = {
    EventPriority.URGENT: logging.ERROR,
    EventPriority.ACTION: logging.WARNING,
    EventPriority.WARNING: logging.WARNING,
    EventPriority.INFO: logging.INFO,
}


class LogNotifier:
    def __init__(self, logger_name: str = "") -> None:
        self._logger = logging.getLogger(logger_name) if logger_name else logger

    async def notify(self, event: NotificationEvent) -> None:
        first_line = event.message.splitlines()[0] if event.message else ""
        self._logger.log(
            _LEVELS.get(event.priority, logging.INFO),
            "[%s] %s/%s %s: %s",
            event.priority.value, event.project_id, event.session_id, event.type, first_line,
        )


def create(config: dict | None = None) -> LogNotifier:
    config = config or {}
    return LogNotifier(logger_name=config.get("logger", ""))
