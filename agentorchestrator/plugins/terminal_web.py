"""Web terminal plugin: tracks which sessions have a dashboard terminal URL."""

from __future__ import annotations

import logging

from agentorchestrator.models.plugin import PluginManifest, PluginSlot
from agentorchestrator.models.session import Session

logger = logging.getLogger(__name__)

manifest = PluginManifest(
    name="web",
    slot=PluginSlot.TERMINAL,
    description="Terminal plugin: web dashboard terminal links",
)


class WebTerminal:
    """Nothing is opened locally; a dashboard attaches using the runtime handle."""

    def __init__(self, dashboard_url: str = "http://localhost:4100") -> None:
        self.dashboard_url = dashboard_url.rstrip("/")
        self._open: set[str] = set()

    def session_url(self, session: Session) -> str:
        return f"{self.dashboard_url}/sessions/{session.id}/terminal"

    async def open_session(self, session: Session) -> None:
        self._open.add(session.id)
        logger.info("Session %s terminal available at %s", session.id, self.session_url(session))

    async def open_all(self, sessions: list[Session]) -> None:
        for session in sessions:
            self._open.add(session.id)
        logger.info("%d sessions available at %s/sessions", len(sessions), self.dashboard_url)

    async def is_session_open(self, session: Session) -> bool:
        return session.id in self._open


def create(config: dict | None = None) -> WebTerminal:
    config = config or {}
    return WebTerminal(dashboard_url=config.get("dashboard_url", "http://localhost:4100"))
