"""Tests for the log notifier and the web terminal plugin."""

import logging

import pytest

from agentorchestrator.models.reaction import EventPriority, NotificationEvent
from agentorchestrator.models.session import Session
from agentorchestrator.plugins import notifier_log, terminal_web


class TestLogNotifier:
    @pytest.mark.asyncio
    async def test_urgent_logs_error(self, caplog):
        n = notifier_log.create({"logger": "ao.test.events"})
        event = NotificationEvent(
            "session.needs_input", EventPriority.URGENT, "app-1", "app", "waiting\nmore detail"
        )
        with caplog.at_level(logging.INFO, logger="ao.test.events"):
            await n.notify(event)
        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert "app/app-1 session.needs_input: waiting" in record.getMessage()
        assert "more detail" not in record.getMessage()

    @pytest.mark.asyncio
    async def test_info_logs_info(self, caplog):
        n = notifier_log.create()
        event = NotificationEvent("pr.created", EventPriority.INFO, "app-1", "app", "")
        with caplog.at_level(logging.INFO, logger="agentorchestrator.plugins.notifier_log"):
            await n.notify(event)
        assert caplog.records[-1].levelno == logging.INFO


class TestWebTerminal:
    @pytest.mark.asyncio
    async def test_open_session(self):
        term = terminal_web.create({"dashboard_url": "http://dash:9000/"})
        session = Session(id="app-1", project_id="app")
        assert not await term.is_session_open(session)
        await term.open_session(session)
        assert await term.is_session_open(session)
        assert term.session_url(session) == "http://dash:9000/sessions/app-1/terminal"

    @pytest.mark.asyncio
    async def test_open_all(self):
        term = terminal_web.create()
        sessions = [Session(id=f"app-{i}", project_id="app") for i in range(3)]
        await term.open_all(sessions)
        for s in sessions:
            assert await term.is_session_open(s)
