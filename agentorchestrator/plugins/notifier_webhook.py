"""Webhook notifier: POSTs events as JSON with retry on 429/5xx."""

from __future__ import annotations

import asyncio
import logging

import httpx

from agentorchestrator.errors import ConfigurationError
from agentorchestrator.models.plugin import PluginManifest, PluginSlot
from agentorchestrator.models.reaction import NotificationEvent

logger = logging.getLogger(__name__)

manifest = PluginManifest(
    name="webhook",
    slot=PluginSlot.NOTIFIER,
    description="Notifier plugin: JSON webhook",
)


def is_retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def format_message(event: NotificationEvent) -> str:
    parts = [f"[{event.project_id}/{event.session_id}]"]
    if branch := event.data.get("branch"):
        parts.append(f"({branch})")
    if status := event.data.get("status"):
        parts.append(f"status={status}")
    parts.append(event.message)
    return " ".join(parts)


class WebhookNotifier:
    def __init__(
        self,
        url: str,
        token: str = "",
        retries: int = 2,
        retry_delay: float = 1.0,
        events: frozenset[str] | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.retries = max(0, retries)
        self.retry_delay = max(0.0, retry_delay)
        self.events = events
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(timeout=timeout, headers=headers, transport=transport)

    async def notify(self, event: NotificationEvent) -> None:
        if self.events is not None and event.type not in self.events:
            return
        payload = {"text": format_message(event), "event": event.to_dict()}
        await self._post_with_retry(payload)

    async def _post_with_retry(self, payload: dict) -> None:
        last_error: Exception | None = None
        for attempt in range(self.retries + 1):
            try:
                response = await self._client.post(self.url, json=payload)
            except httpx.TransportError as e:
                last_error = e
            else:
                if response.is_success:
                    return
                last_error = httpx.HTTPStatusError(
                    f"Webhook POST failed ({response.status_code}): {response.text[:200]}",
                    request=response.request,
                    response=response,
                )
                if not is_retryable(response.status_code):
                    raise last_error

            if attempt < self.retries:
                delay = self.retry_delay * 2 ** attempt
                logger.debug("Webhook attempt %d failed, retrying in %.1fs", attempt + 1, delay)
                await asyncio.sleep(delay)

        assert last_error is not None
        raise last_error

    async def close(self) -> None:
        await self._client.aclose()


def create(config: dict | None = None) -> WebhookNotifier:
    config = config or {}
    url = config.get("url")
    if not url:
        raise ConfigurationError("webhook notifier requires a 'url' option")
    events = config.get("events")
    return WebhookNotifier(
        url=url,
        token=config.get("token", ""),
        retries=int(config.get("retries", 2)),
        retry_delay=float(config.get("retry_delay", 1.0)),
        events=frozenset(events) if events else None,
        timeout=float(config.get("timeout", 30.0)),
        transport=config.get("transport"),
    )
