"""
Notification sink adapters.

Delivery is fire-and-forget from the engine's point of view: the
dispatcher bounds each publish with a timeout and logs failures instead
of propagating them into expense or settlement flows.
"""

import asyncio
import logging
from typing import List, Optional, Protocol

import httpx

from groupsettle.core.config import settings
from groupsettle.models.events import Event

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def publish(self, event: Event) -> None: ...


class LoggingNotificationSink:
    """Writes events to the application log."""

    async def publish(self, event: Event) -> None:
        logger.info("event %s: %s", event.type, event.model_dump_json())


class WebhookNotificationSink:
    """POSTs each event as JSON to a webhook (e.g. the chat bot layer)."""

    def __init__(self, url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.url = url or settings.NOTIFICATION_WEBHOOK_URL
        self.client = client or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)

    async def close(self):
        await self.client.aclose()

    async def publish(self, event: Event) -> None:
        response = await self.client.post(
            self.url,
            content=event.model_dump_json(),
            headers={"Content-Type": "application/json"}
        )
        response.raise_for_status()


class EventDispatcher:
    """Publishes events to one or more sinks without ever failing the caller."""

    def __init__(self, sinks: List[NotificationSink], timeout: Optional[float] = None):
        self.sinks = sinks
        self.timeout = timeout if timeout is not None else settings.NOTIFICATION_TIMEOUT_SECONDS

    async def emit(self, event: Event) -> None:
        for sink in self.sinks:
            try:
                await asyncio.wait_for(sink.publish(event), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning("Notification sink %s timed out on %s", type(sink).__name__, event.type)
            except Exception:
                logger.exception("Notification sink %s failed on %s", type(sink).__name__, event.type)
