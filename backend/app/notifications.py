from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx
import sentry_sdk

from .logging_config import get_logger
from .settings import settings

logger = get_logger(__name__)


class Notifier(Protocol):
    async def notify(self, message: str, recipient_ref: str) -> None: ...


class WebhookNotifier:
    """Posts ``{"text": message}`` to an incoming-webhook URL (Slack compatible)."""

    def __init__(self, timeout: float | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.timeout = timeout if timeout is not None else settings.NOTIFY_TIMEOUT_SECONDS
        self._transport = transport

    async def notify(self, message: str, recipient_ref: str) -> None:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(recipient_ref, json={"text": message})
            response.raise_for_status()


@dataclass(slots=True)
class NotificationFailure:
    recipient_ref: str
    message: str
    error: str
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationDispatcher:
    """
    Fire-and-forget delivery. ``dispatch`` never raises and never blocks on the
    channel; failures land in ``failures`` (and Sentry) for operators only.
    """

    def __init__(self, notifier: Notifier, history: int | None = None) -> None:
        self.notifier = notifier
        self.failures: deque[NotificationFailure] = deque(
            maxlen=history or settings.NOTIFY_FAILURE_HISTORY
        )
        self._tasks: set[asyncio.Task[Any]] = set()

    def dispatch(self, message: str, recipient_ref: str | None) -> asyncio.Task[None] | None:
        if not recipient_ref:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("notification_skipped", reason="no_event_loop", recipient=recipient_ref)
            return None
        task = loop.create_task(self._deliver(message, recipient_ref))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, message: str, recipient_ref: str) -> None:
        try:
            await self.notifier.notify(message, recipient_ref)
        except Exception as exc:
            self.failures.append(NotificationFailure(recipient_ref, message, repr(exc)))
            logger.warning("notification_failed", recipient=recipient_ref, error=repr(exc))
            sentry_sdk.capture_exception(exc)
        else:
            logger.info("notification_sent", recipient=recipient_ref)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
