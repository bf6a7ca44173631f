"""Best-effort notification delivery."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Any

from labelflow.orchestrator.contracts import NotificationEvent, Notifier, with_timeout

logger = logging.getLogger(__name__)

_PENDING: set[asyncio.Task[Any]] = set()


class LoggingNotifier:
    """Writes events to the log instead of a chat channel."""

    def __init__(self) -> None:
        self.sent: list[NotificationEvent] = []

    async def notify(self, event: NotificationEvent, *, channel: str | None = None) -> None:
        self.sent.append(event)
        payload = asdict(event)
        kind = payload.pop("kind")
        logger.info("notify[%s] %s %s", channel or "-", kind.value, payload)


async def notify_best_effort(
    notifier: Notifier | None,
    event: NotificationEvent,
    *,
    channel: str | None = None,
    timeout_seconds: float | None = None,
) -> bool:
    """Deliver an event; failures and timeouts are logged and reported as False."""

    if notifier is None:
        return False
    try:
        await with_timeout(notifier.notify(event, channel=channel), timeout_seconds)
    except Exception as error:  # noqa: BLE001
        logger.warning("Notification %s failed: %s", event.kind.value, error)
        return False
    return True


def fire_and_forget(
    notifier: Notifier | None,
    event: NotificationEvent,
    *,
    channel: str | None = None,
    timeout_seconds: float | None = None,
) -> asyncio.Task[bool] | None:
    """Schedule delivery without awaiting it. The caller's flow never waits on the result."""

    if notifier is None:
        return None
    task = asyncio.create_task(
        notify_best_effort(
            notifier,
            event,
            channel=channel,
            timeout_seconds=timeout_seconds,
        ),
    )
    _PENDING.add(task)
    task.add_done_callback(_PENDING.discard)
    return task


async def drain_pending() -> None:
    """Wait for scheduled notifications; used before a short-lived process exits."""

    if _PENDING:
        await asyncio.gather(*list(_PENDING), return_exceptions=True)
