"""
Best-effort notifications (Telegram bot).

Callers enqueue and move on; `notify` never blocks and never raises. A single
delivery task drains the queue and owns retries with exponential backoff.
Without a bot token configured, notifications are only logged.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

EVENT_ICONS = {
    "conflict_detected": "⚠️",
    "scan_complete": "✅",
    "scan_failed": "❌",
}


@dataclass
class Notification:
    event: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def render(self) -> str:
        icon = EVENT_ICONS.get(self.event, "ℹ️")
        return f"{icon} <b>{self.event.replace('_', ' ').title()}</b>\n{self.message}"


class Notifier:
    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_id: Optional[str] = None,
        queue_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.bot_token = bot_token if bot_token is not None else settings.TELEGRAM_BOT_TOKEN
        self.chat_id = chat_id if chat_id is not None else settings.TELEGRAM_CHAT_ID
        self.max_retries = settings.NOTIFY_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_seconds = settings.NOTIFY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        self.queue: asyncio.Queue = asyncio.Queue(
            maxsize=settings.NOTIFY_QUEUE_SIZE if queue_size is None else queue_size
        )
        self._transport = transport
        self._task: Optional[asyncio.Task] = None
        self.sent = 0
        self.dropped = 0

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def notify(self, event: str, message: str, **data) -> bool:
        """Enqueue without waiting. Returns False when the queue is full and the notification is dropped."""
        try:
            self.queue.put_nowait(Notification(event=event, message=message, data=data))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Notification queue full, dropping %s: %s", event, message)
            return False
        return True

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
            while True:
                notification = await self.queue.get()
                try:
                    await self.deliver(client, notification)
                except Exception:
                    logger.exception("Notification %s could not be delivered", notification.event)
                finally:
                    self.queue.task_done()

    async def deliver(self, client: httpx.AsyncClient, notification: Notification) -> bool:
        if not self.enabled:
            logger.info("Notification [%s]: %s", notification.event, notification.message)
            return False

        url = f"{settings.TELEGRAM_API_BASE}/bot{self.bot_token}/sendMessage"
        payload = {"chat_id": self.chat_id, "text": notification.render(), "parse_mode": "HTML"}
        for attempt in range(1, self.max_retries + 1):
            try:
                resp = await client.post(url, json=payload)
                if resp.status_code == 200 and _telegram_ok(resp):
                    self.sent += 1
                    return True
                logger.warning(
                    "Telegram API error (attempt %d/%d): %s %s",
                    attempt, self.max_retries, resp.status_code, resp.text[:200],
                )
            except httpx.HTTPError as e:
                logger.warning("Telegram delivery failed (attempt %d/%d): %s", attempt, self.max_retries, e)
            if attempt < self.max_retries:
                await asyncio.sleep(self.backoff_seconds * 2 ** (attempt - 1))

        logger.error("Giving up on notification %s after %d attempts", notification.event, self.max_retries)
        return False


def _telegram_ok(resp: httpx.Response) -> bool:
    # A proxy in front of the API can answer 200 with an HTML page
    try:
        body = resp.json()
    except ValueError:
        return False
    return isinstance(body, dict) and bool(body.get("ok"))


notifier = Notifier()
