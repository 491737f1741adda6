"""
Outbound alerting for the synchronizer.

Two notifiers share one interface:
- MailgunNotifier: e-mail through the Mailgun HTTP API
- LogNotifier: writes the alert to the log (used when Mailgun is not set up)

Both are fire-and-forget. ``notify_*`` schedules delivery on the running
event loop and returns immediately; delivery errors are logged, never
raised into the sync pipeline. All alerts share an ErrorBudget that caps
how many go out in a sliding window.
"""
import asyncio
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, Set

import httpx

from guild_sync.core import metrics
from guild_sync.core.config import Settings

logger = logging.getLogger(__name__)


class ErrorBudget:
    """Sliding-window cap on notifications (in memory only)."""

    def __init__(
        self,
        max_per_window: int = 5,
        window_seconds: float = 15 * 60,
        clock: Callable[[], float] = time.monotonic
    ):
        self.max_per_window = max_per_window
        self.window_seconds = window_seconds
        self._clock = clock
        self._sent: Deque[float] = deque()

    def _expire(self, now: float):
        while self._sent and now - self._sent[0] >= self.window_seconds:
            self._sent.popleft()

    def try_consume(self) -> bool:
        """Take one slot if available."""
        now = self._clock()
        self._expire(now)
        if len(self._sent) >= self.max_per_window:
            return False
        self._sent.append(now)
        return True

    @property
    def remaining(self) -> int:
        self._expire(self._clock())
        return max(0, self.max_per_window - len(self._sent))


class BaseNotifier:
    """Shared fire-and-forget scheduling and throttling."""

    def __init__(self, budget: Optional[ErrorBudget] = None, guild_label: str = ""):
        self.budget = budget or ErrorBudget()
        self.guild_label = guild_label
        self._pending: Set[asyncio.Task] = set()

    def notify_batch_errors(self, summary: Dict[str, Any]) -> bool:
        """
        Alert about a batch whose error count crossed the threshold.

        Returns:
            True if an alert was scheduled, False if throttled
        """
        subject = f"[Guild Sync] {summary.get('errors', 0)} errors during {summary.get('tier', 'sync')}"
        lines = [
            f"Guild: {self.guild_label}",
            f"Tier: {summary.get('tier')}",
            f"Members in batch: {summary.get('total')}",
            f"Processed: {summary.get('processed')}",
            f"Errors: {summary.get('errors')} (alertable: {summary.get('alertable_errors')})",
            f"Error rate: {summary.get('error_rate', 0):.1%}",
            f"By type: {summary.get('by_type')}",
        ]
        return self._schedule("batch_errors", subject, "\n".join(lines))

    def notify_critical_failure(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> bool:
        """
        Alert about a failure that aborted a whole cycle.

        Returns:
            True if an alert was scheduled, False if throttled
        """
        context = context or {}
        subject = f"[Guild Sync] CRITICAL: {context.get('tier', 'sync')} failed"
        lines = [
            f"Guild: {self.guild_label}",
            f"Error: {type(error).__name__}: {error}",
        ]
        lines.extend(f"{k}: {v}" for k, v in context.items())
        return self._schedule("critical", subject, "\n".join(lines))

    def _schedule(self, kind: str, subject: str, body: str) -> bool:
        if not self.budget.try_consume():
            metrics.notifications_throttled_total.labels(kind=kind).inc()
            logger.warning(f"🔕 Notification throttled ({kind}): {subject}")
            return False

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, notification dropped: {subject}")
            return False

        task = loop.create_task(self._deliver_safely(kind, subject, body))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return True

    async def _deliver_safely(self, kind: str, subject: str, body: str):
        try:
            await self._deliver(subject, body)
            metrics.notifications_sent_total.labels(kind=kind).inc()
        except Exception:
            logger.exception(f"❌ Failed to deliver {kind} notification: {subject}")

    async def _deliver(self, subject: str, body: str):
        raise NotImplementedError

    async def flush(self):
        """Wait for scheduled deliveries (used on shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self):
        await self.flush()


class LogNotifier(BaseNotifier):
    """Writes alerts to the log."""

    async def _deliver(self, subject: str, body: str):
        logger.warning(f"📣 {subject}\n{body}")


class MailgunNotifier(BaseNotifier):
    """Sends alerts through the Mailgun messages API."""

    def __init__(
        self,
        api_key: str,
        domain: str,
        recipient: str,
        base_url: str = "https://api.eu.mailgun.net/v3",
        budget: Optional[ErrorBudget] = None,
        guild_label: str = "",
        client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__(budget=budget, guild_label=guild_label)
        self.api_key = api_key
        self.domain = domain
        self.recipient = recipient
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(15.0))
        return self._client

    async def _deliver(self, subject: str, body: str):
        client = await self._get_client()
        response = await client.post(
            f"{self.base_url}/{self.domain}/messages",
            auth=("api", self.api_key),
            data={
                "from": f"Guild Sync <noreply@{self.domain}>",
                "to": self.recipient,
                "subject": subject,
                "text": body,
            },
        )
        response.raise_for_status()
        logger.info(f"📧 Notification sent: {subject}")

    async def close(self):
        await super().close()
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None


def create_notifier(settings: Settings) -> BaseNotifier:
    """Mailgun when fully configured, log-only otherwise."""
    budget = ErrorBudget(
        max_per_window=settings.NOTIFY_MAX_PER_WINDOW,
        window_seconds=settings.NOTIFY_WINDOW_MINUTES * 60,
    )
    label = f"{settings.GUILD_NAME} ({settings.GUILD_REALM}-{settings.GUILD_REGION})"

    if settings.mailgun_enabled:
        return MailgunNotifier(
            api_key=settings.MAILGUN_API_KEY,
            domain=settings.MAILGUN_DOMAIN,
            recipient=settings.CONTACT_EMAIL,
            base_url=settings.MAILGUN_BASE_URL,
            budget=budget,
            guild_label=label,
        )

    logger.info("Mailgun not configured, alerts will be logged only")
    return LogNotifier(budget=budget, guild_label=label)
