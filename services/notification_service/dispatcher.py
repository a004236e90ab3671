"""Best-effort notifications.

Every public method schedules a background send and returns at once. A failed
send is logged and counted; it never reaches the request that triggered it.
"""
import asyncio
from typing import Iterable, Optional, Set

import httpx
import structlog

from shared.observability import phleb_notification_failures_total

logger = structlog.get_logger(__name__)


class HttpMailer:
    """Posts messages to the mail relay. With suppress_send set it only logs them."""

    def __init__(self, client: httpx.AsyncClient, url: str, sender: str, suppress_send: bool = True, timeout: float = 10.0):
        self.client = client
        self.url = url
        self.sender = sender
        self.suppress_send = suppress_send
        self.timeout = timeout

    async def send(self, kind: str, recipients: list, subject: str, context: dict) -> None:
        if self.suppress_send or not self.url:
            logger.info("notification_suppressed", kind=kind, recipients=len(recipients), subject=subject)
            return
        response = await self.client.post(
            self.url,
            json={
                "from": self.sender,
                "to": recipients,
                "subject": subject,
                "template": kind,
                "context": context,
            },
            timeout=self.timeout,
        )
        response.raise_for_status()


class NotificationDispatcher:

    def __init__(self, mailer: HttpMailer):
        self.mailer = mailer
        self._pending: Set[asyncio.Task] = set()

    def _dispatch(self, kind: str, recipients: Iterable[Optional[str]], subject: str, context: dict) -> None:
        to = sorted({r.strip().lower() for r in recipients if r and r.strip()})
        if not to:
            logger.info("notification_skipped", kind=kind, reason="no recipients")
            return
        task = asyncio.create_task(self._send(kind, to, subject, context))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, kind: str, to: list, subject: str, context: dict) -> None:
        try:
            await self.mailer.send(kind, to, subject, context)
        except Exception as exc:
            phleb_notification_failures_total.labels(kind=kind).inc()
            logger.warning("notification_failed", kind=kind, error=str(exc))

    def order_placed(self, recipients, order_number: str, total_val, checkout_type: str) -> None:
        self._dispatch(
            "order_placed",
            recipients,
            f"New order {order_number}",
            {"order_number": order_number, "total_val": str(total_val), "checkout_type": checkout_type},
        )

    def order_status_changed(self, recipients, order_number: str, status: str) -> None:
        self._dispatch(
            "order_status_changed",
            recipients,
            f"Order {order_number} is now {status}",
            {"order_number": order_number, "status": status},
        )

    def job_assigned(self, recipients, order_number: str, tracking_number: str, booking_date, booking_time) -> None:
        self._dispatch(
            "job_assigned",
            recipients,
            f"New job {tracking_number}",
            {
                "order_number": order_number,
                "tracking_number": tracking_number,
                "booking_date": str(booking_date) if booking_date else None,
                "booking_time": str(booking_time) if booking_time else None,
            },
        )

    def job_status_changed(self, recipients, tracking_number: str, job_status: str) -> None:
        self._dispatch(
            "job_status_changed",
            recipients,
            f"Job {tracking_number} is now {job_status}",
            {"tracking_number": tracking_number, "job_status": job_status},
        )

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Waits for in-flight sends, e.g. on shutdown."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
