"""
Webhook notification dispatcher

Turns booking state changes into signed webhook deliveries. Each delivery
record is created with the full {event, timestamp, data} envelope, so every
attempt sends the same bytes and the same signature. Attempts run outside
the booking request through a DeliveryScheduler:
  * ArqDeliveryScheduler - deferred arq jobs in Redis (survive restarts)
  * InlineDeliveryScheduler - asyncio tasks in this process (dev/tests)

A failed attempt is retried after WEBHOOK_RETRY_DELAYS[attempt - 1] seconds
until WEBHOOK_MAX_ATTEMPTS attempts have been made; the delivery is then
terminally FAILED. A 2xx response makes it terminally SUCCESS. A target that
fails the SSRF guard is FAILED at once without contacting it.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import httpx
from sqlalchemy.orm import Session

from ...config import (
    WEBHOOK_MAX_ATTEMPTS,
    WEBHOOK_QUEUE_COOLDOWN_SECONDS,
    WEBHOOK_RETRY_DELAYS,
    WEBHOOK_SCHEDULE_TIMEOUT_SECONDS,
    WEBHOOK_TIMEOUT_SECONDS,
    WEBHOOK_USER_AGENT,
)
from ...database import SessionLocal
from ...errors import DeliveryFailedError
from ...models_webhook import DeliveryStatus, Webhook, WebhookDelivery, WebhookEvent
from ...shared.time_utils import isoformat_z, to_utc_naive, utcnow
from ...webhook_security import (
    UnsafeWebhookTargetError,
    assert_safe_webhook_target,
    build_signed_headers,
    pinned_request,
    serialize_envelope,
)
from .repository import WebhookRepository

logger = logging.getLogger(__name__)

RESPONSE_BODY_LIMIT = 1000
DELIVER_TASK_NAME = "deliver_webhook_task"


def build_envelope(event: WebhookEvent, data: dict[str, Any], now: Optional[datetime] = None) -> dict[str, Any]:
    """Event envelope, keys in wire order"""
    return {"event": event.value, "timestamp": isoformat_z(now or utcnow()), "data": data}


class DeliveryScheduler:
    """Runs a delivery attempt after a delay, outside the caller's request"""

    async def schedule(self, delivery_id: int, delay_seconds: float, attempt: int) -> None:
        raise NotImplementedError


class ArqDeliveryScheduler(DeliveryScheduler):
    """Enqueues deferred attempts for the arq worker"""

    def __init__(
        self,
        pool=None,
        connect_timeout: float = WEBHOOK_SCHEDULE_TIMEOUT_SECONDS,
        cooldown: float = WEBHOOK_QUEUE_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._pool = pool
        self.connect_timeout = connect_timeout
        self.cooldown = cooldown
        self.clock = clock
        self._unavailable_until = 0.0

    async def _get_pool(self):
        if self._pool is None:
            from arq import create_pool

            from ...worker import get_redis_settings

            if self.clock() < self._unavailable_until:
                raise ConnectionError("Redis unavailable, waiting out cooldown")
            try:
                self._pool = await asyncio.wait_for(
                    create_pool(get_redis_settings()), timeout=self.connect_timeout
                )
            except Exception:
                self._unavailable_until = self.clock() + self.cooldown
                logger.warning(f"⚠️ Redis unreachable, not enqueueing webhooks for {self.cooldown:.0f}s")
                raise
        return self._pool

    async def schedule(self, delivery_id: int, delay_seconds: float, attempt: int) -> None:
        pool = await self._get_pool()
        # One job id per attempt, so a requeue never doubles an attempt already queued
        job = await pool.enqueue_job(
            DELIVER_TASK_NAME,
            delivery_id,
            _job_id=f"webhook-delivery:{delivery_id}:{attempt}",
            _defer_by=timedelta(seconds=delay_seconds),
        )
        logger.info(
            f"📤 Queued webhook delivery {delivery_id} attempt {attempt} in {delay_seconds:.0f}s"
            f"{'' if job else ' (already queued)'}"
        )

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None


class InlineDeliveryScheduler(DeliveryScheduler):
    """
    Runs attempts as asyncio tasks in this process.

    Pending retries are lost on restart; use ArqDeliveryScheduler in production.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        sleep: Callable[[float], Any] = asyncio.sleep,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.session_factory = session_factory
        self.sleep = sleep
        self.client = client
        self._tasks: set[asyncio.Task] = set()

    async def schedule(self, delivery_id: int, delay_seconds: float, attempt: int) -> None:
        task = asyncio.create_task(self._run(delivery_id, delay_seconds))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, delivery_id: int, delay_seconds: float) -> None:
        if delay_seconds > 0:
            await self.sleep(delay_seconds)
        db = self.session_factory()
        try:
            dispatcher = NotificationDispatcher(db, scheduler=self, client=self.client)
            await dispatcher.attempt_delivery(delivery_id)
        except Exception as e:
            logger.error(f"❌ Inline delivery {delivery_id} crashed: {str(e)}")
        finally:
            db.close()

    async def drain(self) -> None:
        """Wait until no attempts (including retries they schedule) are pending"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))


class NotificationDispatcher:
    """Creates, signs and delivers webhook notifications"""

    def __init__(
        self,
        db: Session,
        scheduler: Optional[DeliveryScheduler] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = WEBHOOK_MAX_ATTEMPTS,
        retry_delays: tuple[int, ...] = WEBHOOK_RETRY_DELAYS,
        timeout: float = WEBHOOK_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        schedule_timeout: float = WEBHOOK_SCHEDULE_TIMEOUT_SECONDS,
    ):
        self.db = db
        self.repo = WebhookRepository()
        self.scheduler = scheduler
        self.schedule_timeout = schedule_timeout
        self.client = client
        self.max_attempts = max_attempts
        self.retry_delays = retry_delays
        self.timeout = timeout
        self.clock = clock

    async def trigger(self, owner_id: int, event: WebhookEvent, data: dict[str, Any]) -> list[WebhookDelivery]:
        """
        Record one delivery per subscribed webhook and schedule the first attempts.

        Never raises for delivery problems: a scheduling failure leaves the
        delivery PENDING and overdue, for requeue_overdue to pick up.
        """
        webhooks = self.repo.get_subscribed_webhooks(self.db, owner_id, event.value)
        if not webhooks:
            return []

        now = self.clock()
        envelope = build_envelope(event, data, now)
        deliveries = [
            self.repo.create_delivery(self.db, webhook.id, event.value, envelope, to_utc_naive(now))
            for webhook in webhooks
        ]
        self.db.commit()
        logger.info(f"📣 {event.value} for owner {owner_id}: {len(deliveries)} delivery(ies) created")

        for delivery in deliveries:
            await self._schedule(delivery, 0)
        return deliveries

    async def _schedule(self, delivery: WebhookDelivery, delay_seconds: float) -> None:
        if self.scheduler is None:
            logger.warning(f"⚠️ No delivery scheduler configured, delivery {delivery.id} left for requeue")
            return
        try:
            await asyncio.wait_for(
                self.scheduler.schedule(delivery.id, delay_seconds, delivery.attempts + 1),
                timeout=self.schedule_timeout,
            )
        except Exception as e:
            logger.error(f"❌ Could not schedule webhook delivery {delivery.id}: {str(e)}")

    async def attempt_delivery(self, delivery_id: int, retry: bool = True) -> Optional[WebhookDelivery]:
        """Make one attempt. Terminal deliveries are left untouched."""
        delivery = self.repo.get_delivery(self.db, delivery_id)
        if not delivery:
            logger.warning(f"⚠️ Webhook delivery {delivery_id} not found")
            return None
        if delivery.status != DeliveryStatus.PENDING.value:
            logger.info(f"ℹ️ Webhook delivery {delivery_id} already {delivery.status}, skipping")
            return delivery

        webhook = delivery.webhook
        if webhook is None or not webhook.is_active:
            self._finish(delivery, DeliveryStatus.FAILED, "Webhook was deleted or deactivated")
            return delivery

        delivery.attempts += 1
        try:
            await self._send(webhook, delivery)
        except UnsafeWebhookTargetError as e:
            if not e.retryable:
                logger.warning(f"🚫 Refused webhook delivery {delivery.id} to unsafe target: {e}")
                self._finish(delivery, DeliveryStatus.FAILED, f"Unsafe target: {e}")
                return delivery
            await self._record_failure(delivery, DeliveryFailedError(str(e)), retry)
        except DeliveryFailedError as e:
            await self._record_failure(delivery, e, retry)
        else:
            logger.info(
                f"✅ Webhook delivery {delivery.id} succeeded on attempt {delivery.attempts} "
                f"(HTTP {delivery.response_code})"
            )
            self._finish(delivery, DeliveryStatus.SUCCESS)
        return delivery

    async def _send(self, webhook: Webhook, delivery: WebhookDelivery) -> None:
        """POST the envelope. Raises DeliveryFailedError unless the response is 2xx."""
        # getaddrinfo blocks, keep it off the event loop
        address = await asyncio.to_thread(assert_safe_webhook_target, webhook.url)
        url, host_headers, extensions = pinned_request(webhook.url, address)

        body = serialize_envelope(delivery.payload)
        headers = {**build_signed_headers(webhook.secret, body, delivery.event, WEBHOOK_USER_AGENT), **host_headers}
        try:
            if self.client is not None:
                response = await self.client.post(
                    url, content=body, headers=headers, extensions=extensions, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=False) as client:
                    response = await client.post(url, content=body, headers=headers, extensions=extensions)
        except httpx.HTTPError as e:
            raise DeliveryFailedError(f"{type(e).__name__}: {e}") from e

        delivery.response_code = response.status_code
        delivery.response_body = response.text[:RESPONSE_BODY_LIMIT]
        if not 200 <= response.status_code < 300:
            raise DeliveryFailedError(f"HTTP {response.status_code}")

    async def _record_failure(self, delivery: WebhookDelivery, error: DeliveryFailedError, retry: bool) -> None:
        if not retry or delivery.attempts >= self.max_attempts:
            logger.error(
                f"❌ Webhook delivery {delivery.id} failed permanently after "
                f"{delivery.attempts} attempt(s): {error.message}"
            )
            self._finish(delivery, DeliveryStatus.FAILED, error.message)
            return

        delay = self.retry_delays[min(delivery.attempts, len(self.retry_delays)) - 1]
        delivery.last_error = error.message
        delivery.next_attempt_at = to_utc_naive(self.clock() + timedelta(seconds=delay))
        self.db.commit()
        logger.warning(
            f"⚠️ Webhook delivery {delivery.id} attempt {delivery.attempts} failed ({error.message}), "
            f"retrying in {delay}s"
        )
        await self._schedule(delivery, delay)

    def _finish(self, delivery: WebhookDelivery, status: DeliveryStatus, error: Optional[str] = None) -> None:
        delivery.status = status.value
        delivery.last_error = error
        delivery.next_attempt_at = None
        self.db.commit()

    async def send_test(self, webhook: Webhook) -> WebhookDelivery:
        """Deliver a sample booking.created event now, once, without retries"""
        now = self.clock()
        envelope = build_envelope(
            WebhookEvent.BOOKING_CREATED,
            {
                "test": True,
                "message": "This is a test webhook delivery",
                "booking": {
                    "id": "test_booking_123",
                    "eventType": {"title": "Test Event", "duration": 30},
                    "guestName": "Test Guest",
                    "guestEmail": "test@example.com",
                    "startTime": isoformat_z(now),
                    "endTime": isoformat_z(now + timedelta(minutes=30)),
                    "status": "CONFIRMED",
                },
            },
            now,
        )
        delivery = self.repo.create_delivery(
            self.db, webhook.id, WebhookEvent.BOOKING_CREATED.value, envelope, to_utc_naive(now)
        )
        self.db.commit()
        logger.info(f"🧪 Sending test delivery {delivery.id} to webhook {webhook.id}")
        return await self.attempt_delivery(delivery.id, retry=False)

    async def requeue_overdue(self, limit: int = 100) -> int:
        """Reschedule PENDING deliveries whose next attempt is overdue (e.g. lost on restart)"""
        overdue = self.repo.get_overdue_deliveries(self.db, to_utc_naive(self.clock()), limit)
        for delivery in overdue:
            await self._schedule(delivery, 0)
        if overdue:
            logger.info(f"🔁 Requeued {len(overdue)} overdue webhook delivery(ies)")
        return len(overdue)
