"""
ARQ Background Worker for Async Jobs
Delivers webhook attempts and recovers retries that were lost on restart
"""

import logging

from arq.connections import RedisSettings
from arq.cron import cron

# Import all model files to ensure all models are registered
from . import models  # noqa: F401 - Main models
from . import models_google_calendar  # noqa: F401 - Google Calendar models
from . import models_webhook  # noqa: F401 - Webhook models
from .config import (
    ARQ_JOB_TIMEOUT,
    ARQ_KEEP_RESULT,
    ARQ_MAX_JOBS,
    REDIS_DB,
    REDIS_HOST,
    REDIS_PASSWORD,
    REDIS_PORT,
    REDIS_SSL,
    REDIS_URL,
)
from .database import SessionLocal

logger = logging.getLogger(__name__)


def get_redis_settings() -> RedisSettings:
    """Redis settings for the ARQ worker and the API's enqueue pool"""
    if REDIS_URL:
        # rediss:// enables TLS
        return RedisSettings.from_dsn(REDIS_URL)
    return RedisSettings(
        host=REDIS_HOST,
        port=REDIS_PORT,
        password=REDIS_PASSWORD,
        database=REDIS_DB,
        ssl=REDIS_SSL,
        conn_timeout=15,
        conn_retry_delay=1,
    )


async def deliver_webhook_task(ctx, delivery_id: int):
    """
    Make one delivery attempt. A failed attempt schedules the next one as a
    deferred job, so retries survive worker restarts.

    Args:
        ctx: ARQ context
        delivery_id: WebhookDelivery ID
    """
    from .domain.webhooks.dispatcher import ArqDeliveryScheduler, NotificationDispatcher

    db = SessionLocal()
    try:
        dispatcher = NotificationDispatcher(db, scheduler=ArqDeliveryScheduler(ctx["redis"]))
        delivery = await dispatcher.attempt_delivery(delivery_id)
        if delivery is None:
            return {"status": "missing"}
        return {"status": delivery.status, "attempts": delivery.attempts}
    except Exception as e:
        logger.error(f"❌ Webhook delivery task {delivery_id} failed: {str(e)}")
        raise
    finally:
        db.close()


async def requeue_overdue_deliveries_task(ctx):
    """Cron job: re-enqueue PENDING deliveries whose next attempt is overdue"""
    from .domain.webhooks.dispatcher import ArqDeliveryScheduler, NotificationDispatcher

    db = SessionLocal()
    try:
        dispatcher = NotificationDispatcher(db, scheduler=ArqDeliveryScheduler(ctx["redis"]))
        requeued = await dispatcher.requeue_overdue()
        return {"status": "completed", "requeued": requeued}
    finally:
        db.close()


class WorkerSettings:
    """ARQ Worker Settings"""

    functions = [deliver_webhook_task, requeue_overdue_deliveries_task]
    redis_settings = get_redis_settings()

    max_jobs = ARQ_MAX_JOBS
    job_timeout = ARQ_JOB_TIMEOUT
    keep_result = ARQ_KEEP_RESULT

    health_check_interval = 60

    # Delivery retries are scheduled by the dispatcher itself, not by arq
    max_tries = 1

    cron_jobs = [
        cron(requeue_overdue_deliveries_task, minute=set(range(60)), run_at_startup=True),
    ]

    logger.info(f"🔧 ARQ Worker configured: max_jobs={max_jobs}, timeout={job_timeout}s")
