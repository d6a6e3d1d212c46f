import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./slotbook.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# External calendar lookups
# "fail_closed" treats a host as fully busy when the calendar cannot be read,
# "fail_open" treats it as having no external conflicts.
CALENDAR_FAILURE_POLICY = os.getenv("CALENDAR_FAILURE_POLICY", "fail_closed").lower()
CALENDAR_TIMEOUT_SECONDS = float(os.getenv("CALENDAR_TIMEOUT_SECONDS", "5"))

# Slot grid: step = min(event duration, SLOT_STEP_MAX_MINUTES)
SLOT_STEP_MAX_MINUTES = int(os.getenv("SLOT_STEP_MAX_MINUTES", "30"))

# Outbound webhooks
WEBHOOK_TIMEOUT_SECONDS = float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "30"))
WEBHOOK_MAX_ATTEMPTS = int(os.getenv("WEBHOOK_MAX_ATTEMPTS", "3"))
# Delay before attempt N+1, in seconds (1 minute, 5 minutes, 30 minutes)
WEBHOOK_RETRY_DELAYS = tuple(
    int(v) for v in os.getenv("WEBHOOK_RETRY_DELAYS", "60,300,1800").split(",") if v.strip()
)
WEBHOOK_USER_AGENT = os.getenv("WEBHOOK_USER_AGENT", "Slotbook-Webhooks/1.0")
# "queue" hands attempts to the arq worker, "inline" runs them in-process (dev/tests)
WEBHOOK_DELIVERY_MODE = os.getenv("WEBHOOK_DELIVERY_MODE", "queue").lower()
# Bound on handing an attempt to the queue from a booking request
WEBHOOK_SCHEDULE_TIMEOUT_SECONDS = float(os.getenv("WEBHOOK_SCHEDULE_TIMEOUT_SECONDS", "3"))
# After Redis is unreachable, skip enqueueing for this long; requeue_overdue catches up
WEBHOOK_QUEUE_COOLDOWN_SECONDS = float(os.getenv("WEBHOOK_QUEUE_COOLDOWN_SECONDS", "30"))

# Key-value store used for rate limiting and idempotency keys
KV_BACKEND = os.getenv("KV_BACKEND", "redis").lower()
IDEMPOTENCY_TTL_SECONDS = int(os.getenv("IDEMPOTENCY_TTL_SECONDS", "86400"))
BOOKING_RATE_LIMIT = int(os.getenv("BOOKING_RATE_LIMIT", "20"))
BOOKING_RATE_WINDOW_SECONDS = int(os.getenv("BOOKING_RATE_WINDOW_SECONDS", "60"))

# Google Calendar OAuth Configuration (busy-time lookups only)
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")

# Round-robin fairness: member load is counted over this trailing window
ROUND_ROBIN_LOAD_WINDOW_DAYS = int(os.getenv("ROUND_ROBIN_LOAD_WINDOW_DAYS", "30"))

# CORS
ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",") if o.strip()]

# Redis (key-value store and arq queue). REDIS_URL wins when set.
REDIS_URL = os.getenv("REDIS_URL")
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
REDIS_DB = int(os.getenv("REDIS_DB", "0"))
REDIS_SSL = os.getenv("REDIS_SSL", "false").lower() == "true"

# ARQ worker
ARQ_MAX_JOBS = int(os.getenv("ARQ_MAX_JOBS", "20"))
ARQ_JOB_TIMEOUT = int(os.getenv("ARQ_JOB_TIMEOUT", "120"))
ARQ_KEEP_RESULT = int(os.getenv("ARQ_KEEP_RESULT", "3600"))
