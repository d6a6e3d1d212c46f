"""
Fixed-window rate limiting on top of the shared key-value store
"""

import logging
import time

from fastapi import Depends, HTTPException, Request, status

from .kv_store import KeyValueStore, get_kv_store

logger = logging.getLogger(__name__)


def check_rate_limit(
    store: KeyValueStore, key: str, limit: int, window_seconds: int
) -> tuple[bool, int, int]:
    """Check if rate limit is exceeded

    Args:
        store: Shared key-value store
        key: Key for this rate limit
        limit: Maximum number of requests allowed
        window_seconds: Time window in seconds

    Returns:
        Tuple of (is_allowed, current_count, ttl_seconds)
    """
    current_count, ttl = store.hit(key, window_seconds)
    return current_count <= limit, current_count, ttl


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def rate_limit_dependency(
    request: Request,
    store: KeyValueStore,
    limit: int,
    window_seconds: int,
    key_prefix: str = "rate_limit",
    use_ip: bool = True,
):
    """
    FastAPI dependency for rate limiting

    Args:
        request: FastAPI request object
        store: Shared key-value store
        limit: Maximum requests allowed
        window_seconds: Time window in seconds
        key_prefix: Prefix for the store key
        use_ip: If True, use client IP in key (per-IP limit), otherwise global
    """
    key = f"{key_prefix}:{client_ip(request)}" if use_ip else f"{key_prefix}:global"

    try:
        is_allowed, current_count, ttl = check_rate_limit(store, key, limit, window_seconds)
    except Exception as e:
        logger.error(f"❌ Rate limiting error: {str(e)}")
        logger.warning("🔒 Denying request due to rate limiting error (fail-closed mode)")
        # Fail closed for security - deny request if rate limiting fails
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rate limiting service temporarily unavailable",
        ) from e

    if not is_allowed:
        logger.warning(f"🚫 Rate limit EXCEEDED for {key} - {current_count}/{limit} requests used")
        raise HTTPException(
            status_code=429,
            detail={
                "message": f"Rate limit exceeded. Maximum {limit} requests per {window_seconds} seconds.",
                "retry_after": ttl,
                "limit": limit,
                "window_seconds": window_seconds,
            },
            headers={"Retry-After": str(ttl)},
        )

    request.state.rate_limit_remaining = limit - current_count
    request.state.rate_limit_limit = limit
    request.state.rate_limit_reset = int(time.time()) + ttl


def create_rate_limiter(
    limit: int, window_seconds: int, key_prefix: str = "rate_limit", use_ip: bool = True
):
    """
    Create a rate limiter dependency with specific parameters

    Example usage:
        booking_rate_limit = create_rate_limiter(limit=20, window_seconds=60, key_prefix="bookings")

        @router.post("/bookings")
        async def create_booking(
            data: BookingCreate,
            _: None = Depends(booking_rate_limit)
        ):
            ...
    """

    async def rate_limiter(request: Request, store: KeyValueStore = Depends(get_kv_store)):
        return await rate_limit_dependency(request, store, limit, window_seconds, key_prefix, use_ip)

    return rate_limiter
