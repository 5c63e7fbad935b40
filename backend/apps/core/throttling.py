"""
Reusable rate limiting utilities for API endpoints.

Uses Django's cache framework for distributed rate limiting across workers.

Usage::

    from apps.core.throttling import check_rate_limit

    check_rate_limit(f"check_user:{client_ip}", max_requests=5, window_seconds=60)

RateLimitExceeded is a ServiceError, so endpoints can let it propagate and the
API exception handler renders a 429 with a Retry-After header.
"""

from django.core.cache import cache

from apps.core.exceptions import RateLimitExceeded
from apps.core.logging import get_logger

logger = get_logger(__name__)

__all__ = ["RateLimitExceeded", "check_rate_limit"]


def check_rate_limit(
    key: str,
    *,
    max_requests: int,
    window_seconds: int,
) -> None:
    """
    Check and increment a rate limit counter.

    Uses ``cache.add()`` + ``cache.incr()`` for near-atomic increments.
    ``add()`` is a no-op when the key exists, so concurrent first requests
    do not reset each other's counts.

    Args:
        key: Cache key identifying the rate limit bucket
            (e.g., "auth_options:203.0.113.7").
        max_requests: Maximum allowed requests within the window.
        window_seconds: Time window in seconds.

    Raises:
        RateLimitExceeded: If the limit has been reached.
    """
    cache_key = f"rate_limit:{key}"

    cache.add(cache_key, 0, timeout=window_seconds)

    try:
        current = cache.incr(cache_key)
    except ValueError:
        # Key expired between add() and incr(), treat as first request
        cache.set(cache_key, 1, timeout=window_seconds)
        return

    if current > max_requests:
        logger.warning("rate_limit_exceeded", key=key, limit=max_requests, window=window_seconds)
        raise RateLimitExceeded(retry_after=window_seconds)
