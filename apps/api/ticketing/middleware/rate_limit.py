from __future__ import annotations

import time

import structlog
from fastapi import Request
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from ticketing.core.config import settings
from ticketing.redis_client import get_redis

logger = structlog.get_logger(__name__)

PAYMENT_PATH_PREFIX = "/v1/payments/"

_WINDOWS = {
    "sec": 1,
    "second": 1,
    "seconds": 1,
    "min": 60,
    "minute": 60,
    "minutes": 60,
    "hour": 3600,
    "hours": 3600,
    "day": 86400,
    "days": 86400,
}


def parse_rate(rate: str) -> tuple[int, int]:
    """Parse ``"<limit>/<window>"`` (e.g. ``"60/minute"``) into (limit, window_seconds)."""
    raw = rate.strip().lower()
    if "/" not in raw:
        raise ValueError(f"Invalid rate format: {rate}")

    limit_str, window_str = raw.split("/", 1)
    window = _WINDOWS.get(window_str.strip())
    if window is None:
        raise ValueError(f"Invalid rate window: {window_str}")
    return int(limit_str), window


def rate_for_path(path: str) -> str:
    if path.startswith(PAYMENT_PATH_PREFIX):
        return settings.rate_limit_payments
    return settings.rate_limit_default


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window limiter keyed by client IP, method and path; fails open."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if not settings.rate_limit_enabled or request.method == "OPTIONS":
            return await call_next(request)

        path = request.url.path
        # The gateway retries webhooks on its own schedule; never throttle it.
        if path in set(settings.rate_limit_exempt_paths):
            return await call_next(request)

        try:
            limit, window_seconds = parse_rate(rate_for_path(path))
        except ValueError:
            logger.warning("rate_limit_misconfigured", path=path)
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = int(time.time())
        bucket = now // window_seconds
        reset = (bucket + 1) * window_seconds
        key = f"rl:{client_ip}:{request.method}:{path}:{window_seconds}:{bucket}"

        try:
            r = get_redis()
            count = int(r.incr(key))
            if count == 1:
                r.expire(key, window_seconds)
        except RedisError:
            logger.warning("rate_limit_redis_unavailable")
            return await call_next(request)

        if count > limit:
            logger.info("rate_limited", client_ip=client_ip, path=path, limit=limit)
            return JSONResponse(
                status_code=429,
                content={"detail": {"code": "RATE_LIMITED", "message": "rate limit exceeded"}},
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(reset),
                    "Retry-After": str(max(0, reset - now)),
                },
            )

        response = await call_next(request)
        response.headers.setdefault("X-RateLimit-Limit", str(limit))
        response.headers.setdefault("X-RateLimit-Remaining", str(max(0, limit - count)))
        response.headers.setdefault("X-RateLimit-Reset", str(reset))
        return response
