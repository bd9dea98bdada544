"""
Per-client sliding window rate limit for the batch and admin endpoints.

Every batch call can trigger paid AI generation upstream, so ``/functions/``
gets a tighter window than ``/admin/``. Health checks are never limited.
"""

import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from musicscan.config import settings


@dataclass(frozen=True)
class RateLimitRule:
    """Limit for every path under ``prefix``."""
    prefix: str
    max_requests: int
    window_seconds: int


def current_rules() -> list[RateLimitRule]:
    """Rules from settings, most specific prefix first."""
    return [
        RateLimitRule("/functions/", settings.functions_rate_limit_requests, settings.functions_rate_limit_window),
        RateLimitRule("/admin/", settings.rate_limit_requests, settings.rate_limit_window),
    ]


def match_rule(path: str) -> RateLimitRule | None:
    for rule in current_rules():
        if path.startswith(rule.prefix):
            return rule
    return None


class RateLimiter:
    """In-memory sliding window of request timestamps per key."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.windows: dict[str, deque[float]] = defaultdict(deque)

    def hit(self, key: str, rule: RateLimitRule) -> tuple[bool, int, float]:
        """
        Record a request.

        Returns:
            Tuple of (allowed, remaining requests, seconds until a slot frees up)
        """
        now = self.clock()
        window = self.windows[key]
        while window and window[0] <= now - rule.window_seconds:
            window.popleft()

        if len(window) >= rule.max_requests:
            retry_after = window[0] + rule.window_seconds - now
            return False, 0, max(0.0, retry_after)

        window.append(now)
        return True, rule.max_requests - len(window), 0.0

    def reset(self) -> None:
        self.windows.clear()


# Shared across requests of this process
rate_limiter = RateLimiter()


def get_client_ip(request: Request) -> str:
    """Client address, honouring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Answers 429 with Retry-After once a client exhausts its window."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Preflight requests are answered by CORS and cost nothing upstream
        if not settings.rate_limit_enabled or request.method == "OPTIONS":
            return await call_next(request)

        rule = match_rule(request.url.path)
        if rule is None:
            return await call_next(request)

        key = f"{get_client_ip(request)}:{rule.prefix}"
        allowed, remaining, retry_after = rate_limiter.hit(key, rule)

        if not allowed:
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": "Rate limit exceeded",
                    "retry_after": round(retry_after, 1),
                },
                headers={
                    "Retry-After": str(int(retry_after) + 1),
                    "X-RateLimit-Limit": str(rule.max_requests),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rule.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
