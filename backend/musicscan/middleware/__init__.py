"""Middleware modules for MusicScan."""

from musicscan.middleware.rate_limit import RateLimitMiddleware, rate_limiter

__all__ = [
    "RateLimitMiddleware",
    "rate_limiter",
]
