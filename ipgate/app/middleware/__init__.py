"""Middleware package for the rate limiter application."""

from ipgate.app.middleware.rate_limit import RateLimitMiddleware
from ipgate.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "RateLimitMiddleware",
    "RequestIdMiddleware",
    "get_request_id",
]
