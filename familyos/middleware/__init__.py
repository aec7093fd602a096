"""
Middleware components for request processing.

This package contains:
- Rate limiting (per-user limits on the agent routes)
"""

from familyos.middleware.rate_limit_dependencies import get_rate_limiter, rate_limit_user
from familyos.middleware.rate_limiter import RateLimiter

__all__ = [
    "RateLimiter",
    "get_rate_limiter",
    "rate_limit_user",
]
