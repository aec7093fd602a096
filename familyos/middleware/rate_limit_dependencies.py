"""
Rate Limit Dependencies - per-user limiting for the agent routes.

Usage:
    @router.post("/actions")
    async def create_action(
        identity: Identity = Depends(household_identity),
        _rate: None = Depends(rate_limit_user),
    ):
        ...

The limiter itself lives on app.state (see main.lifespan). The provider
webhook is never rate limited.
"""

from fastapi import Depends, HTTPException, Request, status

from familyos.auth.verify import auth_dependency
from familyos.config import settings
from familyos.infrastructure.observability.logging import get_logger
from familyos.middleware.rate_limiter import RateLimiter

logger = get_logger(__name__)


def get_rate_limiter(request: Request) -> RateLimiter | None:
    return getattr(request.app.state, "rate_limiter", None)


async def rate_limit_user(
    request: Request,
    claims: dict = Depends(auth_dependency),
) -> None:
    """
    Raises:
        HTTPException: 429 if the user exceeded the agent route limit
    """
    if not settings.RATE_LIMIT_ENABLED:
        return

    limiter = get_rate_limiter(request)
    if limiter is None:
        return

    user_id = claims.get("sub")
    if not user_id:
        logger.warning("Rate limit check skipped - no user_id in claims")
        return

    allowed, info = await limiter.check_user_rate_limit(
        user_id, limit=settings.RATE_LIMIT_AGENT_PER_MINUTE
    )
    request.state.rate_limit_info = info

    if not allowed:
        logger.warning(
            "User rate limit exceeded",
            user_id=user_id,
            limit=info["limit"],
            retry_after=info["retry_after"],
            path=request.url.path,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "rate_limit_exceeded",
                "message": f"Too many requests. Try again in {info['retry_after']} seconds.",
                "limit": info["limit"],
                "retry_after": info["retry_after"],
            },
            headers={"Retry-After": str(info["retry_after"])},
        )
