# familyos/routes/cron.py
"""
Scheduled sweep endpoints, called by an external scheduler.

Guarded by `Authorization: Bearer <CRON_SECRET>`. Every sweep is safe to run
redundantly.
"""

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, status

from familyos.config import settings
from familyos.container import ServiceContainer, get_container
from familyos.infrastructure.observability.logging import get_logger
from familyos.models.api.cron_response import ChannelRenewalResponse, CountResponse, SweepResponse

logger = get_logger(__name__)


def verify_cron_secret(authorization: str | None = Header(None)) -> None:
    if not settings.cron_secret_required():
        return

    if not settings.CRON_SECRET:
        logger.error("CRON_SECRET not configured in production")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cron secret not configured"
        )

    expected = f"Bearer {settings.CRON_SECRET}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


router = APIRouter(
    prefix="/api/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)]
)


@router.api_route("/channels/renew", methods=["GET", "POST"], response_model=ChannelRenewalResponse)
async def renew_channels(container: ServiceContainer = Depends(get_container)):
    """Renew channels expiring inside the window, then open channels for calendars without one."""
    renewed = await container.subscriptions.renew_expiring(container.renewal_window)
    registered = await container.subscriptions.register_all_missing()
    return ChannelRenewalResponse(
        renewed=SweepResponse.from_sweep(renewed),
        registered=SweepResponse.from_sweep(registered),
    )


@router.api_route("/actions/expire", methods=["GET", "POST"], response_model=CountResponse)
async def expire_actions(container: ServiceContainer = Depends(get_container)):
    count = await container.workflow.expire_stale()
    return CountResponse(job="expire_actions", count=count)


@router.api_route("/actions/cleanup", methods=["GET", "POST"], response_model=CountResponse)
async def cleanup_actions(container: ServiceContainer = Depends(get_container)):
    count = await container.workflow.cleanup_old(container.config.ACTION_RETENTION_DAYS)
    return CountResponse(job="cleanup_actions", count=count)


@router.api_route("/memory/cleanup", methods=["GET", "POST"], response_model=CountResponse)
async def cleanup_memory(container: ServiceContainer = Depends(get_container)):
    count = await container.memory.cleanup_expired()
    return CountResponse(job="cleanup_memory", count=count)


@router.api_route("/intelligence", methods=["GET", "POST"], response_model=SweepResponse)
async def run_intelligence(container: ServiceContainer = Depends(get_container)):
    sweep = await container.analyzer.analyze_all_households()
    return SweepResponse.from_sweep(sweep)
