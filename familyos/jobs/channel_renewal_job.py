"""
Channel renewal job.

Push channels expire after about a week. Each run renews the channels that
expire inside the renewal window, then opens channels for included
calendars that have none. Safe to run redundantly.
"""

from familyos.container import ServiceContainer
from familyos.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

JOB_INTERVAL_HOURS = 6


async def run_channel_renewal_job(container: ServiceContainer) -> dict:
    renewed = await container.subscriptions.renew_expiring(container.renewal_window)
    registered = await container.subscriptions.register_all_missing()

    logger.info(
        "Channel renewal job completed",
        renewed=renewed.succeeded,
        renew_failures=renewed.failed,
        registered=registered.succeeded,
        register_failures=registered.failed,
        job_run="channel_renewal",
    )
    return {"renewed": renewed.to_dict(), "registered": registered.to_dict()}
