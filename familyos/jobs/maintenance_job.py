"""
Maintenance jobs: expire stale pending actions, purge old terminal actions
and drop expired agent memories.
"""

from familyos.container import ServiceContainer
from familyos.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

EXPIRE_INTERVAL_MINUTES = 15
CLEANUP_INTERVAL_HOURS = 24


async def run_expire_actions_job(container: ServiceContainer) -> dict:
    count = await container.workflow.expire_stale()
    logger.info("Expire actions job completed", expired=count, job_run="expire_actions")
    return {"job_run": "expire_actions", "count": count}


async def run_cleanup_actions_job(container: ServiceContainer) -> dict:
    retention_days = container.config.ACTION_RETENTION_DAYS
    count = await container.workflow.cleanup_old(retention_days)
    logger.info(
        "Cleanup actions job completed",
        deleted=count,
        retention_days=retention_days,
        job_run="cleanup_actions",
    )
    return {"job_run": "cleanup_actions", "count": count}


async def run_cleanup_memory_job(container: ServiceContainer) -> dict:
    count = await container.memory.cleanup_expired()
    return {"job_run": "cleanup_memory", "count": count}
