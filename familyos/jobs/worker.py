"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable. By default the job runs once; pass --loop (or set WORKER_LOOP=1)
to keep running it on the job's interval.

    python -m familyos.jobs.worker channel_renewal --loop
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from familyos.config import settings
from familyos.container import ServiceContainer
from familyos.db.pool import db_pool
from familyos.infrastructure.observability.logging import (
    bind_log_context,
    get_logger,
    setup_logging,
)
from familyos.jobs.channel_renewal_job import JOB_INTERVAL_HOURS as RENEWAL_INTERVAL_HOURS
from familyos.jobs.channel_renewal_job import run_channel_renewal_job
from familyos.jobs.intelligence_job import JOB_INTERVAL_HOURS as INTELLIGENCE_INTERVAL_HOURS
from familyos.jobs.intelligence_job import run_intelligence_job
from familyos.jobs.maintenance_job import (
    CLEANUP_INTERVAL_HOURS,
    EXPIRE_INTERVAL_MINUTES,
    run_cleanup_actions_job,
    run_cleanup_memory_job,
    run_expire_actions_job,
)
from familyos.services.infrastructure.background_runner import BackgroundTaskRunner

logger = get_logger(__name__)

JobCoroutine = Callable[[ServiceContainer], Awaitable[dict]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "channel_renewal": run_channel_renewal_job,
    "expire_actions": run_expire_actions_job,
    "cleanup_actions": run_cleanup_actions_job,
    "cleanup_memory": run_cleanup_memory_job,
    "intelligence": run_intelligence_job,
}

JOB_INTERVAL_SECONDS: dict[str, float] = {
    "channel_renewal": RENEWAL_INTERVAL_HOURS * 3600,
    "expire_actions": EXPIRE_INTERVAL_MINUTES * 60,
    "cleanup_actions": CLEANUP_INTERVAL_HOURS * 3600,
    "cleanup_memory": CLEANUP_INTERVAL_HOURS * 3600,
    "intelligence": INTELLIGENCE_INTERVAL_HOURS * 3600,
}

ERROR_BACKOFF_SECONDS = 60


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    args = [arg for arg in sys.argv[1:] if not arg.startswith("--")]
    if args:
        return args[0].strip().lower()
    return os.getenv("WORKER_JOB", "channel_renewal").strip().lower()


def _resolve_loop() -> bool:
    if "--loop" in sys.argv[1:]:
        return True
    return os.getenv("WORKER_LOOP", "").strip().lower() in ("1", "true", "yes")


async def run_job_loop(
    name: str, container: ServiceContainer, interval_seconds: float | None = None
) -> None:
    """Run a job forever. A failed run is logged and retried after a short backoff."""
    job = JOB_REGISTRY[name]
    interval = interval_seconds or JOB_INTERVAL_SECONDS.get(name, 3600)
    logger.info("Starting job scheduler", job=name, interval_seconds=interval)

    while True:
        try:
            await job(container)
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Job scheduler stopped", job=name)
            raise
        except Exception as e:
            logger.error(
                "Error in job scheduler", job=name, error=str(e), error_type=type(e).__name__
            )
            await asyncio.sleep(ERROR_BACKOFF_SECONDS)


async def run_worker(
    job_name: str | None = None,
    *,
    loop: bool = False,
    container: ServiceContainer | None = None,
) -> dict | None:
    """
    Run the requested background job.

    Without an injected container, the database pool and production services
    are set up for the duration of the run and torn down afterwards.
    """
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    bind_log_context(job=name)
    logger.info("Starting background worker", job=name, loop=loop)

    if container is not None:
        if loop:
            await run_job_loop(name, container)
            return None
        return await JOB_REGISTRY[name](container)

    owns_pool = not db_pool.initialized
    if owns_pool:
        await db_pool.initialize()

    runner = BackgroundTaskRunner(settings.BACKGROUND_WORKERS, settings.BACKGROUND_QUEUE_SIZE)
    owned = ServiceContainer.from_settings(runner)
    try:
        if loop:
            await run_job_loop(name, owned)
            return None
        return await JOB_REGISTRY[name](owned)
    finally:
        await owned.close()
        if owns_pool:
            await db_pool.close()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.log_level, json_logs=not settings.debug)
    asyncio.run(run_worker(_resolve_job_name(), loop=_resolve_loop()))


if __name__ == "__main__":
    main()
