"""
FamilyOS API: calendar webhooks, scheduled sweeps and the agent surface.
"""

import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from familyos.config import settings
from familyos.container import ServiceContainer
from familyos.db.pool import db_pool
from familyos.infrastructure.observability.logging import (
    bind_log_context,
    clear_log_context,
    get_logger,
    setup_logging,
)
from familyos.middleware.rate_limiter import RateLimiter
from familyos.routes import agent, calendar_webhook, cron, health
from familyos.services.infrastructure.background_runner import BackgroundTaskRunner

# Setup logging before creating the app
setup_logging(log_level=settings.log_level, json_logs=not settings.debug)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    runner = BackgroundTaskRunner(settings.BACKGROUND_WORKERS, settings.BACKGROUND_QUEUE_SIZE)
    rate_limiter = RateLimiter(
        redis_url=settings.REDIS_URL, default_limit=settings.RATE_LIMIT_AGENT_PER_MINUTE
    )
    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        await runner.start()
        startup_tasks.append("background_runner")

        await rate_limiter.start()
        startup_tasks.append("rate_limiter")

        app.state.runner = runner
        app.state.rate_limiter = rate_limiter
        app.state.container = ServiceContainer.from_settings(runner)
        startup_tasks.append("services")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        # Clean up any successfully initialized services in reverse order
        if "rate_limiter" in startup_tasks:
            try:
                await rate_limiter.stop()
            except Exception as cleanup_error:
                logger.error("Error cleaning up rate limiter", error=str(cleanup_error))

        if "background_runner" in startup_tasks:
            try:
                await runner.stop()
            except Exception as cleanup_error:
                logger.error("Error cleaning up background runner", error=str(cleanup_error))

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    shutdown_errors = []

    # Drain in-flight sync work before the services it uses go away
    try:
        logger.info("Stopping background runner")
        await runner.stop()
    except Exception as e:
        logger.error("Error stopping background runner", error=str(e))
        shutdown_errors.append(f"Runner: {e}")

    try:
        await app.state.container.close()
    except Exception as e:
        logger.error("Error closing services", error=str(e))
        shutdown_errors.append(f"Services: {e}")

    try:
        await rate_limiter.stop()
    except Exception as e:
        logger.error("Error stopping rate limiter", error=str(e))
        shutdown_errors.append(f"RateLimiter: {e}")

    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="FamilyOS",
    description="Household calendar coordination and agent automation",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(calendar_webhook.router)
app.include_router(cron.router)
app.include_router(agent.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing, tagging every entry with a request id."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
    clear_log_context()
    bind_log_context(request_id=request_id)

    start_time = time.time()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
