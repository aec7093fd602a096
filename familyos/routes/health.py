# familyos/routes/health.py
"""
Health endpoints: liveness, and readiness with database pool and
background runner status.
"""

import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from familyos.config import settings
from familyos.db.pool import db_health_check
from familyos.infrastructure.observability.logging import log_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "familyos"}


@router.get("/health")
async def health(request: Request):
    checks = {}
    overall_ok = True

    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)
        checks["database"] = {"ok": is_healthy, "latency_ms": round((time.time() - t0) * 1000, 1)}
        if "pool_stats" in db_health:
            checks["database"]["pool_stats"] = db_health["pool_stats"]
        if "warnings" in db_health:
            checks["database"]["warnings"] = db_health["warnings"]
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    log_health_check(
        "database",
        checks["database"]["ok"],
        checks["database"].get("latency_ms", 0.0),
        checks["database"].get("error"),
    )

    runner = getattr(request.app.state, "runner", None)
    if runner is not None:
        runner_status = runner.status()
        checks["background_runner"] = {"ok": runner_status["running"], **runner_status}
        overall_ok = overall_ok and runner_status["running"]
    else:
        checks["background_runner"] = {"ok": False, "error": "not started"}
        overall_ok = False

    limiter = getattr(request.app.state, "rate_limiter", None)
    checks["rate_limiter"] = {
        "ok": True,
        "enabled": settings.RATE_LIMIT_ENABLED,
        "backend": limiter.backend if limiter is not None else None,
    }

    body = {
        "overall_ok": overall_ok,
        "checks": checks,
        "environment": settings.environment,
        "timestamp": time.time(),
    }
    return JSONResponse(status_code=200 if overall_ok else 503, content=body)
