# linkme/routes/health.py
"""
Health check endpoints with Redis, database pool and configuration checks.
"""

import time

from fastapi import APIRouter

from linkme.config import settings
from linkme.db.pool import db_health_check
from linkme.infrastructure.observability.logging import log_health_check
from linkme.services.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "linkme"}


@router.get("/readyz")
async def readyz():
    """Readiness check across Redis, the optional event database and configuration."""
    checks = {}
    overall_ok = True

    # 1) Redis holds records and queues, so it gates readiness
    t0 = time.time()
    try:
        redis_ok = await fast_redis.ping()
        latency_ms = round((time.time() - t0) * 1000, 1)
        checks["redis"] = {"ok": bool(redis_ok), "latency_ms": latency_ms}
        log_health_check("redis", bool(redis_ok), latency_ms)
        overall_ok = overall_ok and bool(redis_ok)
    except Exception as e:
        checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Event database, only when configured
    if settings.event_log_enabled():
        t0 = time.time()
        try:
            db_health = await db_health_check()
            is_healthy = db_health.get("healthy", False)
            checks["database"] = {
                "ok": is_healthy,
                "latency_ms": round((time.time() - t0) * 1000, 1),
            }
            if not is_healthy:
                checks["database"]["error"] = db_health.get("error", "Database unhealthy")
            overall_ok = overall_ok and is_healthy
        except Exception as e:
            checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
            overall_ok = False

    # 3) Configuration checks
    config_issues = []
    if not settings.WEBHOOK_SECRET:
        config_issues.append("WEBHOOK_SECRET not set")
    if not settings.EXECUTOR_BASE_URL:
        config_issues.append("EXECUTOR_BASE_URL not set")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
