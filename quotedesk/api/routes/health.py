"""Health & Readiness Probes — liveness and readiness endpoints for container orchestration.

Invariants:
    - GET /health/ always returns 200 if process is up (liveness)
    - GET /health/ready returns 503 if the database or the queue storage is
      unreachable (readiness); scheduler state is reported, never gated on

Design Decisions:
    - Separate liveness/readiness: liveness restarts, readiness removes from
      load balancer
    - Queue storage is part of readiness: without it failed forwards cannot be
      held for retry
"""

import logging
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/health", tags=["health"])


@router.get("/", status_code=status.HTTP_200_OK)
async def health_check():
    """Basic liveness probe. Returns 200 if the process is up."""
    return {
        "status": "healthy",
        "service": "quotedesk-api",
        "version": "1.0.0",
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """Readiness probe — database, queue storage, retry scheduler."""
    db_manager = getattr(request.app.state, "db_manager", None)
    services = getattr(request.app.state, "services", None)

    db_ok = await db_manager.health_check() if db_manager else False
    storage_ok = services.storage.ping() if services else False
    checks = {
        "database": "healthy" if db_ok else "unavailable",
        "queue_storage": "healthy" if storage_ok else "unavailable",
        "retry_scheduler": services.scheduler.state.value if services else "unknown",
    }

    if not (db_ok and storage_ok):
        reason = "database_unavailable" if not db_ok else "queue_storage_unavailable"
        logger.warning(f"Readiness check failed: {reason}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "reason": reason, "checks": checks},
        )
    return {"status": "ready", "checks": checks}
