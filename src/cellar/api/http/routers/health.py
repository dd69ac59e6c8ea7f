"""Health check endpoints router for monitoring service availability."""

from typing import Any

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool
from starlette.responses import JSONResponse

from src.cellar.api.http.app_data import ApplicationDependencies
from src.cellar.api.http.deps import get_app_dependencies
from src.cellar.runtime.context import get_config

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health() -> dict[str, str]:
    """Liveness probe: 200 as long as the process is serving requests."""
    return {"status": "healthy", "service": "cellar"}


@router.get("/ready", response_model=None)
async def readiness(
    app_deps: ApplicationDependencies = Depends(get_app_dependencies),
) -> dict[str, Any] | JSONResponse:
    """Readiness probe: database reachable and uploads directory writable.

    Returns 503 when any check fails.
    """
    config = get_config()

    db_healthy = await run_in_threadpool(app_deps.database_service.health_check)
    uploads_writable = await run_in_threadpool(app_deps.upload_store.is_writable)

    checks = {
        "database": {
            "status": "healthy" if db_healthy else "unhealthy",
            "type": config.database.url.split(":", 1)[0],
        },
        "uploads": {
            "status": "healthy" if uploads_writable else "unhealthy",
            "directory": str(app_deps.upload_store.root),
        },
    }
    ready = db_healthy and uploads_writable
    response = {
        "status": "ready" if ready else "not_ready",
        "environment": config.app.environment,
        "checks": checks,
    }
    if not ready:
        return JSONResponse(status_code=503, content=response)
    return response
