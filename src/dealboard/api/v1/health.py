"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.dealboard.config import get_settings
from src.dealboard.core.database import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check.

    No external dependencies are checked -- just that the server is running.
    """
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check database connectivity and board initialization."""
    checks: dict = {"database": "ok", "boards": "ok"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    boards = getattr(request.app.state, "boards", None)
    if not boards:
        checks["boards"] = "none"

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: verifies the database and that at least one board is up.

    Returns 200 if all pass, 503 otherwise.
    """
    checks = await _check_dependencies(request)
    all_healthy = checks.get("database") == "ok" and checks.get("boards") == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )
