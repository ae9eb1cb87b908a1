import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from beacon.database import async_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict:
    """Basic health check."""
    return {"status": "ok", "service": "beacon"}


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: verifies the database is reachable."""
    checks: dict[str, str] = {}

    try:
        async with async_session() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.warning(f"Database readiness check failed: {e}")
        checks["database"] = "unavailable"

    if not all(v == "ok" for v in checks.values()):
        return JSONResponse(
            status_code=503,
            content={"status": "degraded", "checks": checks},
        )

    return {"status": "ready", "checks": checks}
