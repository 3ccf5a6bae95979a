"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from loopeco.config import get_settings
from loopeco.database import get_session
from loopeco.notifications.outbox import count_pending
from loopeco.redis_client import get_redis_or_none

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe: returns 200 if the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Readiness probe: checks the store and, when configured, Redis."""
    checks: dict[str, object] = {}

    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    redis = get_redis_or_none()
    if redis is None:
        checks["redis"] = "not configured"
    else:
        try:
            await redis.ping()
            checks["redis"] = "ok"
        except Exception as exc:
            checks["redis"] = f"error: {exc}"

    ready = checks["database"] == "ok" and checks["redis"] in ("ok", "not configured")
    body: dict[str, object] = {"status": "ready" if ready else "degraded", "checks": checks}
    if checks["database"] == "ok":
        body["outbox_pending"] = await count_pending(db)
    return body


@router.get("/version")
async def version() -> dict[str, str]:
    """Return API version and environment."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
