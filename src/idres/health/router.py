"""Health, readiness, and version endpoints."""

from fastapi import APIRouter
from sqlalchemy import text

from idres.config import get_settings
from idres.database import get_session_factory
from idres.dependencies import get_store

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe. Returns 200 if the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness() -> dict[str, object]:
    """Readiness probe. Checks the identity store backend."""
    settings = get_settings()
    checks: dict[str, object] = {}

    try:
        get_store()
        checks["store"] = "ok"
    except RuntimeError as exc:
        checks["store"] = f"error: {exc}"

    if settings.store_backend == "sql":
        try:
            async with get_session_factory()() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()
            checks["database"] = "ok"
        except Exception as exc:
            checks["database"] = f"error: {exc}"

    all_ok = all(v == "ok" for v in checks.values())
    return {"status": "ready" if all_ok else "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    """Return API version and environment."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
