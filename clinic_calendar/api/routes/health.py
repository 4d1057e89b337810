"""Health check endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_calendar import __version__
from clinic_calendar.core.database import get_db
from clinic_calendar.scheduling.timezone import ZONE_LABELS, TimeZoneConversionService

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Basic health check."""
    return {
        "status": "healthy",
        "service": "clinic-calendar",
        "version": __version__,
    }


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)) -> dict:
    """Readiness check - verifies the database and the zone database are available."""
    errors = []

    # Check database
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        errors.append(f"Database check failed: {e}")

    # Check zone data
    missing = [name for name in ZONE_LABELS if not TimeZoneConversionService.is_resolvable(name)]
    if missing:
        errors.append(f"Unresolvable zones: {', '.join(missing)}")

    if errors:
        return {
            "status": "not_ready",
            "errors": errors,
        }

    return {
        "status": "ready",
        "zones": len(ZONE_LABELS),
    }


@router.get("/health/live")
async def liveness_check() -> dict:
    """Liveness check - basic process health."""
    return {"status": "alive"}
