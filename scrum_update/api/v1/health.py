"""
Probes for load balancers and orchestrators.
"""

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scrum_update.api.deps import get_session_factory
from scrum_update.core.config import settings
from scrum_update.core.logging import get_logger
from scrum_update.domain.scrum_update import utc_now

logger = get_logger(__name__)

router = APIRouter()


async def check_database(session_factory: async_sessionmaker[AsyncSession]) -> bool:
    try:
        async with session_factory() as db:
            await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database ping failed", error=str(e))
        return False
    return True


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Report the process as up without touching dependencies."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "environment": settings.app_env,
        "timestamp": utc_now().isoformat(),
    }


@router.get("/health/ready")
async def readiness_check(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict[str, Any]:
    """Ready once the session and scrum tables can be queried."""
    checks = {"app": True, "database": await check_database(session_factory)}
    return {
        "status": "ready" if all(checks.values()) else "not_ready",
        "checks": checks,
        "timestamp": utc_now().isoformat(),
    }


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
