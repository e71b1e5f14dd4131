"""Health check endpoint."""

import sqlite3
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter

from fe1prep.db.database import get_db
from fe1prep.web.schemas import HealthResponse

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])

API_VERSION = "0.1.0"


def _database_status() -> str:
    try:
        with get_db() as conn:
            conn.execute("SELECT 1")
    except sqlite3.Error as e:
        logger.warning("health_database_unavailable", error=str(e))
        return "unavailable"
    return "ok"


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Report API and database status."""
    return HealthResponse(
        status="ok",
        version=API_VERSION,
        database=_database_status(),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
