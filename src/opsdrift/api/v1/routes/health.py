"""
Health Check API Routes
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from opsdrift.config.settings import get_settings
from opsdrift.database import check_database_health
from opsdrift.utils.timeutils import utc_now

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check():
    """Database connectivity plus version information."""
    settings = get_settings()
    database = await check_database_health()
    healthy = database["status"] == "healthy"
    body = {
        "status": "healthy" if healthy else "unhealthy",
        "version": settings.version,
        "components": {"database": database},
        "timestamp": utc_now().isoformat(),
    }
    return JSONResponse(status_code=200 if healthy else 503, content=body)
