"""
Status and health check endpoints.

WHAT: Health monitoring for the database
WHY: Quick diagnostics for agents and ops
HOW: FastAPI endpoint calling the database ping
"""

from fastapi import APIRouter

from ....core.config import settings
from ....core.database import ping_database

router = APIRouter()


@router.get("/status")
async def health_check():
    """
    Overall application health check.

    Returns:
        JSON with overall status, version and database availability
    """
    db_status = ping_database()

    return {
        "status": "healthy" if db_status["available"] else "degraded",
        "version": settings.APP_VERSION,
        "app_name": settings.APP_NAME,
        "components": {
            "database": db_status,
        },
    }
