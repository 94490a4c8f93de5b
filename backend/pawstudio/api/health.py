"""
Health check endpoint.
Verifies database connectivity and reports whether object storage is configured.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from pawstudio.database import get_db
from pawstudio.storage.b2_client import B2Client, get_b2_client

router = APIRouter()


@router.get("")
async def health_check(
    db: AsyncSession = Depends(get_db),
    storage: B2Client = Depends(get_b2_client),
):
    """
    Health check endpoint.
    Only the database decides healthy or unhealthy; storage is informational.
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "storage": "configured" if storage.is_configured else "not_configured",
    }

    try:
        await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except SQLAlchemyError as e:
        health_status["database"] = f"error: {str(e)}"
        health_status["status"] = "unhealthy"

    if health_status["status"] == "unhealthy":
        raise HTTPException(status_code=503, detail=health_status)

    return health_status
