"""Health check endpoints"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from oz_locator.database import get_db
from oz_locator.routers.zones import get_zone_service
from oz_locator.services.zone_service import ZoneService

router = APIRouter()


@router.get("/healthz")
async def health_check():
    """Basic health check"""
    return {"status": "healthy", "service": "oz-locator"}


@router.get("/readyz")
async def readiness_check(
    db: Session = Depends(get_db),
    service: ZoneService = Depends(get_zone_service),
):
    """Readiness check with dependencies"""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        raise HTTPException(
            status_code=503,
            detail=f"Service not ready: {str(e)}"
        )

    return {
        "status": "ready",
        "service": "oz-locator",
        "dependencies": {
            "database": "healthy",
            "zones": service.state.value,
        }
    }
