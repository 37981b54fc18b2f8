"""
Health check endpoint.

Used by load balancers and monitoring to verify the service
is running and can reach its database.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from general_ledger.config import get_settings
from general_ledger.logging_config import get_logger
from general_ledger.models.base import get_db

router = APIRouter(tags=["Health"])

logger = get_logger("api.health")


@router.get("/health")
def health_check(db: Session = Depends(get_db)):
    """
    Return service health including database connectivity.

    A failed database probe reports "degraded" instead of
    raising, so the caller always gets a body back.
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except SQLAlchemyError:
        logger.warning("health_database_unreachable", exc_info=True)
        db_status = "unhealthy"

    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "service": "general-ledger-engine",
        "version": get_settings().APP_VERSION,
        "database": db_status,
    }
