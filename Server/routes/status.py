"""
VaultSync Server - Status Endpoints

Health check for monitoring.
"""

from datetime import datetime, timezone
from fastapi import APIRouter
from sqlalchemy import text


# Create router instance
router = APIRouter()


# ==================== Health Check Endpoint ====================

@router.get("/health", tags=["Status"])
async def health_check():
    """
    Health check endpoint to verify server is running

    Returns:
        dict: Server status information
    """
    from database import db_manager

    database_ok = True
    session = db_manager.GetSession()
    try:
        session.execute(text("SELECT 1"))
    except Exception:
        database_ok = False
    finally:
        session.close()

    return {
        "status": "healthy" if database_ok else "degraded",
        "service": "VaultSync Server",
        "version": "1.0.0",
        "database": "ok" if database_ok else "unavailable",
        "timestamp_utc": datetime.now(timezone.utc).isoformat()
    }
