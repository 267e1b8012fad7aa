"""
VaultSync Server - Main FastAPI Application

This module contains the main FastAPI application for the VaultSync server.
It serves the file synchronization API: sync sessions, checksums, quota
and file history.
"""

import logging
from logging.handlers import RotatingFileHandler
from datetime import datetime
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from managers.database_manager import DatabaseManager
from managers.blob_manager import BlobManager
from exceptions import (
    VaultSyncError, IntegrityError, QuotaExceededError, ConflictDetected,
    StaleCursorError, NotFoundError, StorageError
)
from maintenance import RunMaintenance

# Configure logging to write to both console and file
logs_dir = Path("logs")
logs_dir.mkdir(exist_ok=True)

log_filename = logs_dir / f"vaultsync-server-{datetime.now().strftime('%Y-%m-%d')}.log"

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        # Console handler
        logging.StreamHandler(),
        # File handler with rotation (max 10MB per file, keep 10 backup files)
        RotatingFileHandler(
            log_filename,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=10,
            encoding='utf-8'
        )
    ]
)
logger = logging.getLogger(__name__)

# Import database module for shared manager instances
import database


# ==================== Lifespan Events ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan event handler for startup and shutdown
    Manages database and blob storage initialization
    """
    logger.info("VaultSync Server starting up...")

    # Tests install their own managers before startup
    if database.db_manager is None:
        database.db_manager = DatabaseManager()
    if database.blob_manager is None:
        database.blob_manager = BlobManager()

    # Creates tables if needed, but won't recreate admin if exists
    admin_password = database.db_manager.InitializeDatabase()
    if admin_password:
        logger.warning("=" * 60)
        logger.warning("NEW ADMIN USER CREATED")
        logger.warning(f"Username: admin")
        logger.warning(f"Password: {admin_password}")
        logger.warning("SAVE THIS PASSWORD - IT WILL NOT BE SHOWN AGAIN!")
        logger.warning("=" * 60)

    logger.info("Database initialized successfully")

    database.blob_manager.InitializeStorage()
    logger.info("Blob storage initialized successfully")

    RunMaintenance(database.db_manager, database.blob_manager)

    logger.info("Server startup complete")

    yield

    logger.info("VaultSync Server shutting down...")
    logger.info("Shutdown complete")


# ==================== FastAPI Application ====================

app = FastAPI(
    title="VaultSync Server",
    description="Multi-device file synchronization server",
    version="1.0.0",
    lifespan=lifespan
)

# ==================== CORS Middleware ====================

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== Error Handlers ====================

ERROR_STATUS_CODES = [
    (IntegrityError, 422),
    (QuotaExceededError, 507),
    (StaleCursorError, 410),
    (NotFoundError, 404),
    (ConflictDetected, 409),
    (StorageError, 503),
]


@app.exception_handler(VaultSyncError)
async def sync_error_handler(request: Request, exc: VaultSyncError):
    """Report sync errors with their kind and details"""
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES if isinstance(exc, error_type)),
        500
    )
    return JSONResponse(status_code=status_code, content=exc.ToDict())


@app.exception_handler(ValueError)
async def invalid_request_handler(request: Request, exc: ValueError):
    """Invalid input rejected by the sync subsystem"""
    return JSONResponse(status_code=400, content={"error": "invalid_request", "message": str(exc)})


# ==================== Import Routers ====================

from routes import status, auth, sync, checksums, quota, files, settings


# ==================== Include Routers ====================

app.include_router(status.router)
app.include_router(auth.router)
app.include_router(sync.router)
app.include_router(checksums.router)
app.include_router(quota.router)
app.include_router(files.router)
app.include_router(settings.router)


# ==================== Main Entry Point ====================

if __name__ == "__main__":
    """
    Run the server using uvicorn
    """
    logger.info("Starting VaultSync Server...")

    # host="0.0.0.0" allows connections from other machines on the network
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
        log_level="info"
    )
