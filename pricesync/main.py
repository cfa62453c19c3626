"""
OpenCart Price Sync - Main Application
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .dependencies import init_dependencies, close_dependencies
from .routes import (
    spreadsheet_router, updates_router, backups_router,
    database_router, stores_router, dashboard_router
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Starting OpenCart Price Sync...")
    await init_dependencies()
    logger.info("Application ready")
    yield
    logger.info("Shutting down...")
    await close_dependencies()


# Create app
app = FastAPI(
    title="OpenCart Price Sync",
    description="Push spreadsheet prices, tier prices and quantities to OpenCart stores",
    version="1.0.0",
    lifespan=lifespan
)

# Include routers
app.include_router(spreadsheet_router)
app.include_router(updates_router)
app.include_router(backups_router)
app.include_router(database_router)
app.include_router(stores_router)
app.include_router(dashboard_router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "pricesync.main:app",
        host=settings.host,
        port=settings.port,
        reload=True
    )
