"""
FastAPI dependency injection.
Global database, store client registry and update orchestrator.
"""

import logging
from typing import Optional

from .config import settings
from .db import SQLiteDatabase
from .opencart import ClientRegistry
from .processor import StoreResolver, UpdateOrchestrator

logger = logging.getLogger(__name__)


# Global instances (initialized on startup)
_db: Optional[SQLiteDatabase] = None
_registry: Optional[ClientRegistry] = None
_resolver: Optional[StoreResolver] = None
_orchestrator: Optional[UpdateOrchestrator] = None


async def init_dependencies():
    """Initialize global dependencies. Called on app startup."""
    global _db, _registry, _resolver, _orchestrator

    _db = SQLiteDatabase(settings.database_path)
    await _db.initialize()

    orphaned = await _db.fail_orphaned_updates()
    if orphaned:
        logger.warning(f"Marked {orphaned} interrupted update(s) as failed")

    _registry = ClientRegistry(settings)
    _resolver = StoreResolver(_db, _registry)
    _orchestrator = UpdateOrchestrator(_db, _resolver, settings)


async def close_dependencies():
    """Close global dependencies. Called on app shutdown."""
    global _db, _registry, _resolver, _orchestrator

    if _orchestrator:
        await _orchestrator.wait()
    if _registry:
        await _registry.close()
    if _db:
        await _db.close()

    _db = _registry = _resolver = _orchestrator = None


def get_db() -> SQLiteDatabase:
    """Get the database instance."""
    if _db is None:
        raise RuntimeError("Database not initialized")
    return _db


def get_registry() -> ClientRegistry:
    """Get the store client registry."""
    if _registry is None:
        raise RuntimeError("Client registry not initialized")
    return _registry


def get_resolver() -> StoreResolver:
    if _resolver is None:
        raise RuntimeError("Store resolver not initialized")
    return _resolver


def get_orchestrator() -> UpdateOrchestrator:
    if _orchestrator is None:
        raise RuntimeError("Update orchestrator not initialized")
    return _orchestrator
