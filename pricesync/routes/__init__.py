"""
Routes package.
"""

from .spreadsheet import router as spreadsheet_router
from .updates import router as updates_router
from .backups import router as backups_router
from .database import router as database_router
from .stores import router as stores_router
from .dashboard import router as dashboard_router

__all__ = [
    "spreadsheet_router",
    "updates_router",
    "backups_router",
    "database_router",
    "stores_router",
    "dashboard_router",
]
