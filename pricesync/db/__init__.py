"""
Database package - SQLite only.
"""

from .models import (
    BackupRecord, CamelModel, ConnectionParams, DbConnection, DbConnectionUpsert,
    Price, Store, StoreCreate, UpdateDetail, UpdateJob, UpdateOptions, UpdateStatus
)
from .sqlite import SQLiteDatabase

__all__ = [
    "SQLiteDatabase",
    "BackupRecord",
    "CamelModel",
    "ConnectionParams",
    "DbConnection",
    "DbConnectionUpsert",
    "Price",
    "Store",
    "StoreCreate",
    "UpdateDetail",
    "UpdateJob",
    "UpdateOptions",
    "UpdateStatus",
]
