"""
OpenCart store database module.
"""

from pricesync.opencart.client import (
    OpenCartClient,
    OpenCartClientError,
    StoreConnectionError,
    StoreQueryError,
    ProductNotFoundError,
    BackupError,
    build_ssl_context,
)
from pricesync.opencart.products import (
    ProductValues,
    UpdateFields,
    UpdateOutcome,
    FieldChange,
)
from pricesync.opencart.backups import (
    BackupHandle,
    RestoreResult,
    make_backup_name,
    parse_backup_name,
)
from pricesync.opencart.connector import (
    StoreConnector,
    ClientRegistry,
    ConnectionTestResult,
    check_connection,
    suggest_tier,
)

__all__ = [
    "OpenCartClient",
    "OpenCartClientError",
    "StoreConnectionError",
    "StoreQueryError",
    "ProductNotFoundError",
    "BackupError",
    "build_ssl_context",
    "ProductValues",
    "UpdateFields",
    "UpdateOutcome",
    "FieldChange",
    "BackupHandle",
    "RestoreResult",
    "make_backup_name",
    "parse_backup_name",
    "StoreConnector",
    "ClientRegistry",
    "ConnectionTestResult",
    "check_connection",
    "suggest_tier",
]
