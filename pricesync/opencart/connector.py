"""
Store connector: the per-store entry point used by validation, updates
and the connection test endpoint.
"""

import logging
import re
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Set

from ..config import Settings
from ..db.models import CamelModel, ConnectionParams, DbConnection, Store
from . import queries
from .backups import BackupHandle, RestoreResult, create_backup, restore_backup
from .client import OpenCartClient, OpenCartClientError, StoreConnectionError, validate_prefix
from .products import (
    ProductValues, UpdateFields, UpdateOutcome,
    apply_update, current_values, find_by_sku, find_skus,
)

logger = logging.getLogger(__name__)


class SecurityDetails(CamelModel):
    cipher: Optional[str] = None
    version: Optional[str] = None


class CustomerGroup(CamelModel):
    customer_group_id: int
    name: str
    suggested_tier: Optional[str] = None


class ConnectionTestResult(CamelModel):
    """Outcome of a connection test."""
    success: bool
    is_secure: bool = False
    security_details: SecurityDetails = SecurityDetails()
    customer_groups: List[CustomerGroup] = []
    message: str = ""


def suggest_tier(group_name: str, tiers: Iterable[str]) -> Optional[str]:
    """
    Guess which tier an OpenCart customer group belongs to from its name.

    Only a suggestion shown to the operator; tier mappings are saved
    explicitly and never derived from this at update time.
    """
    lower_name = (group_name or "").lower()
    tiers = list(tiers)

    if "depot" in lower_name and "depot" in tiers:
        return "depot"
    if "namibia" in lower_name or re.search(r"\bsd\b", lower_name):
        for candidate in ("namibia_sd", "warehouse"):
            if candidate in tiers:
                return candidate
    for tier in tiers:
        if tier.replace("_", " ") in lower_name:
            return tier
    return None


async def run_connection_test(client: OpenCartClient, tiers: Iterable[str]) -> ConnectionTestResult:
    """
    Check liveness, report TLS status, and list customer groups.

    Never raises: failures are reported in the result.
    """
    try:
        await client.fetch_one(queries.PING)

        status = {
            row["Variable_name"]: row["Value"]
            for row in await client.fetch_all(queries.SSL_STATUS)
        }
        cipher = status.get("Ssl_cipher") or None
        version = status.get("Ssl_version") or None
        if not cipher:
            logger.warning(f"Connection to {client.store_name} is not encrypted")

        groups = [
            CustomerGroup(
                customer_group_id=int(row["customer_group_id"]),
                name=row["name"] or f"Group {row['customer_group_id']}",
                suggested_tier=suggest_tier(row["name"] or "", tiers),
            )
            for row in await client.fetch_all(client.sql(queries.CUSTOMER_GROUPS))
        ]
    except OpenCartClientError as e:
        logger.error(f"Connection test failed for {client.store_name}: {e}")
        return ConnectionTestResult(success=False, message=str(e))

    return ConnectionTestResult(
        success=True,
        is_secure=bool(cipher),
        security_details=SecurityDetails(cipher=cipher, version=version),
        customer_groups=groups,
        message="Connection successful" + ("" if cipher else " (not encrypted)"),
    )


async def check_connection(params: ConnectionParams, settings: Settings) -> ConnectionTestResult:
    """Test unsaved connection parameters with a short-lived pool."""
    try:
        client = OpenCartClient(params, settings)
    except ValueError as e:
        return ConnectionTestResult(success=False, message=str(e))

    async with client:
        return await run_connection_test(client, settings.tier_discounts.keys())


class StoreConnector:
    """Operations against one store's database."""

    def __init__(
        self,
        store: Store,
        client: OpenCartClient,
        tier_groups: Mapping[str, int],
        backup_table: str = "price_sync_backup"
    ):
        self.store = store
        self.client = client
        self.tier_groups = dict(tier_groups)
        self.backup_table = validate_prefix(backup_table)

    @property
    def store_name(self) -> str:
        return self.store.name

    async def test_connection(self) -> ConnectionTestResult:
        return await run_connection_test(self.client, self.tier_groups.keys())

    async def find_by_sku(self, sku: str) -> Optional[int]:
        return await find_by_sku(self.client, sku)

    async def find_skus(self, skus: Iterable[str]) -> Set[str]:
        return await find_skus(self.client, skus)

    async def current_values(self, product_id: int) -> ProductValues:
        return await current_values(self.client, product_id, self.tier_groups)

    async def apply_update(self, sku: str, fields: UpdateFields) -> UpdateOutcome:
        return await apply_update(self.client, sku, fields, self.tier_groups)

    async def backup(self, update_id: int, skus: Iterable[str]) -> Optional[BackupHandle]:
        handle = await create_backup(
            self.client, update_id, skus, self.tier_groups, table=self.backup_table
        )
        if handle is not None:
            handle.store_id = self.store.id
        return handle

    async def restore(self, backup_name: str) -> RestoreResult:
        return await restore_backup(
            self.client, backup_name, self.tier_groups, table=self.backup_table
        )


class ClientRegistry:
    """
    Keeps one pooled client per store.

    A store's pool is rebuilt when its saved connection changes and all
    pools are closed on shutdown.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._clients: Dict[int, OpenCartClient] = {}
        self._versions: Dict[int, datetime] = {}

    async def connector(
        self,
        store: Store,
        connection: Optional[DbConnection],
        tier_groups: Optional[Mapping[str, int]] = None
    ) -> StoreConnector:
        """
        Get a connector for a store.

        Raises:
            StoreConnectionError: If the store has no active connection
        """
        if connection is None:
            raise StoreConnectionError(
                f"No database connection configured for store '{store.name}'",
                store_name=store.name,
            )
        if not connection.is_active:
            raise StoreConnectionError(
                f"Database connection for store '{store.name}' is disabled",
                store_name=store.name,
            )

        client = self._clients.get(store.id)
        if client is not None and self._versions.get(store.id) != connection.updated_at:
            logger.info(f"Connection for '{store.name}' changed, rebuilding pool")
            await self.invalidate(store.id)
            client = None

        if client is None:
            try:
                client = OpenCartClient(connection, self.settings, store_name=store.name)
            except ValueError as e:
                raise StoreConnectionError(str(e), store_name=store.name) from e
            self._clients[store.id] = client
            self._versions[store.id] = connection.updated_at

        groups = dict(self.settings.default_tier_group_ids)
        groups.update(tier_groups or {})
        groups = {tier: gid for tier, gid in groups.items() if tier in self.settings.tier_discounts}

        return StoreConnector(store, client, groups, backup_table=self.settings.backup_table)

    async def invalidate(self, store_id: int) -> None:
        """Close and forget a store's pool."""
        client = self._clients.pop(store_id, None)
        self._versions.pop(store_id, None)
        if client is not None:
            await client.close()

    async def close(self) -> None:
        """Close every pool."""
        for store_id in list(self._clients):
            await self.invalidate(store_id)
