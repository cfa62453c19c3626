"""
Resolves store ids to stores and ready-to-use connectors.
"""

from typing import Optional

from ..db import SQLiteDatabase, Store
from ..opencart import ClientRegistry, StoreConnector


class StoreResolver:
    """Looks up stores, their connections and tier mappings."""

    def __init__(self, db: SQLiteDatabase, registry: ClientRegistry):
        self.db = db
        self.registry = registry

    async def get_store(self, store_id: int) -> Optional[Store]:
        return await self.db.get_store(store_id)

    async def get_connector(self, store: Store) -> StoreConnector:
        """
        Build the connector for a store.

        Raises:
            StoreConnectionError: If the store has no active connection
        """
        connection = await self.db.get_connection(store.id)
        tier_groups = await self.db.get_tier_groups(store.id)
        return await self.registry.connector(store, connection, tier_groups)
