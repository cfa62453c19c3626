"""
Store management API routes.
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException

from ..config import settings
from ..db import CamelModel, DbConnection, DbConnectionUpsert, Store, StoreCreate
from ..dependencies import get_db, get_registry, get_resolver
from ..opencart import ConnectionTestResult, OpenCartClientError, ProductValues
from ..opencart.client import validate_prefix

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stores")

# Saved passwords never leave the server
HIDDEN_FIELDS = {"password"}


class StoreOut(CamelModel):
    store: Store
    connection: Optional[DbConnection] = None
    tier_groups: Dict[str, int] = {}


class StoreSummary(Store):
    has_connection: bool = False
    is_active: bool = False
    last_connected: Optional[str] = None


async def _get_store_or_404(store_id: int) -> Store:
    store = await get_db().get_store(store_id)
    if not store:
        raise HTTPException(status_code=404, detail="Store not found")
    return store


@router.get("", response_model=List[StoreSummary], response_model_by_alias=True)
async def list_stores():
    """List stores with their connection state."""
    db = get_db()
    stores = await db.get_stores()
    connections = {c.store_id: c for c in await db.get_connections()}

    summaries = []
    for store in stores:
        connection = connections.get(store.id)
        summaries.append(StoreSummary(
            **store.model_dump(),
            has_connection=connection is not None,
            is_active=bool(connection and connection.is_active),
            last_connected=(
                connection.last_connected.isoformat()
                if connection and connection.last_connected else None
            ),
        ))
    return summaries


@router.post("", response_model=Store, response_model_by_alias=True, status_code=201)
async def create_store(data: StoreCreate):
    """Create a new store."""
    name = data.name.strip()
    url = data.url.strip().rstrip("/")
    if not name or not url:
        raise HTTPException(status_code=400, detail="Name and URL are required")

    store = await get_db().create_store(name, url)
    logger.info(f"Created store '{store.name}' ({store.id})")
    return store


@router.get(
    "/{store_id}",
    response_model=StoreOut,
    response_model_by_alias=True,
    response_model_exclude={"connection": HIDDEN_FIELDS},
)
async def get_store(store_id: int):
    """A store with its saved connection and tier groups."""
    db = get_db()
    store = await _get_store_or_404(store_id)
    return StoreOut(
        store=store,
        connection=await db.get_connection(store_id),
        tier_groups=await db.get_tier_groups(store_id),
    )


@router.delete("/{store_id}")
async def delete_store(store_id: int):
    """Delete a store, its connection and tier groups."""
    store = await _get_store_or_404(store_id)
    await get_registry().invalidate(store_id)
    await get_db().delete_store(store_id)
    logger.info(f"Deleted store '{store.name}' ({store_id})")
    return {"success": True}


@router.put(
    "/{store_id}/connection",
    response_model=DbConnection,
    response_model_by_alias=True,
    response_model_exclude=HIDDEN_FIELDS,
)
async def save_connection(store_id: int, data: DbConnectionUpsert):
    """Create or replace the store's database connection."""
    store = await _get_store_or_404(store_id)

    try:
        validate_prefix(data.prefix)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    connection = await get_db().save_connection(store_id, data)
    # Drop the pool built from the old credentials
    await get_registry().invalidate(store_id)
    logger.info(f"Saved connection for '{store.name}' ({data.host}:{data.port}/{data.database})")
    return connection


@router.post(
    "/{store_id}/test-connection",
    response_model=ConnectionTestResult,
    response_model_by_alias=True,
)
async def test_saved_connection(store_id: int):
    """Test the store's saved connection and record when it last worked."""
    store = await _get_store_or_404(store_id)

    try:
        connector = await get_resolver().get_connector(store)
    except OpenCartClientError as e:
        return ConnectionTestResult(success=False, message=str(e))

    result = await connector.test_connection()
    if result.success:
        await get_db().mark_connected(store_id)
    return result


@router.get(
    "/{store_id}/products/{sku}",
    response_model=ProductValues,
    response_model_by_alias=True,
)
async def get_product(store_id: int, sku: str):
    """Current price, tier prices and quantity of one product."""
    store = await _get_store_or_404(store_id)

    try:
        connector = await get_resolver().get_connector(store)
        product_id = await connector.find_by_sku(sku)
        if product_id is None:
            raise HTTPException(status_code=404, detail=f"SKU {sku} not found in {store.name}")
        return await connector.current_values(product_id)
    except OpenCartClientError as e:
        logger.error(f"Product lookup for {sku} in '{store.name}' failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))


@router.get("/{store_id}/tier-groups")
async def get_tier_groups(store_id: int) -> Dict[str, int]:
    """Saved tier -> customer group mapping, falling back to the defaults."""
    await _get_store_or_404(store_id)
    groups = {
        tier: gid for tier, gid in settings.default_tier_group_ids.items()
        if tier in settings.tier_discounts
    }
    groups.update(await get_db().get_tier_groups(store_id))
    return groups


@router.put("/{store_id}/tier-groups")
async def set_tier_groups(store_id: int, groups: Dict[str, int]) -> Dict[str, int]:
    """Replace the store's tier -> customer group mapping."""
    await _get_store_or_404(store_id)

    unknown = sorted(tier for tier in groups if tier not in settings.tier_discounts)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown tier(s): {', '.join(unknown)}")

    return await get_db().set_tier_groups(store_id, groups)
