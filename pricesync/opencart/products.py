"""
Product lookup and price/quantity updates for OpenCart stores.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Set

from pydantic import BaseModel, Field

from ..db.models import CamelModel, Price
from . import queries
from .client import OpenCartClient, ProductNotFoundError, StoreQueryError

logger = logging.getLogger(__name__)

SKU_CHUNK_SIZE = 500


class ProductValues(CamelModel):
    """Current price/quantity fields of a product."""
    product_id: int
    regular_price: Optional[Price] = None
    tier_prices: Dict[str, Optional[Price]] = Field(default_factory=dict)
    quantity: Optional[int] = None


class UpdateFields(BaseModel):
    """Fields to write; None / missing tiers are left untouched."""
    regular_price: Optional[Decimal] = None
    tier_prices: Dict[str, Decimal] = Field(default_factory=dict)
    quantity: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return self.regular_price is None and not self.tier_prices and self.quantity is None


class FieldChange(BaseModel):
    """Old and new value of one written field."""
    old: Optional[Decimal] = None
    new: Optional[Decimal] = None


class UpdateOutcome(BaseModel):
    """Result of applying an update to one product."""
    product_id: int
    regular_price: Optional[FieldChange] = None
    tier_prices: Dict[str, FieldChange] = Field(default_factory=dict)
    quantity: Optional[FieldChange] = None


def _to_int(value) -> Optional[int]:
    return None if value is None else int(value)


def _to_decimal(value) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


async def find_by_sku(client: OpenCartClient, sku: str) -> Optional[int]:
    """Find a product ID by SKU. Returns None if the store has no such product."""
    row = await client.fetch_one(client.sql(queries.PRODUCT_BY_SKU), (sku,))
    return int(row["product_id"]) if row else None


async def find_skus(client: OpenCartClient, skus: Iterable[str]) -> Set[str]:
    """Return the subset of SKUs that exist in the store."""
    unique: List[str] = list(dict.fromkeys(skus))
    found: Set[str] = set()

    for start in range(0, len(unique), SKU_CHUNK_SIZE):
        chunk = unique[start:start + SKU_CHUNK_SIZE]
        query = client.sql(
            queries.SKUS_IN, placeholders=", ".join(["%s"] * len(chunk))
        )
        rows = await client.fetch_all(query, chunk)
        found.update(str(row["sku"]) for row in rows)

    return found


async def read_values(
    client: OpenCartClient,
    cursor,
    product_id: int,
    tier_groups: Mapping[str, int],
    for_update: bool = False
) -> Optional[ProductValues]:
    """Read current values using an open cursor."""
    template = queries.PRODUCT_VALUES_FOR_UPDATE if for_update else queries.PRODUCT_VALUES
    await cursor.execute(client.sql(template), (product_id,))
    product = await cursor.fetchone()
    if not product:
        return None

    tier_prices: Dict[str, Optional[Decimal]] = {}
    for tier, group_id in tier_groups.items():
        await cursor.execute(client.sql(queries.GROUP_PRICE), (product_id, group_id))
        discount = await cursor.fetchone()
        tier_prices[tier] = _to_decimal(discount["price"]) if discount else None

    return ProductValues(
        product_id=product_id,
        regular_price=_to_decimal(product["price"]),
        tier_prices=tier_prices,
        quantity=_to_int(product["quantity"]),
    )


async def current_values(
    client: OpenCartClient,
    product_id: int,
    tier_groups: Mapping[str, int]
) -> ProductValues:
    """
    Get the current regular price, tier prices and quantity of a product.

    Raises:
        ProductNotFoundError: If the product ID does not exist
    """
    async with client.transaction() as cursor:
        values = await read_values(client, cursor, product_id, tier_groups)

    if values is None:
        raise ProductNotFoundError(
            f"Product {product_id} not found", store_name=client.store_name
        )
    return values


async def apply_update(
    client: OpenCartClient,
    sku: str,
    fields: UpdateFields,
    tier_groups: Mapping[str, int]
) -> UpdateOutcome:
    """
    Update one product's price/quantity fields in a single transaction.

    Only fields present in `fields` are written. The product row is locked
    while its current values are read so old/new pairs are accurate.

    Args:
        client: Store client
        sku: Product SKU
        fields: Values to write
        tier_groups: Tier name -> customer_group_id for this store

    Returns:
        Old/new pairs for every written field

    Raises:
        ProductNotFoundError: If no product has this SKU
        StoreQueryError: If a tier to write has no customer group in this
            store, or a query fails
        StoreConnectionError: If the connection is lost
    """
    unmapped = sorted(tier for tier in fields.tier_prices if tier not in tier_groups)
    if unmapped:
        raise StoreQueryError(
            f"No customer group mapped for tier(s) {', '.join(unmapped)} in {client.store_name}",
            store_name=client.store_name, sku=sku,
        )

    if fields.is_empty:
        product_id = await find_by_sku(client, sku)
        if product_id is None:
            raise ProductNotFoundError(
                f"Product with SKU {sku} not found in {client.store_name}",
                store_name=client.store_name, sku=sku,
            )
        return UpdateOutcome(product_id=product_id)

    async with client.transaction(sku=sku) as cursor:
        await cursor.execute(client.sql(queries.PRODUCT_BY_SKU), (sku,))
        row = await cursor.fetchone()
        if not row:
            raise ProductNotFoundError(
                f"Product with SKU {sku} not found in {client.store_name}",
                store_name=client.store_name, sku=sku,
            )
        product_id = int(row["product_id"])

        written_tiers = {t: g for t, g in tier_groups.items() if t in fields.tier_prices}
        current = await read_values(client, cursor, product_id, written_tiers, for_update=True)
        outcome = UpdateOutcome(product_id=product_id)

        if fields.regular_price is not None:
            await cursor.execute(
                client.sql(queries.UPDATE_PRICE), (fields.regular_price, product_id)
            )
            outcome.regular_price = FieldChange(
                old=current.regular_price, new=fields.regular_price
            )

        for tier, new_price in fields.tier_prices.items():
            await write_group_price(client, cursor, product_id, tier_groups[tier], new_price)
            outcome.tier_prices[tier] = FieldChange(
                old=current.tier_prices.get(tier), new=new_price
            )

        if fields.quantity is not None:
            await cursor.execute(
                client.sql(queries.UPDATE_QUANTITY), (fields.quantity, product_id)
            )
            outcome.quantity = FieldChange(
                old=_to_decimal(current.quantity), new=Decimal(fields.quantity)
            )

    logger.debug(f"Updated {sku} (product {product_id}) in {client.store_name}")
    return outcome


async def write_group_price(
    client: OpenCartClient,
    cursor,
    product_id: int,
    group_id: int,
    price: Decimal
) -> None:
    """Update the customer group's quantity-1 discount row, or create it."""
    await cursor.execute(client.sql(queries.GROUP_PRICE), (product_id, group_id))
    existing = await cursor.fetchone()
    if existing:
        await cursor.execute(
            client.sql(queries.UPDATE_GROUP_PRICE),
            (price, existing["product_discount_id"]),
        )
    else:
        await cursor.execute(
            client.sql(queries.INSERT_GROUP_PRICE), (product_id, group_id, price)
        )


async def delete_group_price(
    client: OpenCartClient,
    cursor,
    product_id: int,
    group_id: int
) -> None:
    """Remove the customer group's quantity-1 discount row."""
    await cursor.execute(
        client.sql(queries.DELETE_GROUP_PRICE), (product_id, group_id)
    )
