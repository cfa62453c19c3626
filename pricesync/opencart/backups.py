"""
Point-in-time backups of product price/quantity fields.

A backup is a set of rows in the store's own database (table
<prefix>price_sync_backup) sharing one backup name. Restoring writes the
saved values back. Backups are taken before an update touches a store,
but are not part of the same transaction as the update.
"""

import json
import logging
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel

from ..db.models import CamelModel
from . import queries
from .client import BackupError, OpenCartClient, OpenCartClientError
from .products import SKU_CHUNK_SIZE, delete_group_price, read_values, write_group_price

logger = logging.getLogger(__name__)

BACKUP_NAME_PATTERN = re.compile(r"^backup_(?P<store>[a-z0-9-]+)_(?P<update_id>\d+)_(?P<stamp>\d{14})$")
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


class BackupHandle(CamelModel):
    """Reference to a created backup."""
    name: str
    store_id: Optional[int] = None
    update_id: int
    product_count: int
    created_at: datetime


class RestoreResult(CamelModel):
    """Outcome of a restore."""
    success: bool
    restored_products: int = 0
    message: str


class ParsedBackupName(BaseModel):
    store_slug: str
    update_id: int
    created_at: datetime


def slugify(name: str) -> str:
    """Lower-case store name with runs of other characters collapsed to '-'."""
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")
    return slug or "store"


def make_backup_name(store_name: str, update_id: int, created_at: datetime) -> str:
    """Backup name from store, update and timestamp."""
    return f"backup_{slugify(store_name)}_{update_id}_{created_at.strftime(TIMESTAMP_FORMAT)}"


def parse_backup_name(name: str) -> Optional[ParsedBackupName]:
    """Split a backup name into its parts. Returns None if it does not match the format."""
    match = BACKUP_NAME_PATTERN.match(name or "")
    if not match:
        return None
    try:
        created_at = datetime.strptime(match.group("stamp"), TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return ParsedBackupName(
        store_slug=match.group("store"),
        update_id=int(match.group("update_id")),
        created_at=created_at,
    )


def _encode_tiers(tier_prices: Mapping[str, Optional[Decimal]]) -> str:
    return json.dumps({
        tier: (None if price is None else str(price))
        for tier, price in tier_prices.items()
    })


def _decode_tiers(raw: Optional[str]) -> Dict[str, Optional[Decimal]]:
    """Saved tier prices. None marks a tier that had no group price row."""
    if not raw:
        return {}
    try:
        data = json.loads(raw)
        return {
            tier: (None if price is None else Decimal(price))
            for tier, price in data.items()
        }
    except (ValueError, AttributeError, InvalidOperation):
        logger.warning(f"Ignoring unreadable tier prices in backup row: {raw!r}")
        return {}


async def create_backup(
    client: OpenCartClient,
    update_id: int,
    skus: Iterable[str],
    tier_groups: Mapping[str, int],
    table: str = "price_sync_backup",
    now: Optional[datetime] = None
) -> Optional[BackupHandle]:
    """
    Snapshot current values of the given SKUs.

    Args:
        client: Store client
        update_id: Update job the backup belongs to
        skus: SKUs scheduled for this store
        tier_groups: Tier name -> customer_group_id
        table: Backup table name (without prefix)
        now: Timestamp for the backup name (defaults to now)

    Returns:
        Handle for the backup, or None if none of the SKUs exist in the store

    Raises:
        BackupError: If the snapshot could not be written
    """
    created_at = (now or datetime.utcnow()).replace(microsecond=0)
    name = make_backup_name(client.store_name, update_id, created_at)
    unique = list(dict.fromkeys(skus))
    count = 0

    try:
        async with client.transaction() as cursor:
            await cursor.execute(client.sql(queries.CREATE_BACKUP_TABLE, table=table))

        async with client.transaction() as cursor:
            for start in range(0, len(unique), SKU_CHUNK_SIZE):
                chunk = unique[start:start + SKU_CHUNK_SIZE]
                await cursor.execute(
                    client.sql(
                        queries.PRODUCTS_BY_SKUS,
                        placeholders=", ".join(["%s"] * len(chunk)),
                    ),
                    chunk,
                )
                products = list(await cursor.fetchall())

                for product in products:
                    values = await read_values(
                        client, cursor, int(product["product_id"]), tier_groups
                    )
                    if values is None:
                        continue
                    await cursor.execute(
                        client.sql(queries.INSERT_BACKUP_ROW, table=table),
                        (
                            name,
                            values.product_id,
                            product["sku"],
                            values.regular_price,
                            values.quantity,
                            _encode_tiers(values.tier_prices),
                            created_at,
                        ),
                    )
                    count += 1
    except OpenCartClientError as e:
        raise BackupError(
            f"Backup failed for {client.store_name}: {e}", store_name=client.store_name
        ) from e

    if count == 0:
        logger.info(f"Nothing to back up in {client.store_name} for update {update_id}")
        return None

    logger.info(f"Created backup {name} with {count} products")
    return BackupHandle(
        name=name, update_id=update_id, product_count=count, created_at=created_at
    )


async def restore_backup(
    client: OpenCartClient,
    backup_name: str,
    tier_groups: Mapping[str, int],
    table: str = "price_sync_backup"
) -> RestoreResult:
    """
    Write a backup's saved values back to the store.

    Never raises: failures are reported in the result.
    """
    parsed = parse_backup_name(backup_name)
    if parsed is None:
        logger.warning(f"Backup name '{backup_name}' is not linked to a known update")
    else:
        logger.info(f"Restoring backup {backup_name} (update {parsed.update_id})")

    try:
        async with client.transaction() as cursor:
            await cursor.execute(client.sql(queries.BACKUP_ROWS, table=table), (backup_name,))
            rows: List[dict] = list(await cursor.fetchall())

            if not rows:
                return RestoreResult(
                    success=False, message=f"Backup '{backup_name}' not found"
                )

            for row in rows:
                product_id = int(row["product_id"])
                if row["price"] is not None:
                    await cursor.execute(
                        client.sql(queries.UPDATE_PRICE), (row["price"], product_id)
                    )
                if row["quantity"] is not None:
                    await cursor.execute(
                        client.sql(queries.UPDATE_QUANTITY), (row["quantity"], product_id)
                    )
                for tier, price in _decode_tiers(row["tier_prices"]).items():
                    group_id = tier_groups.get(tier)
                    if group_id is None:
                        continue
                    if price is None:
                        await delete_group_price(client, cursor, product_id, group_id)
                    else:
                        await write_group_price(client, cursor, product_id, group_id, price)
    except OpenCartClientError as e:
        logger.error(f"Restore of {backup_name} failed: {e}")
        return RestoreResult(success=False, message=f"Restore failed: {e}")

    logger.info(f"Restored {len(rows)} products from {backup_name}")
    return RestoreResult(
        success=True,
        restored_products=len(rows),
        message=f"Successfully restored {len(rows)} products",
    )
