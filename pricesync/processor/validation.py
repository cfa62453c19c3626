"""
Advisory checks run on parsed rows before an update is confirmed.

Issues are plain strings shown verbatim to the operator. Validation never
blocks an update and never changes the rows.
"""

import logging
from typing import Dict, List, Mapping, Sequence

from ..opencart import OpenCartClientError
from .pricing import format_percentage, tier_label
from .spreadsheet import ProductRow

logger = logging.getLogger(__name__)


def find_duplicate_skus(rows: Sequence[ProductRow]) -> List[str]:
    """SKUs that appear more than once, each listed once in first-seen order."""
    seen = set()
    duplicates: Dict[str, None] = {}
    for row in rows:
        if row.sku in seen:
            duplicates[row.sku] = None
        else:
            seen.add(row.sku)
    return list(duplicates)


def check_duplicates(rows: Sequence[ProductRow]) -> List[str]:
    duplicates = find_duplicate_skus(rows)
    if not duplicates:
        return []
    return [f"Duplicate SKUs found: {', '.join(duplicates)}"]


def check_tier_prices(rows: Sequence[ProductRow], tiers: Mapping[str, float]) -> List[str]:
    """One summary per tier with rows whose supplied price disagrees with the calculation."""
    issues = []
    for tier, discount in tiers.items():
        count = sum(1 for row in rows if row.tier_mismatch_flags.get(tier))
        if count > 0:
            issues.append(
                f"{count} rows have incorrect {tier_label(tier)} prices "
                f"(should be {format_percentage(discount)}% discount, "
                f"rounded to nearest whole number)"
            )
    return issues


async def check_store_skus(
    rows: Sequence[ProductRow],
    store_ids: Sequence[int],
    resolver,
    sample_size: int = 3
) -> List[str]:
    """
    Check that SKUs exist in each target store.

    Reports one message per store with the number of missing SKUs and a
    small sample, rather than every miss.
    """
    issues: List[str] = []
    if not rows:
        return issues

    first_row: Dict[str, int] = {}
    for row in rows:
        first_row.setdefault(row.sku, row.source_row_index)

    for store_id in store_ids:
        store = await resolver.get_store(store_id)
        if store is None:
            issues.append(f"Store {store_id} not found")
            continue

        try:
            connector = await resolver.get_connector(store)
            found = await connector.find_skus(first_row.keys())
        except OpenCartClientError as e:
            logger.warning(f"SKU check skipped for '{store.name}': {e}")
            issues.append(f"Could not check SKUs in store \"{store.name}\": {e}")
            continue

        # MySQL compares SKUs without regard to case
        found_keys = {sku.casefold() for sku in found}
        missing = [sku for sku in first_row if sku.casefold() not in found_keys]
        if not missing:
            continue

        sample = ", ".join(
            f"\"{sku}\" (row {first_row[sku]})" for sku in missing[:sample_size]
        )
        more = "" if len(missing) <= sample_size else f" and {len(missing) - sample_size} more"
        issues.append(
            f"{len(missing)} SKUs not found in store \"{store.name}\": {sample}{more}"
        )

    return issues


async def validate_products(
    rows: Sequence[ProductRow],
    store_ids: Sequence[int],
    tiers: Mapping[str, float],
    resolver,
    sample_size: int = 3
) -> List[str]:
    """
    Run every check and collect the issues.

    Args:
        rows: Parsed spreadsheet rows
        store_ids: Target store ids
        tiers: Tier name -> discount percentage
        resolver: Object with async get_store(id) and get_connector(store)
        sample_size: Maximum missing SKUs quoted per store

    Returns:
        Human readable issue strings (empty if nothing to report)
    """
    issues: List[str] = []
    issues.extend(check_duplicates(rows))
    issues.extend(check_tier_prices(rows, tiers))
    issues.extend(await check_store_skus(rows, store_ids, resolver, sample_size))
    return issues
