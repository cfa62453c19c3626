#!/usr/bin/env python3
"""
Run one spreadsheet update against stores from the command line.
Example: python scripts/run_update.py prices.xlsx --store 1 --store 2

This runs the update as a standalone script, not through the web server.
Exits non-zero unless the update completes without failures.
"""

import argparse
import asyncio
import logging
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pricesync.config import settings
from pricesync.db import SQLiteDatabase, UpdateOptions, UpdateStatus
from pricesync.opencart import ClientRegistry
from pricesync.processor import (
    ParseError, StoreResolver, UpdateOrchestrator, parse_spreadsheet, validate_products
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Push a price spreadsheet to OpenCart stores")
    parser.add_argument("file", help="Spreadsheet (.xlsx or .csv)")
    parser.add_argument(
        "--store", dest="stores", type=int, action="append", required=True,
        help="Target store id (repeat for several stores)"
    )
    parser.add_argument("--skip-regular", action="store_true", help="Do not write regular prices")
    parser.add_argument("--skip-quantities", action="store_true", help="Do not write quantities")
    parser.add_argument(
        "--skip-tier", dest="skip_tiers", action="append", default=[],
        choices=sorted(settings.tier_discounts), help="Do not write this tier's price"
    )
    parser.add_argument(
        "--validate-only", action="store_true", help="Report validation issues and exit"
    )
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        with open(args.file, "rb") as f:
            content = f.read()
        rows = parse_spreadsheet(content, os.path.basename(args.file), settings.tier_discounts)
    except (OSError, ParseError) as e:
        logger.error(f"Cannot read {args.file}: {e}")
        return 2

    db = SQLiteDatabase(settings.database_path)
    await db.initialize()
    registry = ClientRegistry(settings)
    resolver = StoreResolver(db, registry)

    try:
        found = await db.get_stores_by_ids(args.stores)
        missing = [s for s in args.stores if s not in found]
        if missing:
            logger.error(f"Unknown store(s): {', '.join(map(str, missing))}")
            return 2
        stores = [found[s] for s in dict.fromkeys(args.stores)]

        issues = await validate_products(
            rows, args.stores, settings.tier_discounts, resolver,
            sample_size=settings.validation_sample_size,
        )
        for issue in issues:
            logger.warning(issue)
        if args.validate_only:
            mismatched = sum(1 for row in rows if row.has_mismatch)
            logger.info(
                f"{len(rows)} rows ({mismatched} with tier price mismatches), "
                f"{len(issues)} issue(s)"
            )
            return 0

        options = UpdateOptions(
            update_regular_prices=not args.skip_regular,
            update_tier_prices={tier: tier not in args.skip_tiers for tier in settings.tier_discounts},
            update_quantities=not args.skip_quantities,
        )
        job = await db.create_update(
            os.path.basename(args.file), len(rows), [s.id for s in stores], options
        )

        orchestrator = UpdateOrchestrator(db, resolver, settings)
        job = await orchestrator.run(job, rows, stores, options)

        counts = await db.count_update_details(job.id)
        logger.info(
            f"Update {job.id} {job.status.value}: "
            f"{counts['total'] - counts['failed']} succeeded, {counts['failed']} failed"
        )
        if counts["failed"]:
            for detail in await db.get_update_details(job.id, success=False):
                logger.error(f"  store {detail.store_id} {detail.sku}: {detail.error_message}")

        return 0 if job.status == UpdateStatus.COMPLETED else 1

    finally:
        await registry.close()
        await db.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
