"""
Tests for update jobs: statuses, failure handling, cancellation and progress.
"""

import asyncio
from datetime import datetime
from decimal import Decimal

from pricesync.config import Settings
from pricesync.db import SQLiteDatabase, UpdateOptions, UpdateStatus
from pricesync.opencart import (
    BackupError, BackupHandle, FieldChange, ProductNotFoundError,
    StoreConnectionError, UpdateOutcome,
)
from pricesync.processor.orchestrator import (
    CANCELLED_MESSAGE, UpdateOrchestrator, determine_status, fields_for,
)
from pricesync.processor.progress import JobProgress
from pricesync.processor.spreadsheet import ProductRow

TIERS = {"depot": 18, "warehouse": 26}


def make_rows(count):
    return [
        ProductRow(
            sku=f"SKU-{i}",
            regular_price=Decimal("100"),
            tier_prices={"depot": Decimal("82"), "warehouse": Decimal("74")},
            quantity=5,
            source_row_index=i + 1,
        )
        for i in range(1, count + 1)
    ]


class FakeConnector:
    """In-memory store: every SKU exists unless listed as missing."""

    def __init__(self, missing=(), fail_at=None, backup_error=False, on_update=None):
        self.missing = set(missing)
        self.fail_at = fail_at or {}
        self.backup_error = backup_error
        self.on_update = on_update
        self.applied = []

    async def backup(self, update_id, skus):
        if self.backup_error:
            raise BackupError("Backup table is read-only")
        return BackupHandle(
            name=f"backup_test_{update_id}_20260101000000",
            update_id=update_id,
            product_count=len(list(skus)),
            created_at=datetime(2026, 1, 1),
        )

    async def apply_update(self, sku, fields):
        if self.on_update:
            self.on_update(sku)
        if sku in self.fail_at:
            raise self.fail_at[sku]
        if sku in self.missing:
            raise ProductNotFoundError(f"Product with SKU {sku} not found", sku=sku)
        self.applied.append((sku, fields))
        outcome = UpdateOutcome(product_id=len(self.applied))
        if fields.regular_price is not None:
            outcome.regular_price = FieldChange(old=Decimal("90"), new=fields.regular_price)
        for tier, price in fields.tier_prices.items():
            outcome.tier_prices[tier] = FieldChange(old=None, new=price)
        if fields.quantity is not None:
            outcome.quantity = FieldChange(old=Decimal("1"), new=Decimal(fields.quantity))
        return outcome


class FakeResolver:
    """Store id -> connector, or the exception get_connector should raise."""

    def __init__(self, db, connectors):
        self.db = db
        self.connectors = connectors

    async def get_store(self, store_id):
        return await self.db.get_store(store_id)

    async def get_connector(self, store):
        connector = self.connectors[store.id]
        if isinstance(connector, Exception):
            raise connector
        return connector


async def run_job(tmp_path, connectors_by_name, rows, options=None, setup=None):
    """Create stores and a job, run it to completion, and collect the results."""
    db = SQLiteDatabase(str(tmp_path / "test.db"))
    await db.initialize()
    try:
        stores = []
        connectors = {}
        for name, connector in connectors_by_name.items():
            store = await db.create_store(name, f"https://{name}.example")
            stores.append(store)
            connectors[store.id] = connector

        options = options or UpdateOptions()
        settings = Settings(tier_discounts=TIERS, max_concurrent_stores=2)
        orchestrator = UpdateOrchestrator(db, FakeResolver(db, connectors), settings)
        job = await db.create_update("prices.xlsx", len(rows), [s.id for s in stores], options)
        if setup:
            setup(orchestrator, job)

        finished = await orchestrator.run(job, rows, stores, options)

        return {
            "job": finished,
            "stores": stores,
            "details": await db.get_update_details(job.id),
            "backups": await db.get_backup_records(job.id),
            "progress": await orchestrator.get_progress(finished),
            # The job as read before it ran, still pending
            "stale_progress": await orchestrator.get_progress(job),
            "running": job.id in orchestrator.tracker,
        }
    finally:
        await db.close()


class TestDetermineStatus:
    """Tests for the terminal status rule."""

    def test_no_failures_is_completed(self):
        assert determine_status(0, 10) == UpdateStatus.COMPLETED

    def test_empty_job_is_completed(self):
        assert determine_status(0, 0) == UpdateStatus.COMPLETED

    def test_some_failures_is_partial(self):
        assert determine_status(1, 10) == UpdateStatus.PARTIAL
        assert determine_status(9, 10) == UpdateStatus.PARTIAL

    def test_dominating_failures_is_failed(self):
        assert determine_status(10, 10) == UpdateStatus.FAILED
        assert determine_status(15, 10) == UpdateStatus.FAILED

    def test_threshold_must_also_be_exceeded(self):
        """One failure out of one row: over the threshold and at least the row count."""
        assert determine_status(1, 1) == UpdateStatus.FAILED


class TestFieldsFor:
    """Tests for restricting a row to the enabled fields."""

    def test_all_enabled_by_default(self):
        row = make_rows(1)[0]

        fields = fields_for(row, UpdateOptions())

        assert fields.regular_price == Decimal("100")
        assert fields.tier_prices == {"depot": Decimal("82"), "warehouse": Decimal("74")}
        assert fields.quantity == 5

    def test_disabled_fields_are_left_out(self):
        row = make_rows(1)[0]
        options = UpdateOptions(
            update_regular_prices=False,
            update_tier_prices={"depot": True, "warehouse": False},
            update_quantities=False,
        )

        fields = fields_for(row, options)

        assert fields.regular_price is None
        assert fields.tier_prices == {"depot": Decimal("82")}
        assert fields.quantity is None

    def test_nothing_enabled_is_empty(self):
        options = UpdateOptions(
            update_regular_prices=False,
            update_tier_prices={"depot": False, "warehouse": False},
            update_quantities=False,
        )

        assert fields_for(make_rows(1)[0], options).is_empty


class TestRunUpdate:
    """Tests for running a job against several stores."""

    def test_all_rows_succeed(self, tmp_path):
        north, south = FakeConnector(), FakeConnector()

        result = asyncio.run(run_job(tmp_path, {"north": north, "south": south}, make_rows(3)))

        assert result["job"].status == UpdateStatus.COMPLETED
        assert result["job"].completed_at is not None
        assert len(result["details"]) == 6
        assert all(d.success for d in result["details"])
        assert len(north.applied) == 3 and len(south.applied) == 3
        assert sorted(b.store_name for b in result["backups"]) == ["north", "south"]
        assert all(b.product_count == 3 for b in result["backups"])

    def test_details_record_old_and_new_values(self, tmp_path):
        result = asyncio.run(run_job(tmp_path, {"main": FakeConnector()}, make_rows(1)))

        detail = result["details"][0]
        assert detail.sku == "SKU-1"
        assert detail.product_id == 1
        assert detail.old_regular_price == Decimal("90")
        assert detail.new_regular_price == Decimal("100")
        assert detail.new_tier_prices == {"depot": Decimal("82"), "warehouse": Decimal("74")}
        assert detail.old_quantity == 1
        assert detail.new_quantity == 5

    def test_disabled_fields_are_not_written(self, tmp_path):
        connector = FakeConnector()
        options = UpdateOptions(update_quantities=False, update_tier_prices={"warehouse": False})

        asyncio.run(run_job(tmp_path, {"main": connector}, make_rows(2), options))

        for _, fields in connector.applied:
            assert fields.quantity is None
            assert set(fields.tier_prices) == {"depot"}

    def test_missing_product_fails_only_that_row(self, tmp_path):
        rows = make_rows(20)

        result = asyncio.run(run_job(tmp_path, {"main": FakeConnector(missing={"SKU-4"})}, rows))

        assert result["job"].status == UpdateStatus.PARTIAL
        failed = [d for d in result["details"] if not d.success]
        assert [d.sku for d in failed] == ["SKU-4"]
        assert "not found" in failed[0].error_message
        assert len(result["details"]) == 20

    def test_missing_connection_fails_every_row(self, tmp_path):
        error = StoreConnectionError("No database connection configured for store 'main'")

        result = asyncio.run(run_job(tmp_path, {"main": error}, make_rows(4)))

        assert result["job"].status == UpdateStatus.FAILED
        assert len(result["details"]) == 4
        assert all(not d.success for d in result["details"])
        assert all(d.product_id is None for d in result["details"])
        assert all("No database connection" in d.error_message for d in result["details"])
        assert result["backups"] == []

    def test_one_store_failing_does_not_stop_another(self, tmp_path):
        good = FakeConnector()
        error = StoreConnectionError("Access denied")

        result = asyncio.run(run_job(tmp_path, {"good": good, "bad": error}, make_rows(3)))

        good_id, bad_id = (s.id for s in result["stores"])
        assert len(good.applied) == 3
        by_store = {}
        for detail in result["details"]:
            by_store.setdefault(detail.store_id, []).append(detail.success)
        assert by_store[good_id] == [True, True, True]
        assert by_store[bad_id] == [False, False, False]
        assert result["job"].status == UpdateStatus.FAILED

    def test_connection_lost_fails_remaining_rows(self, tmp_path):
        connector = FakeConnector(fail_at={"SKU-3": StoreConnectionError("Lost connection")})

        result = asyncio.run(run_job(tmp_path, {"main": connector}, make_rows(5)))

        outcomes = [(d.sku, d.success) for d in result["details"]]
        assert outcomes == [
            ("SKU-1", True), ("SKU-2", True),
            ("SKU-3", False), ("SKU-4", False), ("SKU-5", False),
        ]
        assert all(d.error_message == "Lost connection" for d in result["details"][2:])
        assert result["job"].status == UpdateStatus.PARTIAL

    def test_unexpected_error_fails_only_that_row(self, tmp_path):
        connector = FakeConnector(fail_at={"SKU-2": RuntimeError("boom")})

        result = asyncio.run(run_job(tmp_path, {"main": connector}, make_rows(20)))

        failed = [d for d in result["details"] if not d.success]
        assert [d.sku for d in failed] == ["SKU-2"]
        assert failed[0].error_message == "Unexpected error: boom"
        assert len(connector.applied) == 19

    def test_backup_failure_is_not_fatal(self, tmp_path):
        connector = FakeConnector(backup_error=True)

        result = asyncio.run(run_job(tmp_path, {"main": connector}, make_rows(3)))

        assert result["job"].status == UpdateStatus.COMPLETED
        assert result["backups"] == []
        assert len(connector.applied) == 3

    def test_empty_job_completes(self, tmp_path):
        result = asyncio.run(run_job(tmp_path, {"main": FakeConnector()}, []))

        assert result["job"].status == UpdateStatus.COMPLETED
        assert result["details"] == []


class TestCancel:
    """Tests for cancelling a running job."""

    def test_rows_after_cancel_are_recorded_as_failed(self, tmp_path):
        state = {}

        def setup(orchestrator, job):
            state["orchestrator"] = orchestrator
            state["job_id"] = job.id

        def on_update(sku):
            # Cancel arrives while SKU-2 is in flight
            if sku == "SKU-2":
                assert state["orchestrator"].cancel(state["job_id"]) is True

        connector = FakeConnector(on_update=on_update)
        result = asyncio.run(run_job(tmp_path, {"main": connector}, make_rows(5), setup=setup))

        outcomes = [(d.sku, d.success) for d in result["details"]]
        assert outcomes == [
            ("SKU-1", True), ("SKU-2", True),
            ("SKU-3", False), ("SKU-4", False), ("SKU-5", False),
        ]
        assert all(d.error_message == CANCELLED_MESSAGE for d in result["details"][2:])
        assert result["job"].status == UpdateStatus.PARTIAL

    def test_cancel_unknown_job(self, tmp_path):
        orchestrator = UpdateOrchestrator(None, None, Settings())

        assert orchestrator.cancel(12345) is False


class TestProgress:
    """Tests for progress reporting."""

    def test_progress_is_monotonic_and_reaches_100(self, tmp_path):
        seen = []
        state = {}

        def register(orchestrator, job):
            stores = [(store_id, f"store {store_id}") for store_id in job.target_store_ids]
            state["progress"] = orchestrator.tracker.register(
                JobProgress.create(job.id, stores, 4)
            )

        def on_update(sku):
            seen.append(state["progress"].snapshot().overall)

        connectors = {
            "north": FakeConnector(on_update=on_update),
            "south": FakeConnector(on_update=on_update),
        }

        result = asyncio.run(run_job(tmp_path, connectors, make_rows(4), setup=register))

        assert seen == sorted(seen)
        assert seen[0] == 0
        assert result["progress"].overall == 100
        assert [s.progress for s in result["progress"].stores] == [100, 100]
        assert [s.name for s in result["progress"].stores] == ["north", "south"]
        assert result["running"] is False

    def test_outdated_job_read_still_reports_100(self, tmp_path):
        result = asyncio.run(run_job(tmp_path, {"main": FakeConnector()}, make_rows(2)))

        assert result["stale_progress"].overall == 100
        assert [s.progress for s in result["stale_progress"].stores] == [100]

    def test_progress_of_unfinished_job_without_tracker_is_zero(self, tmp_path):
        async def scenario():
            db = SQLiteDatabase(str(tmp_path / "test.db"))
            await db.initialize()
            try:
                store = await db.create_store("main", "https://main.example")
                job = await db.create_update("prices.xlsx", 3, [store.id], UpdateOptions())
                orchestrator = UpdateOrchestrator(db, None, Settings())
                return await orchestrator.get_progress(job)
            finally:
                await db.close()

        snapshot = asyncio.run(scenario())

        assert snapshot.overall == 0
        assert [(s.name, s.progress) for s in snapshot.stores] == [("main", 0)]
