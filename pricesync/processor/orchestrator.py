"""
Update orchestrator: applies parsed rows to every target store.
"""

import asyncio
import logging
from typing import Dict, Optional, Sequence, Set

from ..config import Settings
from ..db import (
    BackupRecord, SQLiteDatabase, Store, UpdateDetail, UpdateJob,
    UpdateOptions, UpdateStatus
)
from ..opencart import (
    OpenCartClientError, StoreConnectionError, UpdateFields, UpdateOutcome
)
from .progress import JobProgress, ProgressSnapshot, ProgressTracker, StoreProgressOut
from .spreadsheet import ProductRow
from .stores import StoreResolver

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Update cancelled before this row was processed"


def determine_status(failed: int, row_count: int, threshold: float = 0.1) -> UpdateStatus:
    """
    Terminal status of a job from its failed (store, row) count.

    Completed when nothing failed. Failed when failures pass the threshold
    share of the row count and add up to at least the row count. Partial
    otherwise.
    """
    if failed <= 0:
        return UpdateStatus.COMPLETED
    if failed > row_count * threshold and failed >= row_count:
        return UpdateStatus.FAILED
    return UpdateStatus.PARTIAL


def fields_for(row: ProductRow, options: UpdateOptions) -> UpdateFields:
    """The subset of a row's values enabled by the job's options."""
    return UpdateFields(
        regular_price=row.regular_price if options.update_regular_prices else None,
        tier_prices={
            tier: price for tier, price in row.tier_prices.items()
            if options.tier_enabled(tier)
        },
        quantity=row.quantity if options.update_quantities else None,
    )


def success_detail(update_id: int, store_id: int, sku: str, outcome: UpdateOutcome) -> UpdateDetail:
    detail = UpdateDetail(
        update_id=update_id,
        store_id=store_id,
        sku=sku,
        product_id=outcome.product_id,
        success=True,
    )
    if outcome.regular_price is not None:
        detail.old_regular_price = outcome.regular_price.old
        detail.new_regular_price = outcome.regular_price.new
    for tier, change in outcome.tier_prices.items():
        detail.old_tier_prices[tier] = change.old
        detail.new_tier_prices[tier] = change.new
    if outcome.quantity is not None:
        detail.old_quantity = None if outcome.quantity.old is None else int(outcome.quantity.old)
        detail.new_quantity = None if outcome.quantity.new is None else int(outcome.quantity.new)
    return detail


def failure_detail(update_id: int, store_id: int, sku: str, message: str) -> UpdateDetail:
    return UpdateDetail(
        update_id=update_id,
        store_id=store_id,
        sku=sku,
        success=False,
        error_message=message,
    )


class UpdateOrchestrator:
    """
    Owns the lifecycle of update jobs.

    Each job runs as a detached task. Stores are processed concurrently,
    one worker per store; rows within a store are processed in order.
    """

    def __init__(
        self,
        db: SQLiteDatabase,
        resolver: StoreResolver,
        settings: Settings,
        tracker: Optional[ProgressTracker] = None
    ):
        self.db = db
        self.resolver = resolver
        self.settings = settings
        self.tracker = tracker or ProgressTracker()
        self._tasks: Set[asyncio.Task] = set()

    def start(
        self,
        job: UpdateJob,
        rows: Sequence[ProductRow],
        stores: Sequence[Store],
        options: UpdateOptions
    ) -> asyncio.Task:
        """Schedule a job in the background and return immediately."""
        self._register(job, rows, stores)
        task = asyncio.create_task(self.run(job, rows, stores, options))
        # Keep a reference so the task is not garbage collected mid-run
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"Started update {job.id}: {len(rows)} rows x {len(stores)} stores")
        return task

    def _register(self, job: UpdateJob, rows: Sequence[ProductRow], stores: Sequence[Store]) -> JobProgress:
        progress = self.tracker.get(job.id)
        if progress is None:
            progress = self.tracker.register(
                JobProgress.create(job.id, [(s.id, s.name) for s in stores], len(rows))
            )
        return progress

    async def run(
        self,
        job: UpdateJob,
        rows: Sequence[ProductRow],
        stores: Sequence[Store],
        options: UpdateOptions
    ) -> UpdateJob:
        """
        Process a job to completion and record its terminal status.

        Returns:
            The job as stored after completion
        """
        progress = self._register(job, rows, stores)
        status = UpdateStatus.FAILED

        try:
            semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrent_stores))

            async def worker(store: Store) -> int:
                async with semaphore:
                    return await self._process_store(job, rows, store, options, progress)

            results = await asyncio.gather(
                *(worker(store) for store in stores), return_exceptions=True
            )

            failed = 0
            for store, result in zip(stores, results):
                if isinstance(result, BaseException):
                    logger.error(
                        f"Update {job.id}: processing '{store.name}' stopped unexpectedly",
                        exc_info=result,
                    )
                    failed += len(rows)
                else:
                    failed += result

            status = determine_status(failed, len(rows), self.settings.failure_threshold)
            logger.info(
                f"Update {job.id} finished: {status.value} "
                f"({failed} of {len(rows) * len(stores)} row updates failed)"
            )
        except Exception:
            logger.exception(f"Update {job.id} failed unexpectedly")
            status = UpdateStatus.FAILED
        finally:
            completed = await self.db.complete_update(job.id, status)
            self.tracker.discard(job.id)

        return completed

    async def _process_store(
        self,
        job: UpdateJob,
        rows: Sequence[ProductRow],
        store: Store,
        options: UpdateOptions,
        progress: JobProgress
    ) -> int:
        """Apply all rows to one store. Returns the number of failed rows."""
        counter = progress.counter(store.id)
        failed = 0

        try:
            connector = await self.resolver.get_connector(store)
        except StoreConnectionError as e:
            logger.error(f"Update {job.id}: cannot connect to '{store.name}': {e}")
            return await self._fail_rows(job, store, rows, str(e), progress)

        try:
            handle = await connector.backup(job.id, [row.sku for row in rows])
            if handle is not None:
                await self.db.create_backup_record(BackupRecord(
                    update_id=job.id,
                    store_id=store.id,
                    store_name=store.name,
                    name=handle.name,
                    product_count=handle.product_count,
                    created_at=handle.created_at,
                ))
        except OpenCartClientError as e:
            logger.warning(f"Update {job.id}: continuing without backup for '{store.name}': {e}")

        for index, row in enumerate(rows):
            if progress.cancelled:
                logger.info(f"Update {job.id}: cancelled, skipping {len(rows) - index} rows for '{store.name}'")
                return failed + await self._fail_rows(job, store, rows[index:], CANCELLED_MESSAGE, progress)

            try:
                outcome = await connector.apply_update(row.sku, fields_for(row, options))
                await self.db.create_update_detail(success_detail(job.id, store.id, row.sku, outcome))
            except StoreConnectionError as e:
                logger.error(f"Update {job.id}: lost '{store.name}' at {row.sku}: {e}")
                return failed + await self._fail_rows(job, store, rows[index:], str(e), progress)
            except OpenCartClientError as e:
                failed += 1
                logger.warning(f"Update {job.id}: {row.sku} failed in '{store.name}': {e}")
                await self.db.create_update_detail(failure_detail(job.id, store.id, row.sku, str(e)))
            except Exception as e:
                failed += 1
                logger.exception(f"Update {job.id}: unexpected error for {row.sku} in '{store.name}'")
                await self.db.create_update_detail(
                    failure_detail(job.id, store.id, row.sku, f"Unexpected error: {e}")
                )

            counter.advance()

        return failed

    async def _fail_rows(
        self,
        job: UpdateJob,
        store: Store,
        rows: Sequence[ProductRow],
        message: str,
        progress: JobProgress
    ) -> int:
        """Record every given row as failed for the store."""
        counter = progress.counter(store.id)
        for row in rows:
            await self.db.create_update_detail(failure_detail(job.id, store.id, row.sku, message))
            counter.advance()
        return len(rows)

    def cancel(self, update_id: int) -> bool:
        """Ask a running job to stop after its in-flight rows. Returns False if not running."""
        progress = self.tracker.get(update_id)
        if progress is None:
            return False
        progress.cancel_event.set()
        logger.info(f"Cancellation requested for update {update_id}")
        return True

    async def get_progress(self, job: UpdateJob) -> ProgressSnapshot:
        """Live progress for running jobs, 100% for finished ones."""
        progress = self.tracker.get(job.id)
        if progress is not None:
            return progress.snapshot()

        if not job.is_finished:
            # The job may have finished since the caller read it
            job = await self.db.get_update(job.id) or job

        stores: Dict[int, Store] = await self.db.get_stores_by_ids(job.target_store_ids)
        value = 100 if job.is_finished else 0
        return ProgressSnapshot(
            overall=value,
            stores=[
                StoreProgressOut(
                    id=store_id,
                    name=stores[store_id].name if store_id in stores else f"Store {store_id}",
                    progress=value,
                )
                for store_id in job.target_store_ids
            ],
        )

    async def wait(self) -> None:
        """Wait for all running jobs (used on shutdown and by scripts)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
