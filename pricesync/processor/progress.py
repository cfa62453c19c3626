"""
In-memory progress of running update jobs.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from ..db import CamelModel


class StoreProgressOut(CamelModel):
    id: int
    name: str
    progress: int


class ProgressSnapshot(CamelModel):
    """What the client polls: overall and per-store percentages."""
    overall: int
    stores: List[StoreProgressOut]


def percent(processed: int, total: int) -> int:
    if total <= 0:
        return 100
    return min(100, processed * 100 // total)


@dataclass
class StoreCounter:
    """Rows handled for one store. Only that store's worker advances it."""
    store_id: int
    name: str
    total: int
    processed: int = 0

    def advance(self, count: int = 1) -> None:
        self.processed = min(self.total, self.processed + count)


@dataclass
class JobProgress:
    """Progress and cancel flag of one running update job."""
    update_id: int
    counters: Dict[int, StoreCounter] = field(default_factory=dict)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    @classmethod
    def create(
        cls,
        update_id: int,
        stores: Iterable[Tuple[int, str]],
        rows_per_store: int
    ) -> "JobProgress":
        progress = cls(update_id=update_id)
        for store_id, name in stores:
            progress.counters[store_id] = StoreCounter(store_id, name, rows_per_store)
        return progress

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def counter(self, store_id: int) -> StoreCounter:
        return self.counters[store_id]

    def snapshot(self) -> ProgressSnapshot:
        processed = sum(c.processed for c in self.counters.values())
        total = sum(c.total for c in self.counters.values())
        return ProgressSnapshot(
            overall=percent(processed, total),
            stores=[
                StoreProgressOut(id=c.store_id, name=c.name, progress=percent(c.processed, c.total))
                for c in self.counters.values()
            ],
        )


class ProgressTracker:
    """Registry of running jobs' progress, keyed by update id."""

    def __init__(self):
        self._jobs: Dict[int, JobProgress] = {}

    def register(self, progress: JobProgress) -> JobProgress:
        self._jobs[progress.update_id] = progress
        return progress

    def get(self, update_id: int) -> Optional[JobProgress]:
        return self._jobs.get(update_id)

    def discard(self, update_id: int) -> None:
        self._jobs.pop(update_id, None)

    def __contains__(self, update_id: int) -> bool:
        return update_id in self._jobs
