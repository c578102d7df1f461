"""
Polling scheduler: one loop driving every periodic job.

Jobs are ``(next_due, key, interval)`` entries in a heap. The loop sleeps
until the earliest entry is due, starts its callback as a task and pushes it
back at ``now + interval``. Cancelling a job bumps its generation so stale
heap entries are skipped when popped; in-flight callbacks are not aborted.
"""

import asyncio
import heapq
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from finboard.models import Widget
from finboard.widget_data import WidgetDataService
from finboard.widget_store import POLLING_FIELDS, WidgetStore

logger = logging.getLogger(__name__)

JobCallback = Callable[[], Awaitable[object]]


@dataclass
class _Job:
    interval: float
    callback: JobCallback
    generation: int


class PollingScheduler:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._heap: List[tuple[float, int, str, int]] = []
        self._jobs: Dict[str, _Job] = {}
        self._generations = itertools.count(1)
        self._seq = itertools.count()
        self._wakeup = asyncio.Event()
        self._runner: Optional[asyncio.Task] = None
        self._inflight: set[asyncio.Task] = set()

    def __contains__(self, key: str) -> bool:
        return key in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    # ── Jobs ──────────────────────────────────────────

    def schedule(self, key: str, interval: float, callback: JobCallback, run_now: bool = True):
        """(Re)schedule ``key``; replaces any previous job under that key."""
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")
        generation = next(self._generations)
        self._jobs[key] = _Job(interval=interval, callback=callback, generation=generation)
        due = self._clock() + (0 if run_now else interval)
        heapq.heappush(self._heap, (due, next(self._seq), key, generation))
        self._wakeup.set()
        logger.debug(f"[{key}] Scheduled every {interval}s")

    def cancel(self, key: str) -> bool:
        if self._jobs.pop(key, None) is None:
            return False
        logger.debug(f"[{key}] Polling cancelled")
        return True

    def next_due(self) -> Optional[float]:
        """Due time of the earliest live job."""
        self._discard_stale()
        return self._heap[0][0] if self._heap else None

    def _discard_stale(self):
        while self._heap:
            _, _, key, generation = self._heap[0]
            job = self._jobs.get(key)
            if job is not None and job.generation == generation:
                return
            heapq.heappop(self._heap)

    def pop_due(self, now: Optional[float] = None) -> List[tuple[str, JobCallback]]:
        """Remove every job due at ``now`` and push it back one interval later."""
        now = self._clock() if now is None else now
        due = []
        while True:
            self._discard_stale()
            if not self._heap or self._heap[0][0] > now:
                break
            _, _, key, generation = heapq.heappop(self._heap)
            job = self._jobs[key]
            heapq.heappush(self._heap, (now + job.interval, next(self._seq), key, generation))
            due.append((key, job.callback))
        return due

    # ── Loop ──────────────────────────────────────────

    async def run(self):
        logger.info("Polling scheduler started")
        while True:
            for key, callback in self.pop_due():
                self._fire(key, callback)

            self._wakeup.clear()
            next_due = self.next_due()
            timeout = None if next_due is None else max(0.0, next_due - self._clock())
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass

    def _fire(self, key: str, callback: JobCallback):
        task = asyncio.create_task(self._run_job(key, callback))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run_job(self, key: str, callback: JobCallback):
        try:
            await callback()
        except Exception as e:
            logger.error(f"[{key}] Scheduled job failed: {e}", exc_info=True)

    def start(self):
        if self._runner is None or self._runner.done():
            self._runner = asyncio.create_task(self.run())

    async def stop(self):
        if self._runner is not None:
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
            self._runner = None
        inflight = list(self._inflight)
        for task in inflight:
            task.cancel()
        await asyncio.gather(*inflight, return_exceptions=True)
        logger.info("Polling scheduler stopped")


class WidgetPoller:
    """Keeps one scheduler job per widget in step with the widget store."""

    def __init__(self, scheduler: PollingScheduler, store: WidgetStore, data_service: WidgetDataService):
        self._scheduler = scheduler
        self._store = store
        self._data = data_service
        store.subscribe(self.on_store_change)

    def start_all(self):
        for widget in self._store.list():
            self.watch(widget)

    def watch(self, widget: Widget):
        if not widget.is_watchlist and not widget.api_endpoint:
            # nothing to poll until an endpoint is configured
            self._scheduler.cancel(widget.id)
            return

        async def refresh():
            await self._data.refresh(widget.id)

        self._scheduler.schedule(widget.id, widget.refresh_interval, refresh)

    def on_store_change(self, event: str, widget_id: str, widget: Widget | None, changed: frozenset):
        if event == "removed":
            self._scheduler.cancel(widget_id)
            self._data.drop_state(widget_id)
        elif widget is not None and changed & POLLING_FIELDS:
            self.watch(widget)
