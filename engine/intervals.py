"""Interval timers for cells that re-run on a fixed period"""

import asyncio
import logging

from core.exceptions import CellGridError
from core.models import CellKey
from .scheduler import RunScheduler
from .state import CellStateStore

logger = logging.getLogger(__name__)


class IntervalTimerManager:
    """One timer task per eligible cell (auto-run, interval > 0, non-empty prompt).

    Each tick starts its run as a separate task, so restarting or cancelling
    a timer after an edit never cancels a run that is already in flight.
    """

    def __init__(self, state: CellStateStore, scheduler: RunScheduler):
        self.state = state
        self.scheduler = scheduler
        self._timers: dict[CellKey, asyncio.Task] = {}
        self._runs: set[asyncio.Task] = set()

    @property
    def active(self) -> list[CellKey]:
        return [key for key, task in self._timers.items() if not task.done()]

    def rebuild(self, sheet_id: str = None) -> list[CellKey]:
        """Cancel timers and start one for each eligible cell"""
        for key in [k for k in self._timers if sheet_id is None or k.sheet_id == sheet_id]:
            self.cancel(key)
        for key, cell in self.state.cells(sheet_id):
            if cell.wants_interval:
                self._start(key, cell.interval)
        return self.active

    def refresh(self, key: CellKey):
        """Re-evaluate a single cell after an edit"""
        self.cancel(key)
        cell = self.state.get(key)
        if cell is not None and cell.wants_interval:
            self._start(key, cell.interval)

    def cancel(self, key: CellKey) -> bool:
        task = self._timers.pop(key, None)
        if task is None:
            return False
        task.cancel()
        return True

    async def shutdown(self):
        """Cancel every timer and every run a timer started"""
        tasks = list(self._timers.values()) + list(self._runs)
        for key in list(self._timers):
            self.cancel(key)
        for run in list(self._runs):
            run.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _start(self, key: CellKey, interval: float):
        self._timers[key] = asyncio.create_task(self._tick(key, interval), name=f"interval:{key}")
        logger.info(f"Interval timer for {key} every {interval}s")

    async def _tick(self, key: CellKey, interval: float):
        try:
            while True:
                await asyncio.sleep(interval)
                cell = self.state.get(key)
                if cell is None or not cell.wants_interval:
                    return
                if self.scheduler.is_busy(key):
                    continue
                run = asyncio.create_task(self._run(key), name=f"interval-run:{key}")
                self._runs.add(run)
                run.add_done_callback(self._runs.discard)
        finally:
            if self._timers.get(key) is asyncio.current_task():
                del self._timers[key]

    async def _run(self, key: CellKey):
        try:
            await self.scheduler.run(key)
        except CellGridError as e:
            logger.warning(f"Interval run of {key} failed: {e}")
