"""Cascade controller: re-runs auto-run dependents when a cell completes.

All cascade work flows through one FIFO queue drained by a single loop,
so at most one cascaded run executes at a time. Completions observed
while the loop is draining only enqueue; the active drain picks them up.
"""

import asyncio
import logging
from collections import deque

from core.enums import CellStatus
from core.exceptions import CellGridError
from core.models import Cell, CellKey
from .graph import DependencyGraph
from .scheduler import RunScheduler
from .state import CellStateStore

logger = logging.getLogger(__name__)


def _is_complete(cell: Cell) -> bool:
    """Completed, or idle with a non-error output kept from an earlier run"""
    if cell.status == CellStatus.COMPLETED:
        return True
    if cell.status not in (None, CellStatus.IDLE) or not cell.output:
        return False
    return not cell.output.startswith("Error:")


class CascadeController:
    """Serialized propagation of completions to dependents"""

    def __init__(self, state: CellStateStore, graph: DependencyGraph, scheduler: RunScheduler):
        self.state = state
        self.graph = graph
        self.scheduler = scheduler
        self._queue: deque[tuple[CellKey, frozenset]] = deque()
        self._draining = False
        self._closed = False
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def queued(self) -> list[CellKey]:
        return [key for key, _ in self._queue]

    @property
    def draining(self) -> bool:
        return self._draining

    def is_queued(self, key: CellKey) -> bool:
        return any(queued == key for queued, _ in self._queue)

    def discard(self, key: CellKey) -> bool:
        """Drop `key` from the queue"""
        before = len(self._queue)
        self._queue = deque(entry for entry in self._queue if entry[0] != key)
        return len(self._queue) != before

    async def wait_idle(self):
        await self._idle.wait()

    def shutdown(self):
        """Drop queued work and refuse new cascades; the running drain stops after its current run"""
        self._closed = True
        if self._queue:
            logger.info(f"Discarding queued cascade runs: {', '.join(map(str, self.queued))}")
        self._queue.clear()

    async def on_cell_completed(self, key: CellKey, chain: frozenset = frozenset()):
        """Enqueue eligible dependents of `key`, then drain unless already draining"""
        if self._closed:
            return
        chain = chain | {key}
        for dependent in self.graph.dependents(key):
            if self._should_enqueue(dependent, chain) and await self.dependencies_satisfied(dependent):
                self._queue.append((dependent, chain))
                logger.info(f"Queued {dependent} after {key} completed")

        if not self._draining:
            await self._drain()

    def _should_enqueue(self, key: CellKey, chain: frozenset) -> bool:
        cell = self.state.get(key)
        if cell is None or not cell.auto_run or not cell.has_prompt:
            return False
        if key in chain:
            logger.warning(f"Not re-running {key}: already ran in this cascade")
            return False
        cycle = self.graph.find_cycle(key)
        if cycle is not None:
            logger.warning(f"Not auto-running {key}: circular dependency {' -> '.join(map(str, cycle))}")
            return False
        return not self.is_queued(key) and not self.scheduler.is_busy(key)

    async def dependencies_satisfied(self, key: CellKey) -> bool:
        """Every referenced cell exists, is idle and, unless only its prompt is read, has a usable output"""
        for target, reference in self.graph.dependencies(key):
            if target is None:
                return False
            if target == key:
                continue
            await self.state.ensure_loaded(target.sheet_id)
            dependency = self.state.get(target)
            if dependency is None or self.scheduler.is_busy(target):
                return False
            if reference.reads_prompt:
                continue
            if not _is_complete(dependency):
                return False
        return True

    async def _drain(self):
        self._draining = True
        self._idle.clear()
        try:
            while self._queue and not self._closed:
                key, chain = self._queue.popleft()
                cell = self.state.get(key)
                if cell is None or not cell.auto_run or not cell.has_prompt:
                    continue
                # State may have moved since the key was queued
                if not await self.dependencies_satisfied(key):
                    logger.debug(f"Dropping {key} from cascade: dependencies not ready")
                    continue
                try:
                    await self.scheduler.run(key, chain=chain)
                except CellGridError as e:
                    logger.warning(f"Cascaded run of {key} failed: {e}")
                except Exception:
                    logger.exception(f"Cascaded run of {key} crashed")
        except asyncio.CancelledError:
            if self._queue:
                logger.warning(f"Cascade cancelled, dropping {', '.join(map(str, self.queued))}")
                self._queue.clear()
            raise
        finally:
            self._draining = False
            self._idle.set()
