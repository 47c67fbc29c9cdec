"""Session orchestrator"""

import asyncio
import logging
from typing import Iterable, Optional

from config import settings
from core.enums import RunOutcome
from core.exceptions import CellGridError, CellNotFoundError, SheetNotFoundError
from core.interfaces import BillingService, CellStore, ModelProvider
from core.models import Cell, CellKey, Connection, RunResult, Sheet
from engine import (
    CascadeController,
    CellStateStore,
    DependencyGraph,
    IntervalTimerManager,
    JobPoller,
    RunScheduler,
)
from engine.references import is_cell_id
from ui.progress import ProgressTracker

logger = logging.getLogger(__name__)

# Fields owned by the engine, never set through update_cell
_ENGINE_FIELDS = {"cell_id", "generations", "updated_at"}


class Orchestrator:
    """Owns the state store, scheduler, poller, cascade queue and timers of one session"""

    def __init__(
        self,
        store: CellStore,
        provider: ModelProvider,
        billing: BillingService,
        user_id: str = "local",
        progress: Optional[ProgressTracker] = None,
        poll_interval: float = None,
        poll_max_attempts: int = None,
    ):
        self.user_id = user_id
        self.progress = progress
        self.state = CellStateStore(store)
        self.graph = DependencyGraph(self.state)
        self.poller = JobPoller(
            self.state,
            provider,
            interval=poll_interval,
            max_attempts=poll_max_attempts,
            progress=progress,
        )
        self.scheduler = RunScheduler(
            self.state,
            provider,
            billing,
            self.poller,
            user_id=user_id,
            progress=progress,
        )
        self.cascade = CascadeController(self.state, self.graph, self.scheduler)
        self.timers = IntervalTimerManager(self.state, self.scheduler)

        self.scheduler.on_completed = self.cascade.on_cell_completed
        self.poller.on_completed = self.cascade.on_cell_completed

        self.active_sheet_id: Optional[str] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    # ─────────────────────────────────────────────────────────────
    # Sheets
    # ─────────────────────────────────────────────────────────────

    def add_sheet(self, sheet_id: str, name: str = None) -> Sheet:
        """Make a sheet addressable by cross-sheet references; loaded on first use"""
        return self.state.register_sheet(sheet_id, name)

    def discover_sheets(self) -> list[Sheet]:
        """Register every sheet the store can enumerate"""
        list_sheets = getattr(self.state.persistence, "list_sheets", None)
        if list_sheets is None:
            return []
        return [self.add_sheet(sheet_id, name) for sheet_id, name in list_sheets()]

    async def open_sheet(self, sheet_id: str, name: str = None, reload: bool = False) -> Sheet:
        """Load a sheet, resume its pending jobs and start its interval timers"""
        sheet = await self.state.load_sheet(sheet_id, name, force=reload)
        self.active_sheet_id = sheet_id
        resumed = await self.poller.resume(sheet_id)
        if resumed:
            logger.info(f"Resumed polling for {', '.join(map(str, resumed))}")
        self.timers.rebuild(sheet_id)
        return sheet

    def sheet(self, sheet_id: str = None) -> Sheet:
        return self.state.get_sheet(self._sheet_id(sheet_id))

    def cell(self, ref: str, sheet_id: str = None) -> Cell:
        return self.state.require(self.key(ref, sheet_id))

    def key(self, ref: str, sheet_id: str = None) -> CellKey:
        return CellKey(self._sheet_id(sheet_id), ref.strip().upper())

    def _sheet_id(self, sheet_id: Optional[str]) -> str:
        sheet_id = sheet_id or self.active_sheet_id
        if sheet_id is None:
            raise SheetNotFoundError("<none open>")
        return sheet_id

    # ─────────────────────────────────────────────────────────────
    # Cell lifecycle
    # ─────────────────────────────────────────────────────────────

    async def create_cell(self, ref: str, sheet_id: str = None, **fields) -> Cell:
        key = self.key(ref, sheet_id)
        if not is_cell_id(key.cell_id):
            raise CellGridError(f"Invalid cell reference {ref!r}")
        self.state.get_sheet(key.sheet_id)
        fields.setdefault("model", settings.DEFAULT_MODEL)
        fields.setdefault("temperature", settings.DEFAULT_TEMPERATURE)
        cell = Cell(cell_id=key.cell_id, **fields)
        await self.state.put(key.sheet_id, cell)
        self.timers.refresh(key)
        return cell

    async def update_cell(self, ref: str, sheet_id: str = None, **changes) -> Cell:
        key = self.key(ref, sheet_id)
        blocked = _ENGINE_FIELDS.intersection(changes)
        if blocked:
            raise CellGridError(f"Cannot set {', '.join(sorted(blocked))} on {key}")
        validated = Cell(**{**self.state.require(key).model_dump(), **changes})
        cell = await self.state.update(key, **{name: getattr(validated, name) for name in changes})
        self.timers.refresh(key)
        return cell

    async def save_cell(self, ref: str, sheet_id: str = None, **fields) -> Cell:
        """Create the cell, or update it if it exists"""
        key = self.key(ref, sheet_id)
        if self.state.get(key) is None:
            return await self.create_cell(ref, sheet_id, **fields)
        return await self.update_cell(ref, sheet_id, **fields)

    async def delete_cell(self, ref: str, sheet_id: str = None) -> Cell:
        key = self.key(ref, sheet_id)
        self._halt(key)
        self.timers.cancel(key)
        cell = await self.state.remove(key)
        if cell is None:
            raise CellNotFoundError(key.cell_id, key.sheet_id)
        return cell

    # ─────────────────────────────────────────────────────────────
    # Execution
    # ─────────────────────────────────────────────────────────────

    async def run_cell(self, ref: str, sheet_id: str = None) -> RunResult:
        """Run a cell now; completed runs cascade to auto-run dependents"""
        return await self.scheduler.run(self.key(ref, sheet_id))

    async def run_cells(self, refs: Iterable[str], sheet_id: str = None) -> list[RunResult]:
        """Run several cells one at a time, dependencies first"""
        keys = [self.key(ref, sheet_id) for ref in refs]
        for key in keys:
            self.state.require(key)

        results = []
        for key in self.graph.topological_order(keys):
            try:
                results.append(await self.scheduler.run(key))
            except CellGridError as e:
                logger.warning(f"Batch run of {key} failed: {e}")
                results.append(RunResult(
                    sheet_id=key.sheet_id,
                    cell_id=key.cell_id,
                    outcome=RunOutcome.FAILED,
                    error=str(e),
                ))
        return results

    async def stop_cell(self, ref: str, sheet_id: str = None) -> list[CellKey]:
        """Stop a cell and any busy direct dependency or dependent.

        Every stopped cell is left with no status and no job id.
        """
        key = self.key(ref, sheet_id)
        self.state.require(key)

        targets = [key]
        for other in self.graph.dependency_keys(key) + self.graph.dependents(key):
            if other not in targets and self.scheduler.is_busy(other):
                targets.append(other)

        for target in targets:
            self._halt(target)

        for target in targets:
            if self.state.get(target) is not None:
                await self.state.update(target, status=None, job_id=None)
        logger.info(f"Stopped {', '.join(map(str, targets))}")
        return targets

    def _halt(self, key: CellKey):
        """Synchronously drop every piece of in-flight work for `key`"""
        self.scheduler.stop(key)
        self.cascade.discard(key)
        self.poller.cancel(key)

    async def settle(self):
        """Wait until no job is polling and the cascade queue is drained"""
        while True:
            await asyncio.sleep(0)
            if self.poller.active:
                await self.poller.join()
                continue
            if self.cascade.draining:
                await self.cascade.wait_idle()
                continue
            if not self.scheduler.in_flight:
                return
            await asyncio.sleep(0.01)

    # ─────────────────────────────────────────────────────────────
    # Graph and connections
    # ─────────────────────────────────────────────────────────────

    def dependencies(self, ref: str, sheet_id: str = None) -> list[CellKey]:
        return self.graph.dependency_keys(self.key(ref, sheet_id))

    def dependents(self, ref: str, sheet_id: str = None) -> list[CellKey]:
        return self.graph.dependents(self.key(ref, sheet_id))

    def connections(self, sheet_id: str = None) -> list[Connection]:
        return list(self.sheet(sheet_id).connections)

    async def add_connection(self, source: str, target: str, sheet_id: str = None) -> Connection:
        sheet = self.sheet(sheet_id)
        connection = Connection(source_cell_id=source.upper(), target_cell_id=target.upper())
        if connection not in sheet.connections:
            await self.state.set_connections(sheet.id, sheet.connections + [connection])
        return connection

    async def remove_connection(self, source: str, target: str, sheet_id: str = None) -> bool:
        sheet = self.sheet(sheet_id)
        connection = Connection(source_cell_id=source.upper(), target_cell_id=target.upper())
        if connection not in sheet.connections:
            return False
        await self.state.set_connections(
            sheet.id, [c for c in sheet.connections if c != connection]
        )
        return True

    # ─────────────────────────────────────────────────────────────

    async def close(self):
        """Drop queued cascades, then cancel timers, polling and in-flight runs"""
        self.cascade.shutdown()
        await self.timers.shutdown()
        await self.poller.shutdown()
        tasks = self.scheduler.stop_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
