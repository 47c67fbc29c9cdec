"""Authoritative in-memory cell state for a session.

Every read goes through `get`, which returns the live cell, so callers
always observe the latest status, output and generations. Every write
goes through the async mutators, which serialize per cell and persist
through the configured `CellStore`.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from core.enums import CellStatus
from core.exceptions import CellNotFoundError, SheetNotFoundError
from core.interfaces import CellStore
from core.models import Cell, CellKey, Connection, Generation, Sheet

logger = logging.getLogger(__name__)

# Statuses that end a job; entering one clears job_id unless given explicitly
_SETTLED_STATUSES = (None, CellStatus.IDLE, CellStatus.COMPLETED, CellStatus.ERROR)


class CellStateStore:
    """Sheets and cells keyed by sheet id, with per-cell write locks"""

    def __init__(self, persistence: CellStore):
        self.persistence = persistence
        self._sheets: dict[str, Sheet] = {}
        self._locks: dict[CellKey, asyncio.Lock] = {}

    # ─────────────────────────────────────────────────────────────
    # Sheets
    # ─────────────────────────────────────────────────────────────

    def register_sheet(self, sheet_id: str, name: str = None) -> Sheet:
        """Make a sheet known without loading its cells"""
        sheet = self._sheets.get(sheet_id)
        if sheet is None:
            sheet = Sheet(id=sheet_id, name=name or sheet_id)
            self._sheets[sheet_id] = sheet
        elif name:
            sheet.name = name
        return sheet

    async def load_sheet(self, sheet_id: str, name: str = None, force: bool = False) -> Sheet:
        sheet = self.register_sheet(sheet_id, name)
        if sheet.loaded and not force:
            return sheet

        cells = await self.persistence.get_sheet_cells(sheet_id)
        connections = await self.persistence.get_connections(sheet_id)
        sheet.cells = {cell.cell_id: cell for cell in cells}
        sheet.connections = list(connections)
        sheet.loaded = True
        logger.info(f"Loaded sheet {sheet.name} ({sheet_id}) with {len(cells)} cells")
        return sheet

    async def ensure_loaded(self, sheet_id: str) -> Optional[Sheet]:
        sheet = self._sheets.get(sheet_id)
        if sheet is None:
            return None
        if not sheet.loaded:
            await self.load_sheet(sheet_id)
        return sheet

    def sheets(self) -> list[Sheet]:
        return list(self._sheets.values())

    def get_sheet(self, sheet_id: str) -> Sheet:
        sheet = self._sheets.get(sheet_id)
        if sheet is None:
            raise SheetNotFoundError(sheet_id)
        return sheet

    def find_sheet(self, name_or_id: str) -> Optional[Sheet]:
        """Look a sheet up by id, then by name (case-insensitive)"""
        if not name_or_id:
            return None
        if name_or_id in self._sheets:
            return self._sheets[name_or_id]
        for sheet in self._sheets.values():
            if sheet.name == name_or_id:
                return sheet
        folded = name_or_id.casefold()
        for sheet in self._sheets.values():
            if sheet.name.casefold() == folded:
                return sheet
        return None

    async def resolve_sheet(self, name_or_id: str) -> Optional[Sheet]:
        sheet = self.find_sheet(name_or_id)
        if sheet is not None and not sheet.loaded:
            await self.load_sheet(sheet.id)
        return sheet

    # ─────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────

    def get(self, key: CellKey) -> Optional[Cell]:
        sheet = self._sheets.get(key.sheet_id)
        if sheet is None:
            return None
        return sheet.cells.get(key.cell_id)

    def require(self, key: CellKey) -> Cell:
        cell = self.get(key)
        if cell is None:
            raise CellNotFoundError(key.cell_id, key.sheet_id)
        return cell

    def cells(self, sheet_id: str = None) -> Iterator[tuple[CellKey, Cell]]:
        """Loaded cells in sheet order, then insertion order"""
        if sheet_id is None:
            sheets = list(self._sheets.values())
        else:
            sheets = [self._sheets[sheet_id]] if sheet_id in self._sheets else []
        for sheet in sheets:
            for cell_id, cell in list(sheet.cells.items()):
                yield CellKey(sheet.id, cell_id), cell

    def lock(self, key: CellKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    # ─────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────

    async def put(self, sheet_id: str, cell: Cell) -> Cell:
        """Create or replace a cell"""
        sheet = self.get_sheet(sheet_id)
        key = CellKey(sheet_id, cell.cell_id)
        async with self.lock(key):
            cell.updated_at = datetime.now(timezone.utc)
            sheet.cells[cell.cell_id] = cell
            await self.persistence.save_cell(sheet_id, cell)
        return cell

    async def update(self, key: CellKey, **changes) -> Cell:
        return await self.mutate(key, lambda cell: self._apply(cell, changes))

    async def record_generation(self, key: CellKey, generation: Generation, **changes) -> Cell:
        """Append a generation and apply field changes in one write"""
        def apply(cell: Cell):
            cell.generations.append(generation)
            self._apply(cell, changes)
        return await self.mutate(key, apply)

    async def mutate(self, key: CellKey, fn: Callable[[Cell], None]) -> Cell:
        async with self.lock(key):
            cell = self.require(key)
            fn(cell)
            cell.updated_at = datetime.now(timezone.utc)
            await self.persistence.save_cell(key.sheet_id, cell)
            return cell

    async def remove(self, key: CellKey) -> Optional[Cell]:
        sheet = self.get_sheet(key.sheet_id)
        async with self.lock(key):
            cell = sheet.cells.pop(key.cell_id, None)
            if cell is None:
                return None
            await self.persistence.delete_cell(key.sheet_id, key.cell_id)
        remaining = [
            c for c in sheet.connections
            if key.cell_id not in (c.source_cell_id, c.target_cell_id)
        ]
        if len(remaining) != len(sheet.connections):
            await self.set_connections(key.sheet_id, remaining)
        self._locks.pop(key, None)
        return cell

    async def set_connections(self, sheet_id: str, connections: list[Connection]):
        sheet = self.get_sheet(sheet_id)
        sheet.connections = list(connections)
        await self.persistence.save_connections(sheet_id, sheet.connections)

    @staticmethod
    def _apply(cell: Cell, changes: dict):
        for field, value in changes.items():
            if not hasattr(cell, field):
                raise AttributeError(f"Cell has no field {field!r}")
            setattr(cell, field, value)
        if "status" in changes and changes["status"] in _SETTLED_STATUSES and "job_id" not in changes:
            cell.job_id = None
