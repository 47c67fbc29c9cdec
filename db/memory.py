"""In-memory cell store"""

from core.interfaces import CellStore
from core.models import Cell, Connection


class InMemoryCellStore(CellStore):
    """Keeps copies of saved cells, so callers never share objects with it"""

    def __init__(self):
        self.sheet_names: dict[str, str] = {}
        self.cells: dict[str, dict[str, Cell]] = {}
        self.connections: dict[str, list[Connection]] = {}
        self.saves = 0

    def add_sheet(self, sheet_id: str, name: str = None, cells: list[Cell] = None):
        self.sheet_names[sheet_id] = name or sheet_id
        sheet_cells = self.cells.setdefault(sheet_id, {})
        for cell in cells or []:
            sheet_cells[cell.cell_id] = cell.model_copy(deep=True)

    def list_sheets(self) -> list[tuple[str, str]]:
        """(id, name) of every known sheet"""
        ids = dict.fromkeys(list(self.sheet_names) + list(self.cells))
        return [(sheet_id, self.sheet_names.get(sheet_id, sheet_id)) for sheet_id in ids]

    async def save_cell(self, sheet_id: str, cell: Cell) -> None:
        self.cells.setdefault(sheet_id, {})[cell.cell_id] = cell.model_copy(deep=True)
        self.saves += 1

    async def get_sheet_cells(self, sheet_id: str) -> list[Cell]:
        return [cell.model_copy(deep=True) for cell in self.cells.get(sheet_id, {}).values()]

    async def delete_cell(self, sheet_id: str, cell_id: str) -> None:
        self.cells.get(sheet_id, {}).pop(cell_id, None)

    async def get_connections(self, sheet_id: str) -> list[Connection]:
        return [c.model_copy() for c in self.connections.get(sheet_id, [])]

    async def save_connections(self, sheet_id: str, connections: list[Connection]) -> None:
        self.connections[sheet_id] = [c.model_copy() for c in connections]
