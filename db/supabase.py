"""Supabase-backed cell store"""

import asyncio
import logging
from typing import Optional

from core.exceptions import PersistenceError
from core.interfaces import CellStore
from core.models import Cell, Connection
from config import settings

logger = logging.getLogger(__name__)


class SupabaseCellStore(CellStore):
    """Stores cells in a ``cells`` table keyed by (sheet_id, cell_id)

    Each row keeps the serialized cell in a ``data`` jsonb column.
    Connections live in their own table and are replaced per sheet.
    """

    def __init__(self, client=None, cells_table: str = None, connections_table: str = None):
        if client is None:
            from supabase import create_client

            if not settings.supabase_enabled():
                raise PersistenceError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
            client = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
        self.client = client
        self.cells_table = cells_table or settings.CELLS_TABLE
        self.connections_table = connections_table or settings.CONNECTIONS_TABLE

    async def _run(self, description: str, fn):
        # supabase-py is synchronous
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except Exception as e:
            raise PersistenceError(f"Failed to {description}: {e}") from e

    async def save_cell(self, sheet_id: str, cell: Cell) -> None:
        row = {
            "sheet_id": sheet_id,
            "cell_id": cell.cell_id,
            "data": cell.model_dump(mode="json"),
        }
        await self._run(
            f"save cell {cell.cell_id}",
            lambda: self.client.table(self.cells_table)
            .upsert(row, on_conflict="sheet_id,cell_id")
            .execute(),
        )

    async def get_sheet_cells(self, sheet_id: str) -> list[Cell]:
        response = await self._run(
            f"load sheet {sheet_id}",
            lambda: self.client.table(self.cells_table)
            .select("cell_id,data")
            .eq("sheet_id", sheet_id)
            .execute(),
        )
        cells = []
        for row in response.data or []:
            data = dict(row.get("data") or {})
            data.setdefault("cell_id", row["cell_id"])
            cells.append(Cell(**data))
        return cells

    async def get_cell(self, sheet_id: str, cell_id: str) -> Optional[Cell]:
        response = await self._run(
            f"load cell {cell_id}",
            lambda: self.client.table(self.cells_table)
            .select("data")
            .eq("sheet_id", sheet_id)
            .eq("cell_id", cell_id)
            .execute(),
        )
        if not response.data:
            return None
        return Cell(**response.data[0]["data"])

    async def delete_cell(self, sheet_id: str, cell_id: str) -> None:
        await self._run(
            f"delete cell {cell_id}",
            lambda: self.client.table(self.cells_table)
            .delete()
            .eq("sheet_id", sheet_id)
            .eq("cell_id", cell_id)
            .execute(),
        )

    async def get_connections(self, sheet_id: str) -> list[Connection]:
        response = await self._run(
            f"load connections of {sheet_id}",
            lambda: self.client.table(self.connections_table)
            .select("source_cell_id,target_cell_id")
            .eq("sheet_id", sheet_id)
            .execute(),
        )
        return [Connection(**row) for row in response.data or []]

    async def save_connections(self, sheet_id: str, connections: list[Connection]) -> None:
        rows = [{"sheet_id": sheet_id, **c.model_dump()} for c in connections]

        def replace():
            table = self.client.table(self.connections_table)
            table.delete().eq("sheet_id", sheet_id).execute()
            if rows:
                self.client.table(self.connections_table).insert(rows).execute()

        await self._run(f"save connections of {sheet_id}", replace)
