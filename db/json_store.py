"""Workbook file persistence.

A workbook is a JSON document::

    {"sheets": [{"id": "s1", "name": "Sheet1",
                 "cells": [{"cell_id": "A1", "prompt": "hello", ...}],
                 "connections": [{"source_cell_id": "A1", "target_cell_id": "B1"}]}]}
"""

import json
import logging
from pathlib import Path

from core.exceptions import PersistenceError
from core.models import Cell, Connection
from .memory import InMemoryCellStore

logger = logging.getLogger(__name__)


class JSONFileCellStore(InMemoryCellStore):
    """Cell store that rewrites a workbook file after every change"""

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            self._read()

    def _read(self):
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Could not read workbook {self.path}: {e}") from e

        for sheet in data.get("sheets", []):
            sheet_id = str(sheet["id"])
            self.add_sheet(
                sheet_id,
                sheet.get("name"),
                [Cell(**cell) for cell in sheet.get("cells", [])],
            )
            self.connections[sheet_id] = [Connection(**c) for c in sheet.get("connections", [])]
        logger.info(f"Read {len(self.sheet_names)} sheets from {self.path}")

    def _write(self):
        sheets = []
        for sheet_id, name in self.list_sheets():
            sheets.append({
                "id": sheet_id,
                "name": name,
                "cells": [c.model_dump(mode="json") for c in self.cells.get(sheet_id, {}).values()],
                "connections": [c.model_dump(mode="json") for c in self.connections.get(sheet_id, [])],
            })
        try:
            self.path.write_text(json.dumps({"sheets": sheets}, indent=2), encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Could not write workbook {self.path}: {e}") from e

    async def save_cell(self, sheet_id: str, cell: Cell) -> None:
        await super().save_cell(sheet_id, cell)
        self._write()

    async def delete_cell(self, sheet_id: str, cell_id: str) -> None:
        await super().delete_cell(sheet_id, cell_id)
        self._write()

    async def save_connections(self, sheet_id: str, connections: list[Connection]) -> None:
        await super().save_connections(sheet_id, connections)
        self._write()
