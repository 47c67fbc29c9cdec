import json
from argparse import Namespace

import pytest

from core.exceptions import PersistenceError
from core.models import Cell, Connection
from db.json_store import JSONFileCellStore
from main import run_workbook
from conftest import FakeProvider


def write_workbook(path, *sheets):
    path.write_text(json.dumps({"sheets": list(sheets)}), encoding="utf-8")


@pytest.mark.asyncio
async def test_json_store_reads_and_rewrites(tmp_path):
    path = tmp_path / "book.json"
    write_workbook(path, {
        "id": "s1",
        "name": "Sheet1",
        "cells": [{"cell_id": "A1", "prompt": "hello"}],
        "connections": [{"source_cell_id": "A1", "target_cell_id": "B1"}],
    })
    store = JSONFileCellStore(path)

    assert store.list_sheets() == [("s1", "Sheet1")]
    assert (await store.get_sheet_cells("s1"))[0].prompt == "hello"
    assert await store.get_connections("s1") == [Connection(source_cell_id="A1", target_cell_id="B1")]

    await store.save_cell("s1", Cell(cell_id="B1", prompt="{{A1}}", output="done"))
    await store.delete_cell("s1", "A1")

    data = json.loads(path.read_text(encoding="utf-8"))
    assert [c["cell_id"] for c in data["sheets"][0]["cells"]] == ["B1"]
    assert data["sheets"][0]["cells"][0]["output"] == "done"
    assert JSONFileCellStore(path).cells["s1"]["B1"].output == "done"


def test_json_store_rejects_broken_files(tmp_path):
    path = tmp_path / "book.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(PersistenceError):
        JSONFileCellStore(path)


def test_missing_file_starts_empty(tmp_path):
    assert JSONFileCellStore(tmp_path / "new.json").list_sheets() == []


@pytest.mark.asyncio
async def test_run_workbook(tmp_path, capsys):
    path = tmp_path / "book.json"
    write_workbook(path, {
        "id": "s1",
        "name": "Sheet1",
        "cells": [
            {"cell_id": "A1", "prompt": "hello"},
            {"cell_id": "B1", "prompt": "{{A1}} world", "auto_run": True},
        ],
    })
    args = Namespace(workbook=path, refs=["a1"], sheet=None, user="ana", credits=10)

    code = await run_workbook(args, provider=FakeProvider({"hello": "hi"}, delay=0))

    assert code == 0
    out = capsys.readouterr().out
    assert "✓ A1 [completed] hi" in out
    assert "Credits left: 8" in out
    saved = {c["cell_id"]: c for c in json.loads(path.read_text(encoding="utf-8"))["sheets"][0]["cells"]}
    assert saved["B1"]["output"] == "hi world"


@pytest.mark.asyncio
async def test_run_workbook_without_sheets(tmp_path):
    path = tmp_path / "book.json"
    write_workbook(path)
    args = Namespace(workbook=path, refs=["A1"], sheet=None, user="ana", credits=10)

    assert await run_workbook(args, provider=FakeProvider()) == 1
