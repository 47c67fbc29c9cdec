"""Main entry point for Cellgrid"""

import asyncio
import argparse
import logging
from pathlib import Path

from billing.credits import CreditLedger
from config import settings
from core.enums import RunOutcome
from db.json_store import JSONFileCellStore
from orchestrator import Orchestrator
from ui.progress import ConsoleProgress


def build_provider():
    from llm import HTTPProvider, LLMClient

    if settings.PROVIDER_BACKEND_URL:
        return HTTPProvider()
    return LLMClient()


async def run_workbook(args, provider=None) -> int:
    store = JSONFileCellStore(args.workbook)
    sheets = store.list_sheets()
    if not sheets:
        print(f"Error: No sheets in {args.workbook}")
        return 1
    sheet_id = args.sheet or sheets[0][0]

    ledger = CreditLedger(default_credits=args.credits)
    orchestrator = Orchestrator(
        store,
        provider or build_provider(),
        ledger,
        user_id=args.user,
        progress=ConsoleProgress(),
    )

    async with orchestrator:
        orchestrator.discover_sheets()
        sheet = await orchestrator.open_sheet(sheet_id)
        print(f"Sheet {sheet.name}: {len(sheet.cells)} cells")

        results = await orchestrator.run_cells(args.refs, sheet_id)
        await orchestrator.settle()

        failed = 0
        print()
        for result in results:
            cell = orchestrator.cell(result.cell_id, sheet_id)
            if result.outcome == RunOutcome.FAILED:
                failed += 1
                print(f"✗ {result.cell_id}: {result.error}")
            else:
                print(f"✓ {result.cell_id} [{result.outcome.value}] {cell.output}")
        print(f"\nCredits left: {ledger.balance(args.user)}")

    return 1 if failed else 0


def main():
    parser = argparse.ArgumentParser(
        description="Cellgrid - run prompt cells from a workbook file"
    )
    parser.add_argument("workbook", type=Path, help="Workbook JSON file")
    parser.add_argument("refs", nargs="+", help="Cells to run, e.g. A1 B2")
    parser.add_argument("--sheet", type=str, default=None, help="Sheet id (default: first sheet)")
    parser.add_argument("--user", type=str, default="local", help="User charged for runs")
    parser.add_argument(
        "--credits",
        type=int,
        default=settings.DEFAULT_CREDITS,
        help="Starting credits for the user"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
    )

    if not args.workbook.exists():
        print(f"Error: File not found: {args.workbook}")
        return 1

    try:
        return asyncio.run(run_workbook(args))
    except Exception as e:
        print(f"\n✗ Run failed: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    exit(main())
