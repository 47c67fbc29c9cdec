import asyncio
from typing import Optional

import pytest
import pytest_asyncio

from billing.credits import CreditLedger
from core.enums import JobStatus
from core.interfaces import ModelProvider
from core.models import (
    Cell,
    DeferredResult,
    FailedResult,
    ImmediateResult,
    JobStatusResult,
    ProviderRequest,
)
from db.memory import InMemoryCellStore
from orchestrator import Orchestrator


class FakeProvider(ModelProvider):
    """Scripted provider.

    `outputs` maps a resolved prompt to a string, a provider result, an
    exception or a callable returning one of those. Unknown prompts are
    echoed back. `jobs` maps a job id to the sequence of status results
    `check_job` returns; the last entry repeats.
    """

    def __init__(self, outputs: dict = None, delay: float = 0.01):
        self.outputs = outputs or {}
        self.delay = delay
        self.jobs: dict[str, list] = {}
        self.calls: list[ProviderRequest] = []
        self.windows: list[tuple[str, float, float]] = []
        self.job_checks: list[str] = []
        self.active = 0
        self.max_active = 0

    @property
    def prompts(self) -> list[str]:
        return [request.resolved_prompt for request in self.calls]

    def window(self, prompt: str) -> tuple[float, float]:
        for recorded, start, end in self.windows:
            if recorded == prompt:
                return start, end
        raise KeyError(prompt)

    async def generate(self, request: ProviderRequest):
        loop = asyncio.get_running_loop()
        self.calls.append(request)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        start = loop.time()
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
            self.windows.append((request.resolved_prompt, start, loop.time()))

        result = self.outputs.get(request.resolved_prompt)
        if callable(result):
            result = result(request)
        if isinstance(result, Exception):
            raise result
        if isinstance(result, (ImmediateResult, DeferredResult, FailedResult)):
            return result
        if result is None:
            return ImmediateResult(output=request.resolved_prompt)
        return ImmediateResult(output=result)

    async def check_job(self, job_id: str) -> JobStatusResult:
        self.job_checks.append(job_id)
        script = self.jobs.get(job_id)
        if not script:
            return JobStatusResult(status=JobStatus.PENDING)
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return item


def job_done(output: str) -> JobStatusResult:
    return JobStatusResult(status=JobStatus.COMPLETE, output=output)


def job_failed(error: str) -> JobStatusResult:
    return JobStatusResult(status=JobStatus.ERROR, error=error)


def job_status(status: JobStatus) -> JobStatusResult:
    return JobStatusResult(status=status)


def add_sheet(store: InMemoryCellStore, sheet_id: str = "s1", name: str = "Sheet1", **cells):
    """Seed a sheet: add_sheet(store, A1={"prompt": "hello"}, ...)"""
    store.add_sheet(
        sheet_id,
        name,
        [Cell(cell_id=ref, **fields) for ref, fields in cells.items()],
    )


@pytest.fixture
def store() -> InMemoryCellStore:
    return InMemoryCellStore()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def ledger() -> CreditLedger:
    return CreditLedger(default_credits=100)


@pytest_asyncio.fixture
async def orchestrator(store, provider, ledger):
    orch = Orchestrator(
        store,
        provider,
        ledger,
        user_id="tester",
        poll_interval=0.01,
        poll_max_attempts=20,
    )
    yield orch
    await orch.close()


async def open_sheet(orch: Orchestrator, store: InMemoryCellStore, sheet_id: str = "s1"):
    orch.discover_sheets()
    return await orch.open_sheet(sheet_id)
