"""Run scheduler: executes one cell against a model provider.

A cell has at most one run in flight. The in-flight marker is taken
synchronously when `run` is entered, before the first await, so a second
request for the same cell arriving while the first is suspended is
ignored. The run body executes in its own task so `stop` can cancel it.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from core.enums import CellStatus, GenerationStatus, RunOutcome
from core.exceptions import CellGridError, InsufficientCreditsError, ProviderError
from core.interfaces import BillingService, ModelProvider
from core.models import (
    CellKey,
    DeferredResult,
    FailedResult,
    Generation,
    ImmediateResult,
    RunResult,
)
from billing.credits import credit_cost, parse_insufficient_credits
from llm.models import get_model_type
from llm.prompts import build_request
from ui.progress import ProgressTracker, notify
from .conditions import should_execute
from .poller import JobPoller
from .resolver import TemplateResolver
from .state import CellStateStore

logger = logging.getLogger(__name__)

CompletionHook = Callable[[CellKey, frozenset], Awaitable[None]]


class RunScheduler:
    """Single-flight execution of cells"""

    def __init__(
        self,
        state: CellStateStore,
        provider: ModelProvider,
        billing: BillingService,
        poller: JobPoller,
        user_id: str = None,
        progress: Optional[ProgressTracker] = None,
    ):
        self.state = state
        self.provider = provider
        self.billing = billing
        self.poller = poller
        self.user_id = user_id
        self.progress = progress
        self.on_completed: Optional[CompletionHook] = None
        self._in_flight: dict[CellKey, asyncio.Task] = {}
        self._stopped: set[CellKey] = set()

    def is_running(self, key: CellKey) -> bool:
        return key in self._in_flight

    def is_busy(self, key: CellKey) -> bool:
        """Running here or waiting on a provider job"""
        return self.is_running(key) or self.poller.is_polling(key)

    @property
    def in_flight(self) -> frozenset:
        return frozenset(self._in_flight)

    async def run(self, key: CellKey, chain: frozenset = frozenset()) -> RunResult:
        """Run a cell; `chain` holds the cells already run in this cascade pass"""
        cell = self.state.require(key)
        if self.is_busy(key):
            logger.debug(f"{key} already running, request ignored")
            return self._result(key, RunOutcome.IGNORED)
        if not cell.has_prompt:
            return self._result(key, RunOutcome.IGNORED)

        # Marker is taken before any await
        self._stopped.discard(key)
        task = asyncio.ensure_future(self._execute(key))
        self._in_flight[key] = task

        try:
            result = await task
        except asyncio.CancelledError:
            await self._abandon(key, task)
            if task.cancelled() and key in self._stopped:
                self._stopped.discard(key)
                logger.info(f"{key} stopped")
                return self._result(key, RunOutcome.STOPPED)
            raise
        finally:
            if self._in_flight.get(key) is task:
                del self._in_flight[key]

        # Polling starts after the marker is released
        if result.outcome == RunOutcome.PENDING and key not in self._stopped:
            self.poller.start(key, result.job_id)

        # Dependents see this cell as idle once the marker is gone
        if result.outcome == RunOutcome.COMPLETED and self.on_completed is not None:
            await self.on_completed(key, chain | {key})
        return result

    def stop(self, key: CellKey) -> bool:
        """Cancel the in-flight run of `key`, if any; does not await"""
        task = self._in_flight.pop(key, None)
        if task is None:
            return False
        self._stopped.add(key)
        task.cancel()
        return True

    def stop_all(self) -> list[asyncio.Task]:
        tasks = list(self._in_flight.values())
        for key in list(self._in_flight):
            self.stop(key)
        return tasks

    async def _abandon(self, key: CellKey, task: asyncio.Task):
        """Clear the running status left by a cancelled run, unless a newer run owns the cell"""
        if self._in_flight.get(key, task) is not task:
            return
        cell = self.state.get(key)
        if cell is not None and cell.status == CellStatus.RUNNING:
            await self.state.update(key, status=None, job_id=None)

    # ─────────────────────────────────────────────────────────────

    async def _execute(self, key: CellKey) -> RunResult:
        resolver = TemplateResolver(self.state, key.sheet_id)
        cell = self.state.require(key)

        async def operand(reference):
            return await resolver.value_of(reference, key.sheet_id)

        if not await should_execute(cell, operand):
            logger.info(f"{key} condition not met, skipping")
            await notify(self.progress, "cell_skipped", key)
            return self._result(key, RunOutcome.SKIPPED)

        previous_status = cell.status
        await self.state.update(key, status=CellStatus.RUNNING)
        await notify(self.progress, "cell_started", key, cell.model)

        resolved = await resolver.resolve_cell(key)
        cell = self.state.require(key)
        request = build_request(cell, resolved, self.user_id)

        try:
            await self._charge(key, cell.model)
        except CellGridError:
            await self.state.update(key, status=previous_status, job_id=None)
            raise

        try:
            result = await self.provider.generate(request)
        except ProviderError as e:
            await self._fail(key, e.message)
        except Exception as e:
            await self._fail(key, str(e) or e.__class__.__name__)

        generation = Generation(
            prompt=cell.prompt,
            resolved_prompt=resolved,
            model=cell.model,
            temperature=cell.temperature,
            type=get_model_type(cell.model),
        )

        if isinstance(result, ImmediateResult):
            generation.output = result.output
            await self.state.record_generation(
                key, generation, output=result.output, status=CellStatus.COMPLETED, job_id=None
            )
            logger.info(f"{key} completed")
            await notify(self.progress, "cell_completed", key, result.output)
            return self._result(key, RunOutcome.COMPLETED, output=result.output)

        if isinstance(result, DeferredResult):
            generation.status = GenerationStatus.PENDING
            generation.job_id = result.job_id
            await self.state.record_generation(
                key, generation, status=CellStatus.PENDING, job_id=result.job_id
            )
            await notify(self.progress, "cell_polling", key, result.job_id)
            return self._result(key, RunOutcome.PENDING, job_id=result.job_id)

        if isinstance(result, FailedResult):
            await self._fail(key, result.error)

        await self._fail(key, f"Unexpected provider result: {result!r}")

    async def _charge(self, key: CellKey, model: str):
        cost = credit_cost(model)
        check = await self.billing.check_and_deduct_credits(self.user_id, cost)
        if check.success:
            return
        message = check.error or "Failed to check credits"
        parsed = parse_insufficient_credits(message)
        if parsed is not None:
            logger.warning(f"{key} not run: {message}")
            raise InsufficientCreditsError(*parsed, message=message)
        raise CellGridError(message)

    async def _fail(self, key: CellKey, message: str):
        await self.state.update(key, output=f"Error: {message}", status=CellStatus.ERROR, job_id=None)
        logger.warning(f"{key} failed: {message}")
        await notify(self.progress, "cell_failed", key, message)
        raise ProviderError(message, cell=str(key))

    def _result(self, key: CellKey, outcome: RunOutcome, **fields) -> RunResult:
        return RunResult(sheet_id=key.sheet_id, cell_id=key.cell_id, outcome=outcome, **fields)
