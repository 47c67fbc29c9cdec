"""Job poller: watches deferred provider jobs until they finish"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from config import settings
from core.enums import CellStatus, GenerationStatus, JobStatus
from core.exceptions import PollingError
from core.interfaces import ModelProvider
from core.models import Cell, CellKey, Generation
from llm.models import get_model_type
from ui.progress import ProgressTracker, notify
from .state import CellStateStore

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Generation timed out. The job may still be processing."

CompletionHook = Callable[[CellKey, frozenset], Awaitable[None]]


class JobPoller:
    """One polling task per cell; starting a new one replaces the old"""

    def __init__(
        self,
        state: CellStateStore,
        provider: ModelProvider,
        interval: float = None,
        max_attempts: int = None,
        progress: Optional[ProgressTracker] = None,
    ):
        self.state = state
        self.provider = provider
        self.interval = settings.JOB_POLL_INTERVAL if interval is None else interval
        self.max_attempts = settings.JOB_POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.progress = progress
        self.on_completed: Optional[CompletionHook] = None
        self._tasks: dict[CellKey, asyncio.Task] = {}

    def is_polling(self, key: CellKey) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    @property
    def active(self) -> list[CellKey]:
        return [key for key in self._tasks if self.is_polling(key)]

    def start(self, key: CellKey, job_id: str) -> asyncio.Task:
        self.cancel(key)
        task = asyncio.create_task(self._poll(key, job_id), name=f"poll:{key}")
        self._tasks[key] = task
        logger.info(f"Polling job {job_id} for {key}")
        return task

    def cancel(self, key: CellKey) -> bool:
        """Stop polling `key`; safe to call when nothing is polling"""
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info(f"Stopped polling {key}")
        return True

    async def resume(self, sheet_id: str = None) -> list[CellKey]:
        """Restart polling for cells persisted mid-job"""
        resumed = []
        for key, cell in self.state.cells(sheet_id):
            if cell.job_id and cell.status and cell.status.is_active and not self.is_polling(key):
                self.start(key, cell.job_id)
                resumed.append(key)
        return resumed

    async def wait(self, key: CellKey):
        task = self._tasks.get(key)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def join(self):
        """Wait for every polling task running now"""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self):
        tasks = list(self._tasks.values())
        for key in list(self._tasks):
            self.cancel(key)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ─────────────────────────────────────────────────────────────

    async def _poll(self, key: CellKey, job_id: str):
        completed = False
        try:
            attempts = 0
            while True:
                cell = self.state.get(key)
                if cell is None or cell.job_id != job_id:
                    logger.debug(f"{key} no longer waits on job {job_id}")
                    return
                if attempts >= self.max_attempts:
                    await self._fail(key, PollingError(TIMEOUT_MESSAGE, cell=str(key), job_id=job_id))
                    return
                attempts += 1

                try:
                    result = await self.provider.check_job(job_id)
                except Exception as e:
                    await self._fail(key, PollingError(str(e) or "Job status check failed", cell=str(key), job_id=job_id))
                    return

                if result.status == JobStatus.COMPLETE:
                    await self._complete(key, job_id, result.output or "")
                    completed = True
                    break
                if result.status == JobStatus.ERROR:
                    await self._fail(key, PollingError(result.error or "Generation failed", cell=str(key), job_id=job_id))
                    return

                status = CellStatus(result.status.value)
                if cell.status != status:
                    await self.state.update(key, status=status, job_id=job_id)
                await asyncio.sleep(self.interval)
        finally:
            if self._tasks.get(key) is asyncio.current_task():
                del self._tasks[key]

        if completed and self.on_completed is not None:
            await self.on_completed(key, frozenset({key}))

    async def _complete(self, key: CellKey, job_id: str, output: str):
        def apply(cell: Cell):
            cell.output = output
            cell.status = CellStatus.COMPLETED
            cell.job_id = None
            generation = _pending_generation(cell, job_id)
            if generation is None:
                cell.generations.append(Generation(
                    prompt=cell.prompt,
                    output=output,
                    model=cell.model,
                    temperature=cell.temperature,
                    type=get_model_type(cell.model),
                    job_id=job_id,
                ))
            else:
                generation.output = output
                generation.status = GenerationStatus.COMPLETED

        await self.state.mutate(key, apply)
        logger.info(f"Job {job_id} for {key} completed")
        await notify(self.progress, "cell_completed", key, output)

    async def _fail(self, key: CellKey, error: PollingError):
        def apply(cell: Cell):
            cell.output = f"Error: {error.message}"
            cell.status = CellStatus.ERROR
            cell.job_id = None
            generation = _pending_generation(cell, error.job_id)
            if generation is not None:
                generation.status = GenerationStatus.ERROR
                generation.error = error.message

        await self.state.mutate(key, apply)
        logger.warning(f"Job {error.job_id} for {key} failed: {error.message}")
        await notify(self.progress, "cell_failed", key, error.message)


def _pending_generation(cell: Cell, job_id: str) -> Optional[Generation]:
    for generation in reversed(cell.generations):
        if generation.job_id == job_id:
            return generation
    return None
