import asyncio

import pytest

from core.enums import CellStatus, GenerationStatus, JobStatus, RunOutcome
from core.models import DeferredResult, Generation
from engine.poller import TIMEOUT_MESSAGE
from conftest import add_sheet, job_done, job_failed, job_status, open_sheet


def pending_generation(job_id):
    return Generation(
        prompt="film",
        model="sora-2",
        temperature=0.7,
        type="video",
        status=GenerationStatus.PENDING,
        job_id=job_id,
    )


async def wait_for_status(orchestrator, ref, status):
    for _ in range(50):
        if orchestrator.cell(ref).status == status:
            return
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_open_sheet_resumes_persisted_jobs(orchestrator, store, provider):
    add_sheet(
        store,
        A1={
            "prompt": "film",
            "model": "sora-2",
            "status": "processing",
            "job_id": "job-9",
            "generations": [pending_generation("job-9")],
        },
        B1={"prompt": "done", "status": "completed", "job_id": "stale"},
    )
    provider.jobs["job-9"] = [job_done("https://cdn.example.com/film.mp4")]

    await open_sheet(orchestrator, store)
    await orchestrator.settle()

    cell = orchestrator.cell("A1")
    assert cell.status == CellStatus.COMPLETED
    assert cell.output == "https://cdn.example.com/film.mp4"
    assert cell.job_id is None
    assert len(cell.generations) == 1
    assert cell.generations[0].status == GenerationStatus.COMPLETED
    assert provider.job_checks == ["job-9"]


@pytest.mark.asyncio
async def test_completed_job_without_generation_records_one(orchestrator, store, provider):
    add_sheet(store, A1={"prompt": "film", "model": "sora-2", "status": "queued", "job_id": "job-3"})
    provider.jobs["job-3"] = [job_done("https://cdn.example.com/clip.mp4")]

    await open_sheet(orchestrator, store)
    await orchestrator.settle()

    generation = orchestrator.cell("A1").generations[-1]
    assert generation.output == "https://cdn.example.com/clip.mp4"
    assert generation.job_id == "job-3"
    assert generation.type == "video"


@pytest.mark.asyncio
async def test_intermediate_statuses_are_mirrored(orchestrator, store, provider):
    add_sheet(store, A1={"prompt": "film", "model": "sora-2", "status": "pending", "job_id": "job-4"})
    provider.jobs["job-4"] = [job_status(JobStatus.IN_PROGRESS)]

    await open_sheet(orchestrator, store)
    await wait_for_status(orchestrator, "A1", CellStatus.IN_PROGRESS)

    cell = orchestrator.cell("A1")
    assert cell.status == CellStatus.IN_PROGRESS
    assert cell.job_id == "job-4"
    assert orchestrator.poller.is_polling(orchestrator.key("A1"))


@pytest.mark.asyncio
async def test_failed_job_marks_cell_and_generation(orchestrator, store, provider):
    add_sheet(
        store,
        A1={
            "prompt": "film",
            "model": "sora-2",
            "status": "processing",
            "job_id": "job-5",
            "generations": [pending_generation("job-5")],
        },
    )
    provider.jobs["job-5"] = [job_failed("content policy violation")]

    await open_sheet(orchestrator, store)
    await orchestrator.settle()

    cell = orchestrator.cell("A1")
    assert cell.status == CellStatus.ERROR
    assert cell.output == "Error: content policy violation"
    assert cell.job_id is None
    assert cell.generations[0].status == GenerationStatus.ERROR
    assert cell.generations[0].error == "content policy violation"


@pytest.mark.asyncio
async def test_status_check_failure_fails_the_job(orchestrator, store, provider):
    add_sheet(store, A1={"prompt": "film", "model": "sora-2", "status": "processing", "job_id": "job-6"})
    provider.jobs["job-6"] = [RuntimeError("gateway timeout")]

    await open_sheet(orchestrator, store)
    await orchestrator.settle()

    cell = orchestrator.cell("A1")
    assert cell.status == CellStatus.ERROR
    assert cell.output == "Error: gateway timeout"
    assert provider.job_checks == ["job-6"]


@pytest.mark.asyncio
async def test_polling_gives_up_after_max_attempts(orchestrator, store, provider):
    add_sheet(store, A1={"prompt": "film", "model": "sora-2", "status": "processing", "job_id": "job-7"})

    await open_sheet(orchestrator, store)
    await orchestrator.settle()

    cell = orchestrator.cell("A1")
    assert cell.status == CellStatus.ERROR
    assert cell.output == f"Error: {TIMEOUT_MESSAGE}"
    assert len(provider.job_checks) == orchestrator.poller.max_attempts


@pytest.mark.asyncio
async def test_cancel_is_idempotent(orchestrator, store, provider):
    add_sheet(store, A1={"prompt": "film", "model": "sora-2", "status": "processing", "job_id": "job-8"})
    await open_sheet(orchestrator, store)
    key = orchestrator.key("A1")

    assert orchestrator.poller.is_polling(key)
    assert orchestrator.poller.cancel(key)
    assert not orchestrator.poller.cancel(key)
    assert not orchestrator.poller.is_polling(key)
    assert orchestrator.poller.active == []


@pytest.mark.asyncio
async def test_poller_stops_when_the_cell_moves_on(orchestrator, store, provider):
    add_sheet(store, A1={"prompt": "film", "model": "sora-2", "status": "processing", "job_id": "job-10"})
    await open_sheet(orchestrator, store)
    key = orchestrator.key("A1")

    await orchestrator.state.update(key, job_id="job-11")
    await orchestrator.poller.wait(key)

    assert not orchestrator.poller.is_polling(key)
    assert orchestrator.cell("A1").job_id == "job-11"


@pytest.mark.asyncio
async def test_completed_job_cascades_to_dependents(orchestrator, store, provider):
    add_sheet(
        store,
        A1={"prompt": "a short film", "model": "sora-2"},
        B1={"prompt": "Describe {{A1}}", "auto_run": True},
    )
    await open_sheet(orchestrator, store)
    provider.outputs["a short film"] = DeferredResult(job_id="job-12")
    provider.jobs["job-12"] = [
        job_status(JobStatus.PENDING),
        job_done("https://cdn.example.com/film.mp4"),
    ]

    result = await orchestrator.run_cell("A1")
    assert result.outcome == RunOutcome.PENDING
    assert provider.prompts == ["a short film"]

    await orchestrator.settle()

    assert provider.prompts == ["a short film", "Describe https://cdn.example.com/film.mp4"]
    assert orchestrator.cell("B1").output == "Describe https://cdn.example.com/film.mp4"
