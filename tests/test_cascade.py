import asyncio

import pytest

from core.enums import CellStatus, RunOutcome
from core.models import DeferredResult, FailedResult
from conftest import add_sheet, job_done, open_sheet


def assert_serial(provider, *prompts):
    """Each prompt's provider call ended before the next one started"""
    windows = [provider.window(prompt) for prompt in prompts]
    for (_, end), (start, _) in zip(windows, windows[1:]):
        assert end <= start


@pytest.mark.asyncio
async def test_completion_reruns_auto_run_dependent(orchestrator, store, provider):
    add_sheet(
        store,
        A1={"prompt": "hello"},
        B1={"prompt": "{{A1}} world", "auto_run": True},
    )
    await open_sheet(orchestrator, store)
    provider.outputs["hello"] = "hi"

    result = await orchestrator.run_cell("A1")
    await orchestrator.settle()

    assert result.outcome == RunOutcome.COMPLETED
    assert provider.prompts == ["hello", "hi world"]
    assert orchestrator.cell("B1").output == "hi world"
    assert orchestrator.cell("B1").status == CellStatus.COMPLETED
    assert_serial(provider, "hello", "hi world")


@pytest.mark.asyncio
async def test_dependents_run_one_at_a_time(orchestrator, store, provider):
    add_sheet(
        store,
        A1={"prompt": "hello"},
        B1={"prompt": "{{A1}} b", "auto_run": True},
        C1={"prompt": "{{A1}} c", "auto_run": True},
        D1={"prompt": "{{A1}} d", "auto_run": True},
    )
    await open_sheet(orchestrator, store)
    provider.outputs["hello"] = "hi"

    await orchestrator.run_cell("A1")
    await orchestrator.settle()

    assert provider.prompts == ["hello", "hi b", "hi c", "hi d"]
    assert provider.max_active == 1
    assert_serial(provider, "hello", "hi b", "hi c", "hi d")


@pytest.mark.asyncio
async def test_manual_dependents_are_left_alone(orchestrator, store, provider):
    add_sheet(
        store,
        A1={"prompt": "hello"},
        B1={"prompt": "{{A1}} world"},
    )
    await open_sheet(orchestrator, store)

    await orchestrator.run_cell("A1")
    await orchestrator.settle()

    assert provider.prompts == ["hello"]
    assert orchestrator.cell("B1").status == CellStatus.IDLE


@pytest.mark.asyncio
async def test_incomplete_co_dependency_blocks_the_run(orchestrator, store, provider):
    add_sheet(
        store,
        A1={"prompt": "hello"},
        B1={"prompt": "{{A1}} and {{C1}}", "auto_run": True},
        C1={"prompt": "x"},
    )
    await open_sheet(orchestrator, store)
    provider.outputs["hello"] = "hi"

    await orchestrator.run_cell("A1")
    await orchestrator.settle()
    assert provider.prompts == ["hello"]

    await orchestrator.run_cell("C1")
    await orchestrator.settle()
    assert provider.prompts == ["hello", "x", "hi and x"]


@pytest.mark.asyncio
async def test_prompt_only_dependency_does_not_need_a_run(orchestrator, store, provider):
    add_sheet(
        store,
        A1={"prompt": "hello"},
        B1={"prompt": "{{A1}} with {{prompt:C1}}", "auto_run": True},
        C1={"prompt": "extra"},
    )
    await open_sheet(orchestrator, store)
    provider.outputs["hello"] = "hi"

    await orchestrator.run_cell("A1")
    await orchestrator.settle()

    assert provider.prompts == ["hello", "hi with extra"]


@pytest.mark.asyncio
async def test_condition_operands_are_dependencies(orchestrator, store, provider):
    add_sheet(
        store,
        A1={"prompt": "hello"},
        B1={"prompt": "go", "condition": "A1 == hi", "auto_run": True},
        C1={"prompt": "stay", "condition": "A1 == bye", "auto_run": True},
    )
    await open_sheet(orchestrator, store)
    provider.outputs["hello"] = "hi"

    await orchestrator.run_cell("A1")
    await orchestrator.settle()

    assert provider.prompts == ["hello", "go"]
    assert orchestrator.cell("C1").status == CellStatus.IDLE


@pytest.mark.asyncio
async def test_failing_dependent_does_not_stop_the_queue(orchestrator, store, provider):
    add_sheet(
        store,
        A1={"prompt": "hello"},
        B1={"prompt": "{{A1}} b", "auto_run": True},
        C1={"prompt": "{{A1}} c", "auto_run": True},
    )
    await open_sheet(orchestrator, store)
    provider.outputs["hello"] = "hi"
    provider.outputs["hi b"] = FailedResult(error="boom")

    result = await orchestrator.run_cell("A1")
    await orchestrator.settle()

    assert result.outcome == RunOutcome.COMPLETED
    assert provider.prompts == ["hello", "hi b", "hi c"]
    assert orchestrator.cell("B1").output == "Error: boom"
    assert orchestrator.cell("C1").status == CellStatus.COMPLETED
    assert not orchestrator.cascade.draining


@pytest.mark.asyncio
async def test_cascade_follows_chains(orchestrator, store, provider):
    add_sheet(
        store,
        A1={"prompt": "hello"},
        B1={"prompt": "{{A1}} world", "auto_run": True},
        C1={"prompt": "{{B1}}!", "auto_run": True},
    )
    await open_sheet(orchestrator, store)
    provider.outputs["hello"] = "hi"

    await orchestrator.run_cell("A1")
    await orchestrator.settle()

    assert provider.prompts == ["hello", "hi world", "hi world!"]
    assert_serial(provider, "hello", "hi world", "hi world!")


@pytest.mark.asyncio
async def test_cells_on_a_cycle_are_not_auto_run(orchestrator, store, provider):
    add_sheet(
        store,
        A1={"prompt": "hello"},
        B1={"prompt": "{{A1}} {{prompt:C1}}", "auto_run": True},
        C1={"prompt": "{{prompt:B1}}", "auto_run": True},
    )
    await open_sheet(orchestrator, store)

    await orchestrator.run_cell("A1")
    await orchestrator.settle()

    assert provider.prompts == ["hello"]


@pytest.mark.asyncio
async def test_cascade_crosses_sheets(orchestrator, store, provider):
    add_sheet(store, A1={"prompt": "hello"})
    add_sheet(store, "s2", "Data", A1={"prompt": "{{output:Sheet1!A1}} data", "auto_run": True})
    orchestrator.discover_sheets()
    await orchestrator.open_sheet("s2")
    await orchestrator.open_sheet("s1")
    provider.outputs["hello"] = "hi"

    await orchestrator.run_cell("A1")
    await orchestrator.settle()

    assert provider.prompts == ["hello", "hi data"]
    assert orchestrator.cell("A1", "s2").output == "hi data"


@pytest.mark.asyncio
async def test_stopped_cell_is_dropped_from_the_queue(orchestrator, store, provider):
    add_sheet(
        store,
        A1={"prompt": "hello"},
        B1={"prompt": "{{A1}} b", "auto_run": True},
    )
    await open_sheet(orchestrator, store)
    key = orchestrator.key("B1")
    orchestrator.cascade._queue.append((key, frozenset()))

    await orchestrator.stop_cell("B1")

    assert not orchestrator.cascade.is_queued(key)


@pytest.mark.asyncio
async def test_job_done_on_first_check_still_cascades(orchestrator, store, provider):
    add_sheet(
        store,
        A1={"prompt": "film", "model": "sora-2"},
        B1={"prompt": "{{A1}} b", "auto_run": True},
    )
    await open_sheet(orchestrator, store)
    provider.outputs["film"] = DeferredResult(job_id="j1")
    provider.jobs["j1"] = [job_done("clip")]

    result = await orchestrator.run_cell("A1")
    await orchestrator.settle()

    assert result.outcome == RunOutcome.PENDING
    assert provider.job_checks == ["j1"]
    assert provider.prompts == ["film", "clip b"]
    assert orchestrator.cell("B1").status == CellStatus.COMPLETED


@pytest.mark.asyncio
async def test_close_discards_queued_dependents(orchestrator, store, provider):
    add_sheet(
        store,
        A1={"prompt": "film", "model": "sora-2"},
        B1={"prompt": "{{A1}} b", "auto_run": True},
        C1={"prompt": "{{A1}} c", "auto_run": True},
        D1={"prompt": "{{A1}} d", "auto_run": True},
    )
    await open_sheet(orchestrator, store)
    provider.delay = 0.05
    provider.outputs["film"] = DeferredResult(job_id="j1")
    provider.jobs["j1"] = [job_done("clip")]

    await orchestrator.run_cell("A1")
    for _ in range(100):
        if "clip b" in provider.prompts:
            break
        await asyncio.sleep(0.005)

    await orchestrator.close()
    await asyncio.sleep(0.15)

    assert provider.prompts == ["film", "clip b"]
    assert orchestrator.cascade.queued == []
    assert not orchestrator.cascade.draining


@pytest.mark.asyncio
async def test_idle_dependency_with_earlier_output_counts_as_complete(orchestrator, store, provider):
    add_sheet(
        store,
        A1={"prompt": "hello", "output": "hi"},
        B1={"prompt": "{{A1}} and {{C1}}", "auto_run": True},
        C1={"prompt": "x"},
    )
    await open_sheet(orchestrator, store)
    await orchestrator.stop_cell("A1")

    await orchestrator.run_cell("C1")
    await orchestrator.settle()

    assert orchestrator.cell("A1").status is None
    assert provider.prompts == ["x", "hi and x"]


@pytest.mark.asyncio
async def test_dependency_with_error_output_blocks_the_run(orchestrator, store, provider):
    add_sheet(
        store,
        A1={"prompt": "hello", "output": "Error: model overloaded", "status": "idle"},
        B1={"prompt": "{{A1}} and {{C1}}", "auto_run": True},
        C1={"prompt": "x"},
    )
    await open_sheet(orchestrator, store)

    await orchestrator.run_cell("C1")
    await orchestrator.settle()

    assert provider.prompts == ["x"]
