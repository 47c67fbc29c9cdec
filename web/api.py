"""FastAPI application exposing the cell engine"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from billing.credits import CreditLedger
from config import settings
from core.exceptions import (
    CellGridError,
    CellNotFoundError,
    InsufficientCreditsError,
    ProviderError,
    SheetNotFoundError,
)
from core.models import Cell, RunResult
from orchestrator import Orchestrator

logger = logging.getLogger(__name__)


class CellPayload(BaseModel):
    """Editable cell fields; omitted fields are left unchanged"""
    prompt: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    output_format: Optional[str] = None
    character_limit: Optional[int] = None
    condition: Optional[str] = None
    auto_run: Optional[bool] = None
    interval: Optional[float] = None
    video_seconds: Optional[str] = None
    video_resolution: Optional[str] = None
    video_aspect_ratio: Optional[str] = None
    audio_voice: Optional[str] = None
    audio_speed: Optional[float] = None
    audio_format: Optional[str] = None


def build_default_orchestrator() -> Orchestrator:
    """Wire collaborators from settings"""
    from db import InMemoryCellStore, SupabaseCellStore
    from llm import HTTPProvider, LLMClient

    store = SupabaseCellStore() if settings.supabase_enabled() else InMemoryCellStore()
    provider = HTTPProvider() if settings.PROVIDER_BACKEND_URL else LLMClient()
    return Orchestrator(store, provider, CreditLedger())


def create_app(orchestrator: Orchestrator = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.orchestrator = orchestrator or build_default_orchestrator()
        app.state.orchestrator.discover_sheets()
        logger.info("Cell engine ready")
        try:
            yield
        finally:
            await app.state.orchestrator.close()
            logger.info("Cell engine stopped")

    app = FastAPI(
        title="Cellgrid API",
        description="Dependency-aware prompt cell engine",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_orchestrator(request: Request) -> Orchestrator:
        return request.app.state.orchestrator

    async def open_sheet(orch: Orchestrator, sheet_id: str):
        try:
            loaded = orch.state.get_sheet(sheet_id).loaded
        except SheetNotFoundError:
            loaded = False
        if not loaded:
            await orch.open_sheet(sheet_id)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/api/sheets/{sheet_id}/cells")
    async def list_cells(sheet_id: str, orch: Orchestrator = Depends(get_orchestrator)):
        await open_sheet(orch, sheet_id)
        return [cell.model_dump(mode="json") for cell in orch.sheet(sheet_id).cells.values()]

    @app.get("/api/sheets/{sheet_id}/cells/{ref}")
    async def get_cell(sheet_id: str, ref: str, orch: Orchestrator = Depends(get_orchestrator)):
        await open_sheet(orch, sheet_id)
        try:
            return orch.cell(ref, sheet_id).model_dump(mode="json")
        except CellNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.put("/api/sheets/{sheet_id}/cells/{ref}")
    async def save_cell(
        sheet_id: str,
        ref: str,
        payload: CellPayload,
        orch: Orchestrator = Depends(get_orchestrator),
    ):
        await open_sheet(orch, sheet_id)
        fields = payload.model_dump(exclude_none=True)
        try:
            cell: Cell = await orch.save_cell(ref, sheet_id, **fields)
        except CellGridError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return cell.model_dump(mode="json")

    @app.delete("/api/sheets/{sheet_id}/cells/{ref}")
    async def delete_cell(sheet_id: str, ref: str, orch: Orchestrator = Depends(get_orchestrator)):
        await open_sheet(orch, sheet_id)
        try:
            await orch.delete_cell(ref, sheet_id)
        except CellNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"deleted": ref.upper()}

    @app.post("/api/sheets/{sheet_id}/cells/{ref}/run", status_code=202)
    async def run_cell(
        sheet_id: str,
        ref: str,
        background_tasks: BackgroundTasks,
        response: Response,
        wait: bool = False,
        orch: Orchestrator = Depends(get_orchestrator),
    ):
        """Run a cell; with ``wait=true`` the response carries the run result"""
        await open_sheet(orch, sheet_id)
        try:
            orch.cell(ref, sheet_id)
        except CellNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

        if not wait:
            background_tasks.add_task(_run_in_background, orch, ref, sheet_id)
            return {"status": "accepted", "cell_id": ref.upper()}

        try:
            result: RunResult = await orch.run_cell(ref, sheet_id)
        except InsufficientCreditsError as e:
            raise HTTPException(
                status_code=402,
                detail={"message": str(e), "needed": e.needed, "available": e.available},
            )
        except ProviderError as e:
            raise HTTPException(status_code=502, detail=e.message)
        response.status_code = 200
        return result.model_dump(mode="json")

    @app.post("/api/sheets/{sheet_id}/cells/{ref}/stop")
    async def stop_cell(sheet_id: str, ref: str, orch: Orchestrator = Depends(get_orchestrator)):
        await open_sheet(orch, sheet_id)
        try:
            stopped = await orch.stop_cell(ref, sheet_id)
        except CellNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"stopped": [str(key) for key in stopped]}

    @app.get("/api/sheets/{sheet_id}/cells/{ref}/dependencies")
    async def dependencies(sheet_id: str, ref: str, orch: Orchestrator = Depends(get_orchestrator)):
        await open_sheet(orch, sheet_id)
        try:
            orch.cell(ref, sheet_id)
        except CellNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {
            "dependencies": [str(key) for key in orch.dependencies(ref, sheet_id)],
            "dependents": [str(key) for key in orch.dependents(ref, sheet_id)],
        }

    @app.exception_handler(SheetNotFoundError)
    async def sheet_not_found(request: Request, exc: SheetNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    return app


async def _run_in_background(orch: Orchestrator, ref: str, sheet_id: str):
    try:
        await orch.run_cell(ref, sheet_id)
    except CellGridError as e:
        logger.warning(f"Background run of {sheet_id}!{ref} failed: {e}")


logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
)

app = create_app()
