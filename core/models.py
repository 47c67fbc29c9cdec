"""Core data models for the cell engine"""

from datetime import datetime, timezone
from typing import NamedTuple, Optional, Union

from pydantic import BaseModel, Field

from .enums import CellStatus, GenerationStatus, JobStatus, ModelType, RunOutcome


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CellKey(NamedTuple):
    """Address of a cell across sheets"""
    sheet_id: str
    cell_id: str

    def __str__(self) -> str:
        return f"{self.sheet_id}!{self.cell_id}"


# ─────────────────────────────────────────────────────────────
# Cells and sheets
# ─────────────────────────────────────────────────────────────

class Generation(BaseModel):
    """One historical execution of a cell"""
    prompt: str = ""
    resolved_prompt: str = ""
    output: str = ""
    model: str
    temperature: float
    type: ModelType = ModelType.TEXT
    status: GenerationStatus = GenerationStatus.COMPLETED
    job_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)


class Cell(BaseModel):
    """A prompt/output unit addressed by a spreadsheet-style reference"""
    cell_id: str
    prompt: str = ""
    output: str = ""
    status: Optional[CellStatus] = CellStatus.IDLE
    job_id: Optional[str] = None
    model: str = "gpt-3.5-turbo"
    temperature: float = 0.7
    output_format: str = ""
    character_limit: int = 0
    condition: str = ""
    auto_run: bool = False
    interval: float = 0  # seconds, 0 disables
    generations: list[Generation] = []

    # Media parameters, read only when the model type matches
    video_seconds: str = "8"
    video_resolution: str = "720p"
    video_aspect_ratio: str = "9:16"
    audio_voice: str = "alloy"
    audio_speed: float = 1.0
    audio_format: str = "mp3"

    updated_at: Optional[datetime] = None

    @property
    def has_prompt(self) -> bool:
        return bool(self.prompt and self.prompt.strip())

    @property
    def wants_interval(self) -> bool:
        return self.auto_run and self.interval > 0 and self.has_prompt


class Connection(BaseModel):
    """Manual link drawn between two cells, informational only"""
    source_cell_id: str
    target_cell_id: str


class Sheet(BaseModel):
    """Ordered mapping of reference -> cell"""
    id: str
    name: str
    cells: dict[str, Cell] = {}
    connections: list[Connection] = []
    loaded: bool = False


# ─────────────────────────────────────────────────────────────
# Provider contract
# ─────────────────────────────────────────────────────────────

class FormatOptions(BaseModel):
    """Output shaping sent alongside the prompt"""
    character_limit: int = 0
    output_format: str = ""
    max_tokens: Optional[int] = None
    video_seconds: Optional[str] = None
    video_resolution: Optional[str] = None
    video_aspect_ratio: Optional[str] = None
    audio_voice: Optional[str] = None
    audio_speed: Optional[float] = None
    audio_format: Optional[str] = None


class ProviderRequest(BaseModel):
    """Generation request handed to a model provider"""
    resolved_prompt: str
    model: str
    temperature: float
    format_options: FormatOptions = Field(default_factory=FormatOptions)
    user_id: Optional[str] = None


class ImmediateResult(BaseModel):
    """Provider answered synchronously"""
    output: str


class DeferredResult(BaseModel):
    """Provider accepted an async job that must be polled"""
    job_id: str
    status: JobStatus = JobStatus.PENDING


class FailedResult(BaseModel):
    """Provider rejected the request"""
    error: str


ProviderResult = Union[ImmediateResult, DeferredResult, FailedResult]


class JobStatusResult(BaseModel):
    """Answer of the job status endpoint"""
    status: JobStatus
    output: Optional[str] = None
    error: Optional[str] = None


# ─────────────────────────────────────────────────────────────
# Billing and run results
# ─────────────────────────────────────────────────────────────

class CreditCheck(BaseModel):
    """Outcome of a credit check-and-deduct"""
    success: bool
    remaining: Optional[int] = None
    error: Optional[str] = None


class RunResult(BaseModel):
    """What a run request did"""
    sheet_id: str
    cell_id: str
    outcome: RunOutcome
    output: Optional[str] = None
    job_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def key(self) -> CellKey:
        return CellKey(self.sheet_id, self.cell_id)
