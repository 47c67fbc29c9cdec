"""Core enumerations for the cell engine"""

from enum import Enum


class CellStatus(str, Enum):
    """Lifecycle status of a cell"""
    IDLE = "idle"
    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    PROCESSING = "processing"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_active(self) -> bool:
        """Statuses reported while a provider job is still in flight"""
        return self in ACTIVE_STATUSES


ACTIVE_STATUSES = frozenset({
    CellStatus.PENDING,
    CellStatus.QUEUED,
    CellStatus.RUNNING,
    CellStatus.PROCESSING,
    CellStatus.IN_PROGRESS,
})


class JobStatus(str, Enum):
    """Status reported by a provider's job status endpoint"""
    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    PROCESSING = "processing"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    ERROR = "error"

    @classmethod
    def from_provider(cls, value: str) -> "JobStatus":
        """Normalize provider-specific spellings"""
        raw = (value or "").strip().lower()
        aliases = {
            "completed": cls.COMPLETE,
            "succeeded": cls.COMPLETE,
            "success": cls.COMPLETE,
            "failed": cls.ERROR,
            "failure": cls.ERROR,
            "cancelled": cls.ERROR,
        }
        if raw in aliases:
            return aliases[raw]
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.ERROR)


class GenerationStatus(str, Enum):
    """Status of a single generation record"""
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"


class ModelType(str, Enum):
    """Kind of output a model produces"""
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class ReferenceKind(str, Enum):
    """Kinds of {{...}} tokens found in prompts"""
    PLAIN = "plain"              # {{A1}}
    PROMPT = "prompt"            # {{prompt:A1}}
    OUTPUT = "output"            # {{output:A1}}
    CROSS_SHEET = "cross_sheet"  # {{Sheet1!A1}}, {{output:Sheet1!A1}}
    GENERATION = "generation"    # {{A1-2}}, {{A1:2}}
    GENERATION_RANGE = "generation_range"  # {{A1:1-3}}


class ReferenceField(str, Enum):
    """Which part of the referenced cell a token reads"""
    DEFAULT = "default"
    PROMPT = "prompt"
    OUTPUT = "output"


class ConditionOperator(str, Enum):
    """Operators understood by the conditional evaluator"""
    NOT_EQUALS = "!="
    EQUALS = "=="
    GREATER_EQUAL = ">="
    LESS_EQUAL = "<="
    GREATER = ">"
    LESS = "<"
    CONTAINS = " contains "
    STARTS_WITH = " startsWith "
    ENDS_WITH = " endsWith "
    ASSIGN_EQUALS = "="  # fallback spelling of equality
    TRUTHY = "truthy"


class RunOutcome(str, Enum):
    """Result of a run request"""
    COMPLETED = "completed"
    PENDING = "pending"    # handed off to the job poller
    SKIPPED = "skipped"    # execution condition evaluated false
    IGNORED = "ignored"    # duplicate run or empty prompt
    STOPPED = "stopped"    # cancelled by stop_cell
    FAILED = "failed"      # batch runs only, error kept on the result


class LLMProvider(str, Enum):
    """Supported SDK providers"""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GEMINI = "gemini"
