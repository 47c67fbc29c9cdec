"""Core abstractions for the cell engine"""

from .models import *
from .enums import *
from .exceptions import *
from .interfaces import *

__all__ = [
    # Models
    "CellKey",
    "Generation",
    "Cell",
    "Connection",
    "Sheet",
    "FormatOptions",
    "ProviderRequest",
    "ImmediateResult",
    "DeferredResult",
    "FailedResult",
    "ProviderResult",
    "JobStatusResult",
    "CreditCheck",
    "RunResult",
    # Enums
    "CellStatus",
    "ACTIVE_STATUSES",
    "JobStatus",
    "GenerationStatus",
    "ModelType",
    "ReferenceKind",
    "ReferenceField",
    "ConditionOperator",
    "RunOutcome",
    "LLMProvider",
    # Exceptions
    "CellGridError",
    "ProviderError",
    "PollingError",
    "InsufficientCreditsError",
    "CellNotFoundError",
    "SheetNotFoundError",
    "PersistenceError",
    # Interfaces
    "ModelProvider",
    "CellStore",
    "BillingService",
]
