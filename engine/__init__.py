"""Cell execution engine"""

from .references import (
    ConditionalBlock,
    ExecutionDirective,
    Malformed,
    ParsedPrompt,
    Reference,
    Text,
    parse_prompt,
    parse_reference,
)
from .conditions import Condition, evaluate_condition, parse_condition, should_execute
from .state import CellStateStore
from .resolver import TemplateResolver
from .graph import DependencyGraph, references_of
from .poller import JobPoller
from .scheduler import RunScheduler
from .cascade import CascadeController
from .intervals import IntervalTimerManager

__all__ = [
    "ConditionalBlock",
    "ExecutionDirective",
    "Malformed",
    "ParsedPrompt",
    "Reference",
    "Text",
    "parse_prompt",
    "parse_reference",
    "Condition",
    "evaluate_condition",
    "parse_condition",
    "should_execute",
    "CellStateStore",
    "TemplateResolver",
    "DependencyGraph",
    "references_of",
    "JobPoller",
    "RunScheduler",
    "CascadeController",
    "IntervalTimerManager",
]
