"""User interface components"""

from .progress import ProgressTracker, ConsoleProgress, notify

__all__ = [
    "ProgressTracker",
    "ConsoleProgress",
    "notify",
]
