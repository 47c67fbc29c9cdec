"""Progress tracking"""

from abc import ABC, abstractmethod
from typing import Optional

from core.models import CellKey


class ProgressTracker(ABC):
    """Abstract progress tracker, notified as cells run"""

    @abstractmethod
    def cell_started(self, key: CellKey, model: str):
        """Cell execution started"""
        pass

    @abstractmethod
    def cell_polling(self, key: CellKey, job_id: str):
        """Cell handed off to an async job"""
        pass

    @abstractmethod
    def cell_completed(self, key: CellKey, output: str):
        """Cell produced an output"""
        pass

    @abstractmethod
    def cell_failed(self, key: CellKey, message: str):
        """Cell execution failed"""
        pass

    @abstractmethod
    def cell_skipped(self, key: CellKey):
        """Cell condition evaluated false"""
        pass


async def notify(progress: Optional[ProgressTracker], event: str, *args):
    """Call a tracker hook; trackers may be sync or async"""
    if progress is None:
        return
    result = getattr(progress, event)(*args)
    if hasattr(result, '__await__'):
        await result


class ConsoleProgress(ProgressTracker):
    """Console-based progress tracker"""

    def __init__(self, preview: int = 80):
        self.preview = preview
        self.completed = set()
        self.failed = set()

    def _short(self, text: str) -> str:
        text = (text or "").replace("\n", " ")
        return text if len(text) <= self.preview else text[:self.preview - 3] + "..."

    def cell_started(self, key: CellKey, model: str):
        print(f"[◉] {key} running on {model}...")

    def cell_polling(self, key: CellKey, job_id: str):
        print(f"[…] {key} waiting on job {job_id}")

    def cell_completed(self, key: CellKey, output: str):
        self.completed.add(key)
        print(f"[✓] {key}: {self._short(output)}")

    def cell_failed(self, key: CellKey, message: str):
        self.failed.add(key)
        print(f"[✗] {key} failed - {message}")

    def cell_skipped(self, key: CellKey):
        print(f"[-] {key} skipped, condition not met")
