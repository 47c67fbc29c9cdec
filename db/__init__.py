"""Persistence layer"""

from .memory import InMemoryCellStore
from .json_store import JSONFileCellStore
from .supabase import SupabaseCellStore

__all__ = [
    "InMemoryCellStore",
    "JSONFileCellStore",
    "SupabaseCellStore",
]
