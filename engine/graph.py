"""Dependency graph derived from cell prompts.

Nothing is cached beyond parsed prompts: dependencies and dependents are
computed from the current state each time they are asked for, so edits
are always reflected.
"""

import logging
from collections import deque
from typing import Optional

from core.models import Cell, CellKey
from .conditions import condition_references
from .references import ConditionalBlock, ExecutionDirective, Reference, parse_prompt
from .state import CellStateStore

logger = logging.getLogger(__name__)


def _collect(text: str, found: list[Reference]):
    for segment in parse_prompt(text).segments:
        if isinstance(segment, Reference):
            found.append(segment)
        elif isinstance(segment, ConditionalBlock):
            found.extend(condition_references(segment.condition))
            _collect(segment.then_value, found)
            if segment.else_value:
                _collect(segment.else_value, found)
        elif isinstance(segment, ExecutionDirective):
            found.extend(condition_references(segment.condition))


def references_of(cell: Cell) -> list[Reference]:
    """Every reference a cell reads: prompt tokens and condition operands"""
    found: list[Reference] = []
    _collect(cell.prompt, found)
    if cell.condition:
        found.extend(condition_references(cell.condition))
    return found


class DependencyGraph:
    """Live view of which cells read which"""

    def __init__(self, state: CellStateStore):
        self.state = state

    def target_of(self, reference: Reference, sheet_id: str) -> Optional[CellKey]:
        """Key a reference points at; None when its sheet is unknown"""
        if reference.sheet is None:
            return CellKey(sheet_id, reference.cell_id)
        sheet = self.state.find_sheet(reference.sheet)
        return CellKey(sheet.id, reference.cell_id) if sheet else None

    def dependencies(self, key: CellKey) -> list[tuple[Optional[CellKey], Reference]]:
        cell = self.state.get(key)
        if cell is None:
            return []
        return [(self.target_of(ref, key.sheet_id), ref) for ref in references_of(cell)]

    def dependency_keys(self, key: CellKey) -> list[CellKey]:
        keys = []
        for target, _ in self.dependencies(key):
            if target is not None and target != key and target not in keys:
                keys.append(target)
        return keys

    def dependents(self, key: CellKey) -> list[CellKey]:
        """Cells whose prompt or condition references `key`, in sheet order"""
        found = []
        for other, _ in self.state.cells():
            if other != key and key in self.dependency_keys(other):
                found.append(other)
        return found

    def find_cycle(self, start: CellKey) -> Optional[list[CellKey]]:
        """A dependency path from `start` back to itself, if any"""
        stack = [(start, [start])]
        seen = set()
        while stack:
            key, path = stack.pop()
            for dep in self.dependency_keys(key):
                if dep == start:
                    return path + [start]
                if dep not in seen:
                    seen.add(dep)
                    stack.append((dep, path + [dep]))
        return None

    def on_cycle(self, key: CellKey) -> bool:
        return self.find_cycle(key) is not None

    def topological_order(self, keys: list[CellKey]) -> list[CellKey]:
        """Order `keys` so dependencies come first; cycle members keep input order"""
        wanted = list(dict.fromkeys(keys))
        members = set(wanted)
        in_degree = {key: 0 for key in wanted}
        edges: dict[CellKey, list[CellKey]] = {key: [] for key in wanted}

        for key in wanted:
            for dep in self.dependency_keys(key):
                if dep in members:
                    edges[dep].append(key)
                    in_degree[key] += 1

        queue = deque(key for key in wanted if in_degree[key] == 0)
        ordered = []
        while queue:
            key = queue.popleft()
            ordered.append(key)
            for follower in edges[key]:
                in_degree[follower] -= 1
                if in_degree[follower] == 0:
                    queue.append(follower)

        if len(ordered) < len(wanted):
            leftover = [key for key in wanted if key not in ordered]
            logger.warning(f"Circular dependency among {', '.join(map(str, leftover))}")
            ordered.extend(leftover)
        return ordered
