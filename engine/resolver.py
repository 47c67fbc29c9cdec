"""Template resolution: substitutes cell values into a prompt"""

import logging
import re
from typing import Optional

from config import settings
from core.enums import ReferenceField
from core.models import Cell, CellKey
from .conditions import evaluate_condition, parse_condition
from .references import (
    ConditionalBlock,
    Reference,
    Text,
    parse_prompt,
    strip_tokens,
)
from .state import CellStateStore

logger = logging.getLogger(__name__)

IMAGE_SRC_PATTERN = re.compile(r"""<img[^>]+src=["']([^"']+)["']""", re.IGNORECASE)


def output_value(output: str) -> str:
    """Value a cell output contributes; image tags contribute their URL"""
    if not output:
        return ""
    match = IMAGE_SRC_PATTERN.search(output)
    return match.group(1) if match else output


class TemplateResolver:
    """Resolves prompt templates against the session's cell state.

    Referenced outputs are inserted verbatim. A referenced prompt is itself
    resolved, up to `max_depth` levels and never re-entering a cell already
    on the resolution path; past either limit its tokens are dropped.
    """

    def __init__(
        self,
        state: CellStateStore,
        sheet_id: str,
        max_depth: int = None,
        separator: str = None,
    ):
        self.state = state
        self.sheet_id = sheet_id
        self.max_depth = settings.RESOLVE_MAX_DEPTH if max_depth is None else max_depth
        self.separator = settings.GENERATION_SEPARATOR if separator is None else separator

    async def resolve(self, prompt: str, origin: CellKey = None) -> str:
        trail = frozenset({origin}) if origin else frozenset()
        return await self._resolve_text(prompt, self.sheet_id, 0, trail)

    async def resolve_cell(self, key: CellKey) -> str:
        cell = self.state.require(key)
        return await self.resolve(cell.prompt, origin=key)

    async def value_of(self, reference: Reference, sheet_id: str = None) -> str:
        """Value of a single reference, as seen from `sheet_id`"""
        return await self._lookup(reference, sheet_id or self.sheet_id, 0, frozenset(), {})

    # ─────────────────────────────────────────────────────────────

    async def _resolve_text(self, text: str, sheet_id: str, depth: int, trail: frozenset) -> str:
        parsed = parse_prompt(text)
        cache: dict[str, str] = {}
        parts = []

        for segment in parsed.segments:
            if isinstance(segment, Text):
                parts.append(segment.content)
            elif isinstance(segment, Reference):
                parts.append(await self._lookup(segment, sheet_id, depth, trail, cache))
            elif isinstance(segment, ConditionalBlock):
                parts.append(await self._resolve_block(segment, sheet_id, depth, trail, cache))
            # Malformed tokens and execution directives resolve to ""

        return "".join(parts)

    async def _resolve_block(
        self,
        block: ConditionalBlock,
        sheet_id: str,
        depth: int,
        trail: frozenset,
        cache: dict,
    ) -> str:
        async def operand(reference: Reference) -> str:
            return await self._lookup(reference, sheet_id, depth, trail, cache)

        met = await evaluate_condition(parse_condition(block.condition), operand)
        branch = block.then_value if met else (block.else_value or "")
        if not branch:
            return ""
        return await self._resolve_text(branch, sheet_id, depth, trail)

    async def _lookup(
        self,
        reference: Reference,
        sheet_id: str,
        depth: int,
        trail: frozenset,
        cache: dict,
    ) -> str:
        cache_key = f"{reference.field.value}|{reference.raw}"
        if cache_key in cache:
            return cache[cache_key]

        key, cell = await self._find(reference, sheet_id)
        if cell is None:
            value = ""
        else:
            value, is_template = self._read(reference, cell)
            if is_template and value:
                if depth < self.max_depth and key not in trail:
                    value = await self._resolve_text(value, key.sheet_id, depth + 1, trail | {key})
                else:
                    logger.debug(f"Not expanding prompt of {key}: cycle or depth limit")
                    value = strip_tokens(value)

        cache[cache_key] = value
        return value

    async def _find(self, reference: Reference, sheet_id: str) -> tuple[Optional[CellKey], Optional[Cell]]:
        if reference.sheet is not None:
            sheet = await self.state.resolve_sheet(reference.sheet)
            if sheet is None:
                logger.debug(f"Sheet {reference.sheet!r} not found")
                return None, None
            sheet_id = sheet.id
        key = CellKey(sheet_id, reference.cell_id)
        return key, self.state.get(key)

    def _read(self, reference: Reference, cell: Cell) -> tuple[str, bool]:
        """Return (value, whether the value is a template needing expansion)"""
        if reference.reads_generations:
            outputs = [g.output for g in cell.generations]
            start = reference.generation
            end = reference.generation_end or start
            if end > len(outputs):
                return "", False
            selected = [output_value(o) for o in outputs[start - 1:end]]
            return self.separator.join(selected), False

        if reference.reads_prompt:
            return cell.prompt or "", True

        output = output_value(cell.output)
        if output:
            return output, False
        if reference.field == ReferenceField.DEFAULT:
            return cell.prompt or "", True
        return "", False
