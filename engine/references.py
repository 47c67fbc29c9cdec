"""Reference parser: turns a prompt template into typed segments.

Recognized tokens::

    {{A1}}                  output of A1 (falls back to its prompt)
    {{prompt:A1}}           prompt of A1
    {{output:A1}}           output of A1
    {{Sheet1!A1}}           prompt of A1 on Sheet1
    {{output:Sheet1!A1}}    output of A1 on Sheet1
    {{A1-2}} / {{A1:2}}     output of the 2nd generation of A1 (1 = oldest)
    {{A1:1-3}}              outputs of generations 1..3 of A1
    {{if:COND}}then:VALUE{{else:VALUE}}   conditional block, else optional
    {{if:COND}}run{{else:skip}}           execution directive

Parsing is total: anything that does not match a form above becomes a
`Malformed` segment, which resolves to an empty string.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Union

from core.enums import ReferenceField, ReferenceKind

CELL_ID_PATTERN = re.compile(r"^[A-Za-z]+[0-9]+$")
TOKEN_PATTERN = re.compile(r"\{\{[^{}]*\}\}")

_OPEN = "{{"
_CLOSE = "}}"
_IF = "{{if:"
_ELSE = "{{else:"
_THEN = "then:"
_SKIP = "{{else:skip}}"


@dataclass(frozen=True)
class Reference:
    """A single cell reference token"""
    raw: str
    kind: ReferenceKind
    cell_id: str
    field: ReferenceField = ReferenceField.DEFAULT
    sheet: Optional[str] = None
    generation: Optional[int] = None
    generation_end: Optional[int] = None

    @property
    def is_cross_sheet(self) -> bool:
        return self.sheet is not None

    @property
    def reads_generations(self) -> bool:
        return self.generation is not None

    @property
    def reads_prompt(self) -> bool:
        """True when only the referenced cell's prompt text is needed"""
        if self.reads_generations:
            return False
        if self.field == ReferenceField.PROMPT:
            return True
        return self.field == ReferenceField.DEFAULT and self.is_cross_sheet


@dataclass(frozen=True)
class Text:
    content: str


@dataclass(frozen=True)
class Malformed:
    raw: str


@dataclass(frozen=True)
class ConditionalBlock:
    condition: str
    then_value: str
    else_value: Optional[str]
    raw: str


@dataclass(frozen=True)
class ExecutionDirective:
    condition: str
    raw: str


Segment = Union[Text, Reference, Malformed, ConditionalBlock, ExecutionDirective]


@dataclass(frozen=True)
class ParsedPrompt:
    segments: tuple[Segment, ...]

    @property
    def references(self) -> list[Reference]:
        """Plain references outside conditional blocks"""
        return [s for s in self.segments if isinstance(s, Reference)]

    @property
    def blocks(self) -> list[ConditionalBlock]:
        return [s for s in self.segments if isinstance(s, ConditionalBlock)]

    @property
    def directive(self) -> Optional[ExecutionDirective]:
        for segment in self.segments:
            if isinstance(segment, ExecutionDirective):
                return segment
        return None


def is_cell_id(text: str) -> bool:
    return bool(text) and bool(CELL_ID_PATTERN.match(text))


def _parse_positive(text: str) -> Optional[int]:
    text = text.strip()
    if not text.isdigit():
        return None
    value = int(text)
    return value if value >= 1 else None


def parse_reference(body: str) -> Optional[Reference]:
    """Parse the inside of a {{...}} token; None when it is not a reference"""
    if not body or not isinstance(body, str):
        return None
    text = body.strip()
    if not text or text.startswith(("if:", "then:", "else:")):
        return None

    field = ReferenceField.DEFAULT
    if text.startswith("prompt:"):
        field = ReferenceField.PROMPT
        text = text[len("prompt:"):]
    elif text.startswith("output:"):
        field = ReferenceField.OUTPUT
        text = text[len("output:"):]

    # Sheet qualifier is split off before any generation qualifier so that
    # sheet names may contain ':' or '-'.
    sheet = None
    if "!" in text:
        sheet, _, text = text.partition("!")
        sheet = sheet.strip()
        if not sheet:
            return None

    generation = generation_end = None
    if ":" in text:
        cell_part, _, spec = text.partition(":")
        if "-" in spec:
            start, _, end = spec.partition("-")
            generation, generation_end = _parse_positive(start), _parse_positive(end)
            if generation is None or generation_end is None or generation > generation_end:
                return None
        else:
            generation = _parse_positive(spec)
            if generation is None:
                return None
    elif "-" in text:
        cell_part, _, spec = text.partition("-")
        generation = _parse_positive(spec)
        if generation is None:
            return None
    else:
        cell_part = text

    cell_id = cell_part.strip()
    if not is_cell_id(cell_id):
        return None

    if generation_end is not None:
        kind = ReferenceKind.GENERATION_RANGE
    elif generation is not None:
        kind = ReferenceKind.GENERATION
    elif sheet is not None:
        kind = ReferenceKind.CROSS_SHEET
    elif field == ReferenceField.PROMPT:
        kind = ReferenceKind.PROMPT
    elif field == ReferenceField.OUTPUT:
        kind = ReferenceKind.OUTPUT
    else:
        kind = ReferenceKind.PLAIN

    return Reference(
        raw=body,
        kind=kind,
        cell_id=cell_id.upper(),
        field=field,
        sheet=sheet,
        generation=generation,
        generation_end=generation_end,
    )


def _skip_token(text: str, index: int) -> int:
    """Index just past the {{...}} token starting at `index`"""
    close = text.find(_CLOSE, index + 2)
    return len(text) if close == -1 else close + 2


def _scan_then_value(text: str, start: int) -> int:
    """Then-values stop at {{else:, the next {{if:, a newline or the end"""
    j = start
    n = len(text)
    while j < n:
        if text.startswith(_ELSE, j) or text.startswith(_IF, j):
            break
        if text[j] == "\n":
            break
        if text.startswith(_OPEN, j):
            j = _skip_token(text, j)
            continue
        j += 1
    return j


def _scan_balanced(text: str, start: int) -> tuple[int, bool]:
    """Find the }} closing a token whose body starts at `start`"""
    depth = 1
    k = start
    n = len(text)
    while k < n:
        if text.startswith(_OPEN, k):
            depth += 1
            k += 2
        elif text.startswith(_CLOSE, k):
            depth -= 1
            if depth == 0:
                return k, True
            k += 2
        else:
            k += 1
    return n, False


def _scan_conditional(text: str, start: int) -> tuple[Optional[Segment], int]:
    cond_start = start + len(_IF)
    cond_end = text.find(_CLOSE, cond_start)
    if cond_end == -1:
        return None, start
    condition = text[cond_start:cond_end]
    if "{" in condition or not condition.strip():
        return None, start
    after = cond_end + 2

    if text.startswith(_THEN, after):
        value_start = after + len(_THEN)
        value_end = _scan_then_value(text, value_start)
        then_value = text[value_start:value_end]
        else_value = None
        end = value_end
        if text.startswith(_ELSE, value_end):
            body_start = value_end + len(_ELSE)
            close, balanced = _scan_balanced(text, body_start)
            else_value = text[body_start:close].strip()
            end = close + 2 if balanced else close
        block = ConditionalBlock(
            condition=condition.strip(),
            then_value=then_value.strip(),
            else_value=else_value,
            raw=text[start:end],
        )
        return block, end

    word = text[after:after + 3]
    follower = text[after + 3:after + 4]
    if word.lower() == "run" and not follower.isalnum():
        end = after + 3
        if text[end:end + len(_SKIP)].lower() == _SKIP:
            end += len(_SKIP)
        return ExecutionDirective(condition=condition.strip(), raw=text[start:end]), end

    return None, start


@lru_cache(maxsize=2048)
def parse_prompt(prompt: str) -> ParsedPrompt:
    """Split a prompt into text, reference and conditional segments"""
    if not prompt or not isinstance(prompt, str):
        return ParsedPrompt(segments=())

    segments: list[Segment] = []
    text_start = 0
    i = 0
    n = len(prompt)

    def flush(upto: int):
        if upto > text_start:
            segments.append(Text(prompt[text_start:upto]))

    while i < n:
        start = prompt.find(_OPEN, i)
        if start == -1:
            break

        if prompt.startswith(_IF, start):
            block, end = _scan_conditional(prompt, start)
            if block is not None:
                flush(start)
                segments.append(block)
                i = text_start = end
                continue

        close = prompt.find(_CLOSE, start + 2)
        if close == -1:
            break  # unbalanced, remainder stays text
        body = prompt[start + 2:close]
        if _OPEN in body:
            # "{{ ... {{A1}}": the outer braces are literal text
            i = start + 2 + body.rfind(_OPEN)
            continue

        flush(start)
        reference = parse_reference(body)
        segments.append(reference if reference is not None else Malformed(body))
        i = text_start = close + 2

    flush(n)
    return ParsedPrompt(segments=tuple(segments))


def strip_tokens(text: str) -> str:
    """Remove every {{...}} token without resolving it"""
    return TOKEN_PATTERN.sub("", text or "")
