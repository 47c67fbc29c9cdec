"""Conditional expressions used by {{if:...}} blocks and cell execution gates"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional

from core.enums import ConditionOperator, ReferenceField
from core.models import Cell
from .references import Reference, parse_prompt, parse_reference

logger = logging.getLogger(__name__)

# Multi-character operators must be tried before their prefixes
OPERATOR_PRECEDENCE = (
    ConditionOperator.NOT_EQUALS,
    ConditionOperator.EQUALS,
    ConditionOperator.GREATER_EQUAL,
    ConditionOperator.LESS_EQUAL,
    ConditionOperator.GREATER,
    ConditionOperator.LESS,
    ConditionOperator.CONTAINS,
    ConditionOperator.STARTS_WITH,
    ConditionOperator.ENDS_WITH,
    ConditionOperator.ASSIGN_EQUALS,
)

FALSY_STRINGS = frozenset({"null", "undefined"})

OperandResolver = Callable[[Reference], Awaitable[str]]


@dataclass(frozen=True)
class Condition:
    left: str
    operator: ConditionOperator
    right: Optional[str] = None
    right_quoted: bool = False


def _unquote(text: str) -> tuple[str, bool]:
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1], True
    return text, False


def parse_condition(text: str) -> Optional[Condition]:
    """Split `left OP right`; a bare operand is a truthiness test"""
    text = (text or "").strip()
    if not text:
        return None

    for operator in OPERATOR_PRECEDENCE:
        index = text.find(operator.value)
        if index == -1:
            continue
        left = text[:index].strip()
        right, quoted = _unquote(text[index + len(operator.value):].strip())
        return Condition(left=left, operator=operator, right=right, right_quoted=quoted)

    return Condition(left=text, operator=ConditionOperator.TRUTHY)


def operand_reference(text: str) -> Optional[Reference]:
    """Cell reference named by a condition operand, reading its output by default"""
    reference = parse_reference((text or "").strip())
    if reference is None:
        return None
    if reference.field == ReferenceField.DEFAULT and not reference.reads_generations:
        reference = replace(reference, field=ReferenceField.OUTPUT)
    return reference


def condition_references(text: str) -> list[Reference]:
    """References appearing as operands of a condition"""
    condition = parse_condition(text)
    if condition is None:
        return []
    found = []
    left = operand_reference(condition.left)
    if left is not None:
        found.append(left)
    if condition.right is not None and not condition.right_quoted:
        right = operand_reference(condition.right)
        if right is not None:
            found.append(right)
    return found


async def _operand_value(text: str, quoted: bool, resolve: OperandResolver) -> str:
    if quoted:
        return text
    reference = operand_reference(text)
    if reference is None:
        return _unquote(text)[0]
    value = await resolve(reference)
    return "" if value is None else str(value)


def _to_number(value: str) -> float:
    text = value.strip()
    if text == "":
        return 0.0
    try:
        return float(text)
    except ValueError:
        return math.nan


def _is_number(value: str) -> bool:
    text = value.strip()
    if not text:
        return False
    try:
        float(text)
    except ValueError:
        return False
    return True


def _loose_equals(left: str, right: str) -> bool:
    if _is_number(left) and _is_number(right):
        return float(left) == float(right)
    return left.strip().casefold() == right.strip().casefold()


def is_truthy(value: str) -> bool:
    text = (value or "").strip()
    return bool(text) and text.lower() not in FALSY_STRINGS


def compare(left: str, operator: ConditionOperator, right: str) -> bool:
    if operator in (ConditionOperator.EQUALS, ConditionOperator.ASSIGN_EQUALS):
        return _loose_equals(left, right)
    if operator == ConditionOperator.NOT_EQUALS:
        return not _loose_equals(left, right)
    if operator == ConditionOperator.TRUTHY:
        return is_truthy(left)

    if operator in (
        ConditionOperator.GREATER,
        ConditionOperator.LESS,
        ConditionOperator.GREATER_EQUAL,
        ConditionOperator.LESS_EQUAL,
    ):
        a, b = _to_number(left), _to_number(right)
        if math.isnan(a) or math.isnan(b):
            return False
        if operator == ConditionOperator.GREATER:
            return a > b
        if operator == ConditionOperator.LESS:
            return a < b
        if operator == ConditionOperator.GREATER_EQUAL:
            return a >= b
        return a <= b

    a, b = left.lower(), right.lower()
    if operator == ConditionOperator.CONTAINS:
        return b in a
    if operator == ConditionOperator.STARTS_WITH:
        return a.startswith(b)
    if operator == ConditionOperator.ENDS_WITH:
        return a.endswith(b)
    return False


async def evaluate_condition(condition: Optional[Condition], resolve: OperandResolver) -> bool:
    """Evaluate a parsed condition; never raises, failures read as False"""
    if condition is None:
        return False
    try:
        left = await _operand_value(condition.left, False, resolve)
        if condition.operator == ConditionOperator.TRUTHY:
            return is_truthy(left)
        right = await _operand_value(condition.right or "", condition.right_quoted, resolve)
        return compare(left, condition.operator, right)
    except Exception as e:
        logger.debug(f"Condition {condition!r} evaluated false after error: {e}")
        return False


async def evaluate(text: str, resolve: OperandResolver) -> bool:
    return await evaluate_condition(parse_condition(text), resolve)


def execution_condition(cell: Cell) -> Optional[str]:
    """Condition gating a cell run: its condition field, else a run directive"""
    if cell.condition and cell.condition.strip():
        return cell.condition.strip()
    directive = parse_prompt(cell.prompt).directive
    return directive.condition if directive is not None else None


async def should_execute(cell: Cell, resolve: OperandResolver) -> bool:
    text = execution_condition(cell)
    if text is None:
        return True
    return await evaluate(text, resolve)
