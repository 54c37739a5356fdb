"""Evaluate condition-step branching rules against a run context."""

from __future__ import annotations

import logging
import operator
from typing import Any, Callable, Iterable, Optional

from .contracts import RunContext
from .registry.models import Condition

logger = logging.getLogger(__name__)

_MISSING = object()

_ORDERING: dict[str, Callable[[Any, Any], bool]] = {
    ">=": operator.ge,
    "<=": operator.le,
    ">": operator.gt,
    "<": operator.lt,
}


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _walk(root: Any, path: list[str]) -> Any:
    current = root
    for part in path:
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def resolve_field(field: str, context: RunContext) -> Any:
    """Look ``field`` up in the run context.

    Variables win over run input, which wins over top-level context
    attributes. A dotted name such as ``step-1.score`` walks into nested
    step outputs. Returns ``None`` when nothing matches.
    """
    if field in context.variables:
        return context.variables[field]
    if field in context.input:
        return context.input[field]
    if field in ("user_id", "start_time"):
        return getattr(context, field)
    if "." in field:
        parts = field.split(".")
        for root in (context.variables, context.input):
            value = _walk(root, parts)
            if value is not _MISSING:
                return value
    return None


def loose_equals(left: Any, right: Any) -> bool:
    """Equality that treats numeric strings as their numbers."""
    if left == right:
        return True
    if left is None or right is None:
        return False
    left_num, right_num = _to_number(left), _to_number(right)
    if left_num is not None and right_num is not None:
        return left_num == right_num
    return False


def compare(left: Any, op: str, right: Any) -> bool:
    """Apply ``op`` to ``left`` and ``right``; incomparable values give False."""
    if op == "==":
        return loose_equals(left, right)
    if op == "!=":
        return not loose_equals(left, right)
    func = _ORDERING.get(op)
    if func is None:
        logger.warning(f"Unknown condition operator {op!r}; treating as false")
        return False
    if left is None or right is None:
        return False
    left_num, right_num = _to_number(left), _to_number(right)
    if left_num is not None and right_num is not None:
        return func(left_num, right_num)
    if isinstance(left, str) and isinstance(right, str):
        return func(left, right)
    return False


def evaluate_condition(condition: Condition, context: RunContext) -> bool:
    value = resolve_field(condition.field, context)
    return compare(value, condition.operator, condition.value)


def select_branch(
    conditions: Iterable[Condition], context: RunContext
) -> Optional[Condition]:
    """Return the first condition that holds, or ``None``."""
    for condition in conditions:
        if evaluate_condition(condition, context):
            return condition
    return None
