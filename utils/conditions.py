"""
Condition evaluator for condition steps.

Compares one named binding against a literal. String operators coerce the
binding to text first; numeric operators coerce both sides to float, and
anything that does not parse as a number makes the comparison false.
"""
from __future__ import annotations

import math
import operator as op
from typing import Any, Callable, Mapping

from models.schemas import ConditionConfig


def to_text(value: Any) -> str:
    """String form of a binding value, shared with the interpolator."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(to_text(v) for v in value)
    return str(value)


def to_number(value: Any) -> float:
    """Numeric coercion. Returns NaN when the value is not a number."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if value is None:
        return math.nan
    text = str(value).strip()
    if not text:
        return math.nan
    try:
        return float(text)
    except ValueError:
        return math.nan


def _numeric(fn: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def compare(a: Any, b: Any) -> bool:
        left, right = to_number(a), to_number(b)
        if math.isnan(left) or math.isnan(right):
            return False
        return fn(left, right)
    return compare


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": lambda a, b: to_text(a) == to_text(b),
    "contains": lambda a, b: to_text(b) in to_text(a),
    "greater_than": _numeric(op.gt),
    "less_than": _numeric(op.lt),
}


def evaluate(operator: str, binding: Any, value: Any) -> bool:
    """Apply a named operator. Unknown operators evaluate to False."""
    fn = OPERATORS.get(operator)
    if fn is None:
        return False
    return fn(binding, value)


def evaluate_condition(condition: ConditionConfig, bindings: Mapping[str, Any]) -> bool:
    """Evaluate a condition step's config against the current bindings."""
    return evaluate(condition.operator, bindings.get(condition.variable), condition.value)
