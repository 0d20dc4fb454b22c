"""Comparison operators for IF/ELSE nodes.

Operands arrive as rendered strings. Equality and substring checks are
string comparisons; ordering operators compare numerically and are false
when either side is not a number.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from enum import StrEnum


class Operator(StrEnum):
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    IS_EMPTY = "isEmpty"
    IS_NOT_EMPTY = "isNotEmpty"


UNARY_OPERATORS: frozenset[Operator] = frozenset({Operator.IS_EMPTY, Operator.IS_NOT_EMPTY})


def to_number(text: str) -> float:
    """Parse *text* as a number; NaN when it is not one (empty counts as 0)."""
    stripped = text.strip()
    if not stripped:
        return 0.0
    try:
        return float(stripped)
    except ValueError:
        return math.nan


def _numeric(op: Callable[[float, float], bool]) -> Callable[[str, str], bool]:
    def compare(left: str, right: str) -> bool:
        a, b = to_number(left), to_number(right)
        if math.isnan(a) or math.isnan(b):
            return False
        return op(a, b)

    return compare


_COMPARATORS: dict[Operator, Callable[[str, str], bool]] = {
    Operator.EQUALS: lambda a, b: a == b,
    Operator.NOT_EQUALS: lambda a, b: a != b,
    Operator.GREATER_THAN: _numeric(lambda a, b: a > b),
    Operator.LESS_THAN: _numeric(lambda a, b: a < b),
    Operator.GREATER_THAN_OR_EQUAL: _numeric(lambda a, b: a >= b),
    Operator.LESS_THAN_OR_EQUAL: _numeric(lambda a, b: a <= b),
    Operator.CONTAINS: lambda a, b: b in a,
    Operator.NOT_CONTAINS: lambda a, b: b not in a,
    Operator.STARTS_WITH: lambda a, b: a.startswith(b),
    Operator.ENDS_WITH: lambda a, b: a.endswith(b),
    Operator.IS_EMPTY: lambda a, _b: a.strip() == "",
    Operator.IS_NOT_EMPTY: lambda a, _b: a.strip() != "",
}


def evaluate(left: str, operator: Operator | str, right: str = "") -> bool:
    """Apply *operator* to the rendered operands.

    Raises:
        ValueError: If *operator* is not a known operator name.
    """
    return _COMPARATORS[Operator(operator)](left, right)
