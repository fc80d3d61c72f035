"""Comparison helpers shared by DECISION and LOOP nodes."""

import logging
import math
from typing import Any

logger = logging.getLogger(__name__)

# Two-character operators first so "<=" is not read as "<"
LOOP_OPERATORS = ("==", "!=", "<=", ">=", "<", ">")

DECISION_NUMERIC_OPERATORS = ("GT", "LT", "GTE", "LTE", "EQ", "NEQ")
DECISION_STRING_OPERATORS = ("EQ", "NEQ", "CONTAINS")


def parse_number(text: str | None) -> float | None:
    """Parse a number, None when blank or not numeric."""
    if text is None or not str(text).strip():
        return None
    try:
        value = float(str(text).strip())
    except ValueError:
        return None
    return None if math.isnan(value) else value


def compare_decision(left: str | None, operator: str | None, right: str | None) -> bool:
    """
    Evaluate a DECISION comparison.

    Numeric when both sides parse (GT, LT, GTE, LTE, EQ, NEQ); otherwise a
    string comparison (EQ, NEQ, CONTAINS). Unknown operators are false.
    """
    op = (operator or "").strip().upper()
    lhs = parse_number(left)
    rhs = parse_number(right)
    if lhs is not None and rhs is not None:
        if op == "GT":
            return lhs > rhs
        if op == "LT":
            return lhs < rhs
        if op == "GTE":
            return lhs >= rhs
        if op == "LTE":
            return lhs <= rhs
        if op == "EQ":
            return lhs == rhs
        if op == "NEQ":
            return lhs != rhs
        return False

    left_text = left or ""
    right_text = right or ""
    if op == "EQ":
        return left_text == right_text
    if op == "NEQ":
        return left_text != right_text
    if op == "CONTAINS":
        return right_text in left_text
    return False


def split_loop_condition(condition: str) -> tuple[str, str, str] | None:
    """Split "left op right" on the first operator found, or None when there is none."""
    for op in LOOP_OPERATORS:
        idx = condition.find(op)
        if idx >= 0:
            return condition[:idx].strip(), op, condition[idx + len(op) :].strip()
    return None


def compare_loop_operands(left: str, op: str, right: str) -> bool:
    """Numeric first, then boolean (== and != only), then lexicographic."""
    lhs = parse_number(left)
    rhs = parse_number(right)
    if lhs is not None and rhs is not None:
        return _apply(op, lhs, rhs)

    if left.lower() in ("true", "false"):
        lbool = left.lower() == "true"
        rbool = right.lower() == "true"
        if op == "==":
            return lbool == rbool
        if op == "!=":
            return lbool != rbool
        return False

    return _apply(op, left, right)


def _apply(op: str, lhs: Any, rhs: Any) -> bool:
    if op == "==":
        return lhs == rhs
    if op == "!=":
        return lhs != rhs
    if op == "<":
        return lhs < rhs
    if op == ">":
        return lhs > rhs
    if op == "<=":
        return lhs <= rhs
    if op == ">=":
        return lhs >= rhs
    return False


def is_truthy(value: Any) -> bool:
    """
    Truthiness of a script result.

    None, blank strings and "false" are false; numbers are true when
    nonzero; every other value is true.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        text = value.strip()
        return bool(text) and text.lower() != "false"
    return True
