"""
Condition expressions for skip logic and transition triggers.

Conditions are stored as JSON and parsed into a small tagged AST that is
interpreted directly. Nothing is ever passed to ``eval``.

Accepted stored forms:
    ">=90"                                    shorthand numeric comparison
    "Yes"                                     plain string → Equals
    {"type": "eq", "value": "Yes"}            Equals
    {"type": "in", "values": ["A", "B"]}      OneOf
    {"type": "compare", "op": ">=", "value": 90}
    {"condition": ">=90", ...}                legacy wrapper around shorthand

Usage:
    from jobflow.services.conditions import parse_condition

    cond = parse_condition({"type": "compare", "op": ">=", "value": 90})
    cond.matches("95")   # True
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from jobflow.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_SHORTHAND_RE = re.compile(r"^\s*(>=|<=|==|!=|>|<|=)\s*(-?\d+(?:\.\d+)?)\s*$")

_OPERATORS = {
    ">=": lambda a, b: a >= b,
    ">": lambda a, b: a > b,
    "<=": lambda a, b: a <= b,
    "<": lambda a, b: a < b,
    "=": lambda a, b: a == b,
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
}


def normalize(value) -> str:
    """Trimmed, case-folded text used for every string comparison."""
    if value is None:
        return ""
    return str(value).strip().upper()


def to_decimal(value) -> Decimal | None:
    """Parse a numeric answer; None when the value is not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


# ═════════════════════════════════════════════════════════════════════════════
# AST nodes
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Equals:
    """Trimmed, case-insensitive string equality."""
    value: str

    def matches(self, response_value) -> bool:
        return normalize(response_value) == normalize(self.value)

    def to_dict(self) -> dict:
        return {"type": "eq", "value": self.value}


@dataclass(frozen=True)
class OneOf:
    """Matches when the answer equals any of the listed values."""
    values: tuple = field(default_factory=tuple)

    def matches(self, response_value) -> bool:
        answer = normalize(response_value)
        return any(answer == normalize(v) for v in self.values)

    def to_dict(self) -> dict:
        return {"type": "in", "values": list(self.values)}


@dataclass(frozen=True)
class Compare:
    """Numeric comparison. A non-numeric answer never matches."""
    op: str
    value: Decimal

    def matches(self, response_value) -> bool:
        answer = to_decimal(response_value)
        if answer is None:
            return False
        return _OPERATORS[self.op](answer, self.value)

    def to_dict(self) -> dict:
        return {"type": "compare", "op": self.op, "value": float(self.value)}


Condition = Equals | OneOf | Compare


# ═════════════════════════════════════════════════════════════════════════════
# Parsing
# ═════════════════════════════════════════════════════════════════════════════

def _parse_shorthand(text: str) -> Condition:
    match = _SHORTHAND_RE.match(text)
    if match:
        return Compare(op=match.group(1), value=Decimal(match.group(2)))
    return Equals(text)


def parse_condition(raw) -> Condition | None:
    """
    Build a condition from its stored JSON form.

    Returns None for empty input (no condition configured).

    Raises:
        ValidationError: unknown tag, unknown operator or missing operand.
    """
    if raw is None or raw == "" or raw == {}:
        return None

    if isinstance(raw, str):
        return _parse_shorthand(raw)

    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return Equals(str(raw))

    if not isinstance(raw, dict):
        raise ValidationError(
            "Condition must be a string or an object",
            details={"condition": repr(raw)},
        )

    kind = raw.get("type")
    if kind is None:
        legacy = raw.get("condition")
        if isinstance(legacy, str) and legacy.strip():
            return _parse_shorthand(legacy)
        return None

    if kind == "eq":
        if "value" not in raw:
            raise ValidationError("eq condition needs a value", details={"condition": raw})
        return Equals(str(raw["value"]))

    if kind == "in":
        values = raw.get("values")
        if not isinstance(values, list) or not values:
            raise ValidationError("in condition needs a non-empty values list", details={"condition": raw})
        return OneOf(tuple(str(v) for v in values))

    if kind == "compare":
        op = raw.get("op")
        if op not in _OPERATORS:
            raise ValidationError(f"Unknown comparison operator: {op!r}", details={"condition": raw})
        threshold = to_decimal(raw.get("value"))
        if threshold is None:
            raise ValidationError("compare condition needs a numeric value", details={"condition": raw})
        return Compare(op=op, value=threshold)

    raise ValidationError(f"Unknown condition type: {kind!r}", details={"condition": raw})


def condition_matches(raw, response_value) -> bool:
    """Parse-and-evaluate. An absent condition never matches."""
    cond = parse_condition(raw)
    if cond is None:
        return False
    return cond.matches(response_value)
