"""
Typed condition values and their comparison rules.

Condition operands are a closed set of variants instead of arbitrary
objects, so every comparison has one defined outcome:

* ``NumberValue`` - a decimal number.
* ``TextValue`` - a string. Text that parses as a finite number is
  treated as numeric whenever the other side is numeric too.
* ``CollectionValue`` - an unordered collection of strings, only valid
  as the right-hand side of ``in`` / ``not_in``.

Ordering operators need both sides numeric. Equality compares numerically
when both sides look numeric and falls back to exact text equality.
Anything else raises ``CoercionError``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum

from services.taxes.errors import CoercionError


class ConditionOperator(str, Enum):
    """Comparison operators available to tax conditions."""

    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    EQ = "="
    NE = "!="
    IN = "in"
    NOT_IN = "not_in"


@dataclass(frozen=True, slots=True)
class NumberValue:
    """Numeric operand."""

    value: Decimal

    def __str__(self) -> str:
        """Return the plain (non-scientific) decimal form."""
        return _plain(self.value)


@dataclass(frozen=True, slots=True)
class TextValue:
    """Text operand."""

    value: str

    def __str__(self) -> str:
        """Return the text."""
        return self.value


@dataclass(frozen=True, slots=True)
class CollectionValue:
    """Collection of text members."""

    values: tuple[str, ...]

    def __str__(self) -> str:
        """Return a bracketed member list."""
        return "[" + ", ".join(self.values) + "]"


type ConditionValue = NumberValue | TextValue | CollectionValue


def as_condition_value(raw: object) -> ConditionValue:
    """
    Lift a plain Python value into a condition value.

    Args:
        raw: A condition value, bool, int, float, Decimal, str, or an
            iterable (list/tuple/set/frozenset) of scalars.

    Returns:
        The corresponding condition value variant.

    Raises:
        TypeError: If the value has no condition value representation.
    """
    if isinstance(raw, NumberValue | TextValue | CollectionValue):
        return raw
    if isinstance(raw, bool):
        return TextValue("true" if raw else "false")
    if isinstance(raw, Decimal):
        return NumberValue(raw)
    if isinstance(raw, int):
        return NumberValue(Decimal(raw))
    if isinstance(raw, float):
        return NumberValue(Decimal(str(raw)))
    if isinstance(raw, str):
        return TextValue(raw)
    if isinstance(raw, list | tuple | set | frozenset):
        return CollectionValue(tuple(str(as_condition_value(member)) for member in raw))
    msg = f"unsupported condition value type: {type(raw).__name__}"
    raise TypeError(msg)


def to_decimal(value: ConditionValue) -> Decimal:
    """
    Convert a condition value to a finite Decimal.

    Args:
        value: Value to convert.

    Returns:
        The numeric value.

    Raises:
        CoercionError: If the value is a collection, or text that is not
            a finite number.
    """
    if isinstance(value, NumberValue):
        return value.value
    if isinstance(value, TextValue):
        try:
            number = Decimal(value.value.strip())
        except InvalidOperation:
            raise CoercionError(value.value, "number") from None
        if not number.is_finite():
            raise CoercionError(value.value, "number")
        return number
    raise CoercionError(value, "number")


def is_numeric(value: ConditionValue) -> bool:
    """Return True if the value converts to a number."""
    try:
        to_decimal(value)
    except CoercionError:
        return False
    return True


def compare_values(
    actual: ConditionValue,
    operator: ConditionOperator | str,
    expected: ConditionValue,
) -> bool:
    """
    Compare two condition values.

    Args:
        actual: Left-hand value, resolved from the calculation input.
        operator: Comparison operator.
        expected: Right-hand value, taken from the condition.

    Returns:
        Outcome of the comparison.

    Raises:
        CoercionError: If the operands cannot be compared with the operator.
        ValueError: If the operator is unknown.
    """
    op = ConditionOperator(operator)

    if op in (ConditionOperator.IN, ConditionOperator.NOT_IN):
        if not isinstance(expected, CollectionValue):
            raise CoercionError(expected, "collection")
        found = any(_equals(actual, TextValue(member)) for member in expected.values)
        return found if op is ConditionOperator.IN else not found

    if op is ConditionOperator.EQ:
        return _equals(actual, expected)
    if op is ConditionOperator.NE:
        return not _equals(actual, expected)

    left = to_decimal(actual)
    right = to_decimal(expected)
    if op is ConditionOperator.GT:
        return left > right
    if op is ConditionOperator.LT:
        return left < right
    if op is ConditionOperator.GTE:
        return left >= right
    return left <= right


def collection_of(members: Iterable[object]) -> CollectionValue:
    """Build a collection value from any iterable of scalars."""
    return CollectionValue(tuple(str(as_condition_value(m)) for m in members))


def _equals(left: ConditionValue, right: ConditionValue) -> bool:
    if isinstance(left, CollectionValue) or isinstance(right, CollectionValue):
        raise CoercionError(right if isinstance(right, CollectionValue) else left, "scalar")
    if is_numeric(left) and is_numeric(right):
        return to_decimal(left) == to_decimal(right)
    return str(left) == str(right)


def _plain(number: Decimal) -> str:
    if number == 0:
        return "0"
    return format(number.normalize(), "f")
