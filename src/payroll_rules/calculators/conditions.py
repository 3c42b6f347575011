"""Applicability conditions attached to calculation rules."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from itertools import groupby
from typing import Any

from payroll_rules.calculators.errors import RuleValidationError, TypeMismatchError
from payroll_rules.calculators.expression import to_decimal
from payroll_rules.calculators.types import FactContext


class ConditionOperator(str, Enum):
    """Comparison operators available to rule conditions."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUALS = "greater_than_or_equals"
    LESS_THAN_OR_EQUALS = "less_than_or_equals"
    BETWEEN = "between"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"


_ORDERING = {
    ConditionOperator.GREATER_THAN,
    ConditionOperator.LESS_THAN,
    ConditionOperator.GREATER_THAN_OR_EQUALS,
    ConditionOperator.LESS_THAN_OR_EQUALS,
}


@dataclass(frozen=True)
class RuleCondition:
    """A single condition: `field operator value`.

    Conditions sharing a `group` are AND-ed; groups are OR-ed.
    Value shapes:
        between      -> (min, max), inclusive
        in / not_in  -> sequence of scalars
        otherwise    -> scalar
    """

    field: str
    operator: ConditionOperator
    value: Any
    group: int = 1

    def __post_init__(self) -> None:
        if not self.field:
            raise RuleValidationError("Condition field is required", field="field")
        try:
            operator = ConditionOperator(self.operator)
        except ValueError:
            raise RuleValidationError(
                f"Unknown condition operator '{self.operator}'", field="operator"
            ) from None
        object.__setattr__(self, "operator", operator)
        object.__setattr__(self, "field", self.field.lower())
        object.__setattr__(self, "value", _normalize_value(operator, self.value))

    def matches(self, context: FactContext) -> bool:
        """Check the condition against a context. Missing fields never match."""
        actual = context.get_field(self.field)
        if actual is None:
            return False

        op = self.operator
        if op == ConditionOperator.EQUALS:
            return _equals(actual, self.value)
        if op == ConditionOperator.NOT_EQUALS:
            return not _equals(actual, self.value)
        if op == ConditionOperator.IN:
            return any(_equals(actual, v) for v in self.value)
        if op == ConditionOperator.NOT_IN:
            return not any(_equals(actual, v) for v in self.value)
        if op == ConditionOperator.CONTAINS:
            return isinstance(actual, str) and str(self.value).lower() in actual.lower()

        number = _as_number(actual)
        if number is None:
            return False
        if op == ConditionOperator.BETWEEN:
            low, high = self.value
            return low <= number <= high
        if op == ConditionOperator.GREATER_THAN:
            return number > self.value
        if op == ConditionOperator.LESS_THAN:
            return number < self.value
        if op == ConditionOperator.GREATER_THAN_OR_EQUALS:
            return number >= self.value
        return number <= self.value


def conditions_match(conditions: Sequence[RuleCondition], context: FactContext) -> bool:
    """True if there are no conditions or any condition group fully matches."""
    if not conditions:
        return True
    ordered = sorted(conditions, key=lambda c: c.group)
    for _, group in groupby(ordered, key=lambda c: c.group):
        if all(c.matches(context) for c in group):
            return True
    return False


def condition_signature(conditions: Iterable[RuleCondition]) -> frozenset[tuple[Any, ...]]:
    """Order-independent identity of a condition set."""
    return frozenset(
        (c.group, c.field, c.operator.value, _hashable(c.value)) for c in conditions
    )


def _normalize_value(operator: ConditionOperator, value: Any) -> Any:
    if isinstance(value, dict):
        # Stored JSON shapes: {"value": x}, {"values": [...]}, {"min": a, "max": b}
        if operator == ConditionOperator.BETWEEN:
            if "min" not in value or "max" not in value:
                raise RuleValidationError(
                    "between condition requires 'min' and 'max'", field="value"
                )
            value = (value["min"], value["max"])
        elif "values" in value:
            value = value["values"]
        elif "value" in value:
            value = value["value"]
        else:
            raise RuleValidationError(
                f"Unrecognised condition value {value!r}", field="value"
            )

    if operator == ConditionOperator.BETWEEN:
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise RuleValidationError(
                "between condition requires a (min, max) pair", field="value"
            )
        low, high = (_require_number(v) for v in value)
        if low > high:
            raise RuleValidationError(
                f"between condition has min {low} greater than max {high}", field="value"
            )
        return (low, high)

    if operator in (ConditionOperator.IN, ConditionOperator.NOT_IN):
        if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, set, frozenset)):
            raise RuleValidationError(
                f"{operator.value} condition requires a list of values", field="value"
            )
        return tuple(_scalar(v) for v in value)

    if operator in _ORDERING:
        return _require_number(value)

    if operator == ConditionOperator.CONTAINS:
        return str(value)

    return _scalar(value)


def _scalar(value: Any) -> Decimal | str:
    if isinstance(value, str):
        return value
    return _require_number(value)


def _require_number(value: Any) -> Decimal:
    try:
        return to_decimal(value)
    except TypeMismatchError:
        raise RuleValidationError(
            f"Condition value {value!r} is not a number", field="value"
        ) from None


def _as_number(value: Decimal | str) -> Decimal | None:
    if isinstance(value, Decimal):
        return value
    try:
        return to_decimal(value)
    except TypeMismatchError:
        return None


def _equals(actual: Decimal | str, expected: Decimal | str) -> bool:
    if isinstance(actual, str) and isinstance(expected, str):
        return actual.lower() == expected.lower()
    if isinstance(expected, Decimal):
        number = _as_number(actual)
        return number is not None and number == expected
    return False


def _hashable(value: Any) -> Any:
    if isinstance(value, str):
        return value.lower()
    return value
