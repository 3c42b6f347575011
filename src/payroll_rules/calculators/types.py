"""Type definitions for the calculation pipeline."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Union
from uuid import UUID

from payroll_rules.calculators.errors import RuleEngineError
from payroll_rules.calculators.expression import to_decimal


class ComponentType(str, Enum):
    """Salary component kinds."""

    EARNING = "earning"
    DEDUCTION = "deduction"
    EMPLOYER_CONTRIBUTION = "employer_contribution"


class RuleType(str, Enum):
    """How a rule computes its amount."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"
    SLAB = "slab"
    FORMULA = "formula"


class FactContext(Mapping[str, Decimal]):
    """Read-only facts for one employee and pay period.

    Numeric facts (basic, da, working_days, ...) feed formulas. String
    attributes (department, grade, location, ...) are only visible to rule
    conditions. Names are case-insensitive.
    """

    __slots__ = ("_values", "_attributes")

    def __init__(
        self,
        values: Mapping[str, Any] | None = None,
        attributes: Mapping[str, Any] | None = None,
    ):
        self._values: Mapping[str, Decimal] = MappingProxyType(
            {str(k).lower(): to_decimal(v) for k, v in (values or {}).items()}
        )
        self._attributes: Mapping[str, str] = MappingProxyType(
            {
                str(k).lower(): str(v)
                for k, v in (attributes or {}).items()
                if v is not None
            }
        )

    def __getitem__(self, name: str) -> Decimal:
        return self._values[name.lower()]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"FactContext({dict(self._values)!r}, attributes={dict(self._attributes)!r})"

    @property
    def attributes(self) -> Mapping[str, str]:
        return self._attributes

    def get_field(self, name: str) -> Decimal | str | None:
        """Look up a condition field: numeric facts first, then attributes."""
        key = name.lower()
        if key in self._values:
            return self._values[key]
        return self._attributes.get(key)

    def with_values(self, **updates: Any) -> FactContext:
        """Return a new context with some numeric facts replaced."""
        values: dict[str, Any] = dict(self._values)
        values.update({k.lower(): v for k, v in updates.items()})
        return FactContext(values, self._attributes)

    def fingerprint(self) -> str:
        """Deterministic hash of all facts, for calculation ids."""
        data = {
            "values": {k: str(v) for k, v in self._values.items()},
            "attributes": dict(self._attributes),
        }
        json_str = json.dumps(data, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]


@dataclass(frozen=True)
class CalculationStep:
    """One audited step of a rule evaluation."""

    description: str
    expression: str
    value: Decimal


@dataclass(frozen=True)
class EvaluationResult:
    """A component amount attributable to exactly one rule."""

    component_code: str
    component_type: ComponentType
    amount: Decimal  # Rounded, unsigned as computed by the rule
    fired_rule_id: UUID
    rule_name: str
    priority: int
    calculation_id: UUID
    trace: tuple[str, ...] = ()
    steps: tuple[CalculationStep, ...] = ()

    @property
    def success(self) -> bool:
        return True


@dataclass(frozen=True)
class NotApplicable:
    """No rule applies to this component for this employee and date."""

    component_code: str
    reason: str

    @property
    def success(self) -> bool:
        return True


@dataclass(frozen=True)
class ComponentFailure:
    """A contained per-component error, collected instead of raised."""

    component_code: str
    error: RuleEngineError = field(compare=False)
    rule_id: UUID | None = None

    @property
    def success(self) -> bool:
        return False

    @property
    def error_type(self) -> str:
        return type(self.error).__name__

    @property
    def message(self) -> str:
        return str(self.error)


ComponentOutcome = Union[EvaluationResult, NotApplicable, ComponentFailure]


@dataclass
class EmployeeEvaluation:
    """All component outcomes for one employee in a run."""

    employee_id: Any
    outcomes: dict[str, ComponentOutcome] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def results(self) -> dict[str, EvaluationResult]:
        return {
            code: o for code, o in self.outcomes.items() if isinstance(o, EvaluationResult)
        }

    @property
    def failures(self) -> list[ComponentFailure]:
        return [o for o in self.outcomes.values() if isinstance(o, ComponentFailure)]

    @property
    def success(self) -> bool:
        return not self.errors and not self.failures


@dataclass
class PayrollRunEvaluation:
    """Outcome of evaluating components for every employee in a run."""

    results: dict[Any, EmployeeEvaluation]  # employee_id -> evaluation
    error_count: int = 0

    def exceptions(self) -> list[tuple[Any, str, str]]:
        """Reviewable exception list: (employee_id, component_code, message)."""
        rows: list[tuple[Any, str, str]] = []
        for employee_id, evaluation in self.results.items():
            for message in evaluation.errors:
                rows.append((employee_id, "*", message))
            for failure in evaluation.failures:
                rows.append((employee_id, failure.component_code, failure.message))
        return rows
