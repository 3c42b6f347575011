"""Signed component lines with idempotent hashing."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from payroll_rules.calculators.types import ComponentType, EvaluationResult


@dataclass(frozen=True)
class ComponentLine:
    """A computed component ready for payroll aggregation."""

    component_code: str
    component_type: ComponentType
    amount: Decimal  # Signed per conventions
    rule_id: UUID
    calculation_id: UUID
    explanation: str

    def to_canonical_dict(self) -> dict[str, Any]:
        """Return canonical dict for hashing (deterministic ordering)."""
        return {
            "component_code": self.component_code,
            "component_type": self.component_type.value,
            "amount": str(self.amount),
            "rule_id": str(self.rule_id),
            "calculation_id": str(self.calculation_id),
        }


class ComponentLineBuilder:
    """Builds signed lines from evaluation results.

    Sign conventions (non-negotiable):
    - EARNING: positive
    - DEDUCTION (employee): negative
    - EMPLOYER_CONTRIBUTION: positive (liability, not part of net)

    Amounts are persisted in rupees to 2 decimals (paise).
    """

    OUTPUT_PRECISION = Decimal("0.01")

    @staticmethod
    def round_to_paise(amount: Decimal) -> Decimal:
        """Round amount to 2 decimal places (paise)."""
        return amount.quantize(ComponentLineBuilder.OUTPUT_PRECISION, rounding=ROUND_HALF_UP)

    @staticmethod
    def create_line(result: EvaluationResult) -> ComponentLine:
        """Create a signed line from an evaluation result."""
        amount = ComponentLineBuilder.round_to_paise(result.amount)
        if result.component_type == ComponentType.DEDUCTION:
            amount = -amount
        return ComponentLine(
            component_code=result.component_code,
            component_type=result.component_type,
            amount=amount,
            rule_id=result.fired_rule_id,
            calculation_id=result.calculation_id,
            explanation=result.trace[0] if result.trace else result.rule_name,
        )

    @staticmethod
    def compute_line_hash(line: ComponentLine) -> str:
        """Compute deterministic hash for a line."""
        json_str = json.dumps(line.to_canonical_dict(), sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    @staticmethod
    def calculate_gross(lines: Iterable[ComponentLine]) -> Decimal:
        """Sum of earnings."""
        return sum(
            (l.amount for l in lines if l.component_type == ComponentType.EARNING),
            Decimal("0"),
        )

    @staticmethod
    def calculate_net(lines: Iterable[ComponentLine]) -> Decimal:
        """Earnings plus (negative) deductions; employer contributions excluded."""
        return sum(
            (l.amount for l in lines if l.component_type != ComponentType.EMPLOYER_CONTRIBUTION),
            Decimal("0"),
        )

    @staticmethod
    def calculate_employer_cost(lines: Iterable[ComponentLine]) -> Decimal:
        """Sum of employer contributions."""
        return sum(
            (l.amount for l in lines if l.component_type == ComponentType.EMPLOYER_CONTRIBUTION),
            Decimal("0"),
        )

    @staticmethod
    def validate_line_signs(lines: Iterable[ComponentLine]) -> list[str]:
        """Validate that all lines follow sign conventions."""
        errors: list[str] = []
        for line in lines:
            if line.component_type == ComponentType.DEDUCTION and line.amount > 0:
                errors.append(f"{line.component_code}: deduction must be negative or zero")
            elif line.component_type != ComponentType.DEDUCTION and line.amount < 0:
                errors.append(f"{line.component_code}: {line.component_type.value} must be positive or zero")
        return errors
