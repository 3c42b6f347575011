"""Tests for signed component lines."""

from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_rules.calculators.line_builder import ComponentLine, ComponentLineBuilder
from payroll_rules.calculators.types import ComponentType, EvaluationResult


def result_for(code: str, component_type: ComponentType, amount: str) -> EvaluationResult:
    return EvaluationResult(
        component_code=code,
        component_type=component_type,
        amount=Decimal(amount),
        fired_rule_id=uuid4(),
        rule_name=code.upper(),
        priority=10,
        calculation_id=uuid4(),
        trace=(f"{code} via rule '{code.upper()}' (priority 10)",),
    )


@pytest.fixture
def payslip_lines() -> list[ComponentLine]:
    return [
        ComponentLineBuilder.create_line(result_for("basic", ComponentType.EARNING, "30000")),
        ComponentLineBuilder.create_line(result_for("hra", ComponentType.EARNING, "15000")),
        ComponentLineBuilder.create_line(result_for("pf_employee", ComponentType.DEDUCTION, "1800")),
        ComponentLineBuilder.create_line(result_for("pt", ComponentType.DEDUCTION, "200")),
        ComponentLineBuilder.create_line(
            result_for("pf_employer", ComponentType.EMPLOYER_CONTRIBUTION, "1800")
        ),
    ]


class TestComponentLineBuilder:
    """Test line building and aggregation."""

    def test_round_to_paise(self):
        """Test rounding to 2 decimal places, half up."""
        assert ComponentLineBuilder.round_to_paise(Decimal("10.125")) == Decimal("10.13")
        assert ComponentLineBuilder.round_to_paise(Decimal("10.124")) == Decimal("10.12")
        assert ComponentLineBuilder.round_to_paise(Decimal("10.135")) == Decimal("10.14")

    def test_earning_positive(self):
        """Test earnings keep their sign."""
        line = ComponentLineBuilder.create_line(result_for("hra", ComponentType.EARNING, "5000"))
        assert line.amount == Decimal("5000.00")

    def test_deduction_negative(self):
        """Test deductions are negated."""
        result = result_for("pf_employee", ComponentType.DEDUCTION, "1800")
        line = ComponentLineBuilder.create_line(result)

        assert line.amount == Decimal("-1800.00")
        assert line.rule_id == result.fired_rule_id
        assert line.calculation_id == result.calculation_id
        assert line.explanation == "pf_employee via rule 'PF_EMPLOYEE' (priority 10)"

    def test_employer_contribution_positive(self):
        """Test employer contributions are positive liabilities."""
        line = ComponentLineBuilder.create_line(
            result_for("esi_employer", ComponentType.EMPLOYER_CONTRIBUTION, "682.50")
        )
        assert line.amount == Decimal("682.50")

    def test_totals(self, payslip_lines):
        """Test gross, net and employer cost."""
        assert ComponentLineBuilder.calculate_gross(payslip_lines) == Decimal("45000.00")
        assert ComponentLineBuilder.calculate_net(payslip_lines) == Decimal("43000.00")
        assert ComponentLineBuilder.calculate_employer_cost(payslip_lines) == Decimal("1800.00")

    def test_sign_validation(self, payslip_lines):
        """Test that well-formed lines pass and flipped signs are reported."""
        assert ComponentLineBuilder.validate_line_signs(payslip_lines) == []

        negative_earning = ComponentLineBuilder.create_line(
            result_for("arrears", ComponentType.EARNING, "-100")
        )
        errors = ComponentLineBuilder.validate_line_signs([negative_earning])
        assert errors == ["arrears: earning must be positive or zero"]

    def test_line_hash_deterministic(self, payslip_lines):
        """Test that equal lines hash equally and different lines do not."""
        line = payslip_lines[0]
        assert ComponentLineBuilder.compute_line_hash(line) == ComponentLineBuilder.compute_line_hash(line)
        assert ComponentLineBuilder.compute_line_hash(line) != ComponentLineBuilder.compute_line_hash(
            payslip_lines[1]
        )
