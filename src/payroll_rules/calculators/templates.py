"""Built-in formula variables and statutory rule templates."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from payroll_rules.calculators.conditions import RuleCondition
from payroll_rules.calculators.rules import (
    CalculationRule,
    FixedConfig,
    FormulaConfig,
    PercentageConfig,
    RuleConfig,
    Slab,
    SlabConfig,
)
from payroll_rules.calculators.types import ComponentType, RuleType


@dataclass(frozen=True)
class FormulaVariable:
    """A fact that payroll processing supplies to formulas."""

    code: str
    display_name: str
    source: str  # salary_structure, calculated, employee, payroll, company_config
    data_type: str = "decimal"
    description: str = ""


FORMULA_VARIABLES: tuple[FormulaVariable, ...] = (
    # Salary structure
    FormulaVariable("basic", "Basic Salary", "salary_structure", description="Monthly basic salary"),
    FormulaVariable("hra", "HRA", "salary_structure", description="House Rent Allowance"),
    FormulaVariable("da", "Dearness Allowance", "salary_structure"),
    FormulaVariable("conveyance", "Conveyance Allowance", "salary_structure"),
    FormulaVariable("medical", "Medical Allowance", "salary_structure"),
    FormulaVariable("special", "Special Allowance", "salary_structure"),
    FormulaVariable("other_allowances", "Other Allowances", "salary_structure"),
    FormulaVariable("lta", "LTA (Monthly)", "salary_structure"),
    FormulaVariable("monthly_gross", "Monthly Gross", "salary_structure"),
    FormulaVariable("annual_ctc", "Annual CTC", "salary_structure"),
    # Calculated
    FormulaVariable("pf_wage", "PF Wage", "calculated", description="Basic + DA"),
    FormulaVariable("esi_wage", "ESI Wage", "calculated"),
    FormulaVariable("gross_earnings", "Gross Earnings", "calculated", description="Earnings after proration"),
    # Employee
    FormulaVariable("age", "Employee Age", "employee", "integer"),
    FormulaVariable("tenure_years", "Tenure (Years)", "employee"),
    FormulaVariable("tenure_months", "Tenure (Months)", "employee", "integer"),
    # Payroll period
    FormulaVariable("working_days", "Working Days", "payroll", "integer"),
    FormulaVariable("present_days", "Present Days", "payroll", "integer"),
    FormulaVariable("lop_days", "LOP Days", "payroll", "integer", "Loss of pay days"),
    FormulaVariable("payable_days", "Payable Days", "payroll", "integer"),
    FormulaVariable("payroll_month", "Payroll Month", "payroll", "integer"),
    FormulaVariable("payroll_year", "Payroll Year", "payroll", "integer"),
    # Company configuration
    FormulaVariable("pf_ceiling", "PF Wage Ceiling", "company_config"),
    FormulaVariable("esi_ceiling", "ESI Wage Ceiling", "company_config"),
    FormulaVariable("pf_employee_rate", "PF Employee Rate", "company_config"),
    FormulaVariable("pf_employer_rate", "PF Employer Rate", "company_config"),
)


def known_variable_codes() -> list[str]:
    return [v.code for v in FORMULA_VARIABLES]


@dataclass(frozen=True)
class RuleTemplate:
    """A pre-built rule that a company can adopt."""

    key: str
    name: str
    description: str
    category: str  # statutory, allowance, deduction
    component_type: ComponentType
    component_code: str
    rule_type: RuleType
    config: RuleConfig
    display_order: int = 100
    default_conditions: tuple[RuleCondition, ...] = field(default=())

    def instantiate(
        self,
        company_id: UUID | None,
        priority: int | None = None,
        effective_from: date = date.min,
        effective_to: date | None = None,
        rule_id: UUID | None = None,
        **overrides: Any,
    ) -> CalculationRule:
        """Create a validated rule from this template.

        `priority` defaults to the template's display order.
        """
        values: dict[str, Any] = {
            "rule_id": rule_id or uuid4(),
            "company_id": company_id,
            "name": self.name,
            "description": self.description,
            "component_code": self.component_code,
            "component_type": self.component_type,
            "rule_type": self.rule_type,
            "config": self.config,
            "priority": self.display_order if priority is None else priority,
            "effective_from": effective_from,
            "effective_to": effective_to,
            "is_system": company_id is None,
            "conditions": self.default_conditions,
        }
        values.update(overrides)
        return CalculationRule(**values)


RULE_TEMPLATES: tuple[RuleTemplate, ...] = (
    RuleTemplate(
        key="pf_ceiling",
        name="PF (Ceiling-Based)",
        description="PF calculated on wage capped at ceiling",
        category="statutory",
        component_type=ComponentType.DEDUCTION,
        component_code="pf_employee",
        rule_type=RuleType.FORMULA,
        config=FormulaConfig("MIN(pf_wage, pf_ceiling) * pf_employee_rate / 100"),
        display_order=10,
    ),
    RuleTemplate(
        key="pf_actual",
        name="PF (Actual Wage)",
        description="PF calculated on actual PF wage without ceiling",
        category="statutory",
        component_type=ComponentType.DEDUCTION,
        component_code="pf_employee",
        rule_type=RuleType.FORMULA,
        config=FormulaConfig("pf_wage * pf_employee_rate / 100"),
        display_order=11,
    ),
    RuleTemplate(
        key="esi_employee",
        name="ESI Employee",
        description="ESI employee contribution at 0.75%",
        category="statutory",
        component_type=ComponentType.DEDUCTION,
        component_code="esi_employee",
        rule_type=RuleType.FORMULA,
        config=FormulaConfig("IF(esi_wage <= esi_ceiling, esi_wage * 0.75 / 100, 0)"),
        display_order=20,
    ),
    RuleTemplate(
        key="pf_employer",
        name="Employer PF",
        description="Employer PF contribution",
        category="statutory",
        component_type=ComponentType.EMPLOYER_CONTRIBUTION,
        component_code="pf_employer",
        rule_type=RuleType.FORMULA,
        config=FormulaConfig("MIN(pf_wage, pf_ceiling) * pf_employer_rate / 100"),
        display_order=30,
    ),
    RuleTemplate(
        key="esi_employer",
        name="Employer ESI",
        description="Employer ESI contribution at 3.25%",
        category="statutory",
        component_type=ComponentType.EMPLOYER_CONTRIBUTION,
        component_code="esi_employer",
        rule_type=RuleType.FORMULA,
        config=FormulaConfig("IF(esi_wage <= esi_ceiling, esi_wage * 3.25 / 100, 0)"),
        display_order=31,
    ),
    RuleTemplate(
        key="gratuity",
        name="Gratuity Provision",
        description="Monthly gratuity provision (4.81% of basic)",
        category="statutory",
        component_type=ComponentType.EMPLOYER_CONTRIBUTION,
        component_code="gratuity",
        rule_type=RuleType.PERCENTAGE,
        config=PercentageConfig(Decimal("4.81"), "basic"),
        display_order=40,
    ),
    RuleTemplate(
        key="hra_metro",
        name="HRA (50% of Basic)",
        description="HRA at 50% of basic for metro cities",
        category="allowance",
        component_type=ComponentType.EARNING,
        component_code="hra",
        rule_type=RuleType.PERCENTAGE,
        config=PercentageConfig(Decimal("50"), "basic"),
        display_order=50,
    ),
    RuleTemplate(
        key="hra_non_metro",
        name="HRA (40% of Basic)",
        description="HRA at 40% of basic for non-metro cities",
        category="allowance",
        component_type=ComponentType.EARNING,
        component_code="hra",
        rule_type=RuleType.PERCENTAGE,
        config=PercentageConfig(Decimal("40"), "basic"),
        display_order=51,
    ),
    RuleTemplate(
        key="conveyance",
        name="Fixed Conveyance",
        description="Fixed conveyance allowance",
        category="allowance",
        component_type=ComponentType.EARNING,
        component_code="conveyance",
        rule_type=RuleType.FIXED,
        config=FixedConfig(Decimal("1600"), pro_rata=True),
        display_order=60,
    ),
    RuleTemplate(
        key="performance_bonus",
        name="Performance Bonus",
        description="Performance bonus as percentage of basic",
        category="allowance",
        component_type=ComponentType.EARNING,
        component_code="bonus",
        rule_type=RuleType.PERCENTAGE,
        config=PercentageConfig(Decimal("10"), "basic"),
        display_order=70,
    ),
    RuleTemplate(
        key="pt_karnataka",
        name="Professional Tax (Karnataka)",
        description="PT for Karnataka state",
        category="statutory",
        component_type=ComponentType.DEDUCTION,
        component_code="pt",
        rule_type=RuleType.SLAB,
        config=SlabConfig(
            slabs=(
                Slab(Decimal("25000"), Decimal("0")),
                Slab(None, Decimal("200")),
            ),
            base="gross_earnings",
        ),
        display_order=80,
    ),
    RuleTemplate(
        key="loan_emi",
        name="Loan EMI",
        description="Fixed loan EMI deduction",
        category="deduction",
        component_type=ComponentType.DEDUCTION,
        component_code="loan_emi",
        rule_type=RuleType.FIXED,
        config=FixedConfig(Decimal("0")),
        display_order=90,
    ),
)


def get_template(key: str) -> RuleTemplate:
    """Look up a template by key.

    Raises:
        KeyError: if no template has this key
    """
    for template in RULE_TEMPLATES:
        if template.key == key:
            return template
    raise KeyError(f"Unknown rule template '{key}'")
