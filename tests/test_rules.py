"""Tests for calculation rule construction and rule-set snapshots."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_rules.calculators.conditions import RuleCondition
from payroll_rules.calculators.errors import RuleValidationError
from payroll_rules.calculators.expression import ExpressionParser
from payroll_rules.calculators.rules import (
    CalculationRule,
    FixedConfig,
    FormulaConfig,
    PercentageConfig,
    RuleSet,
    Slab,
    SlabConfig,
)
from payroll_rules.calculators.types import ComponentType, FactContext, RuleType


class TestRuleConstruction:
    """Test that invalid rules never get built."""

    def test_formula_parsed_eagerly(self, make_rule):
        """Test that a syntactically invalid formula fails at construction."""
        with pytest.raises(RuleValidationError) as exc_info:
            make_rule(FormulaConfig("basic * (12"))
        assert exc_info.value.field == "expression"
        assert "position 11" in str(exc_info.value)

    def test_formula_variables_recorded(self, make_rule):
        """Test that referenced variables replace the declared list."""
        rule = make_rule(FormulaConfig("MIN(Basic + da, 15000) * 0.12", variables=("basic",)))
        assert rule.config.variables == ("basic", "da")

    def test_parser_bounds_apply(self, make_rule):
        """Test that the injected parser's limits are enforced."""
        with pytest.raises(RuleValidationError):
            make_rule(FormulaConfig("((1))"), parser=ExpressionParser(max_depth=1))

    def test_config_must_match_rule_type(self):
        """Test that a rule type carries its own config shape."""
        with pytest.raises(RuleValidationError) as exc_info:
            CalculationRule(
                rule_id=uuid4(),
                company_id=None,
                name="Mismatch",
                component_code="hra",
                component_type=ComponentType.EARNING,
                rule_type=RuleType.FORMULA,
                config=PercentageConfig(Decimal("40"), "basic"),
            )
        assert exc_info.value.field == "config"

    def test_enum_values_accepted_as_strings(self):
        """Test that stored string values are coerced to enums."""
        rule = CalculationRule(
            rule_id=uuid4(),
            company_id=None,
            name="HRA",
            component_code="HRA",
            component_type="earning",
            rule_type="percentage",
            config=PercentageConfig("40", "Basic"),
        )
        assert rule.component_type is ComponentType.EARNING
        assert rule.rule_type is RuleType.PERCENTAGE
        assert rule.component_code == "hra"
        assert rule.config == PercentageConfig(Decimal("40"), "basic")

    def test_unknown_component_type(self):
        """Test an unknown component type is rejected."""
        with pytest.raises(RuleValidationError) as exc_info:
            CalculationRule(
                rule_id=uuid4(),
                company_id=None,
                name="Bad",
                component_code="x",
                component_type="bonus",
                rule_type="fixed",
                config=FixedConfig(Decimal("1")),
            )
        assert exc_info.value.field == "component_type"

    def test_dates_must_be_ordered(self, make_rule):
        """Test effective_from after effective_to is rejected."""
        with pytest.raises(RuleValidationError):
            make_rule(effective_from=date(2024, 4, 1), effective_to=date(2024, 3, 31))

    def test_single_day_window_allowed(self, make_rule):
        """Test a rule valid for exactly one day."""
        rule = make_rule(effective_from=date(2024, 4, 1), effective_to=date(2024, 4, 1))
        assert rule.is_effective_on(date(2024, 4, 1))
        assert not rule.is_effective_on(date(2024, 4, 2))

    def test_priority_must_be_integer(self, make_rule):
        """Test that priority is an integer, not a bool or string."""
        with pytest.raises(RuleValidationError):
            make_rule(priority="10")
        with pytest.raises(RuleValidationError):
            make_rule(priority=True)

    def test_empty_component_code(self, make_rule):
        """Test that a component code is required."""
        with pytest.raises(RuleValidationError):
            make_rule(component_code="  ")

    def test_percentage_base_must_be_variable_name(self, make_rule):
        """Test that the base of a percentage is a plain identifier."""
        with pytest.raises(RuleValidationError):
            make_rule(PercentageConfig(Decimal("12"), "basic + da"))

    def test_negative_ceiling_rejected(self, make_rule):
        """Test that a percentage ceiling cannot be negative."""
        with pytest.raises(RuleValidationError):
            make_rule(PercentageConfig(Decimal("12"), "basic", Decimal("-1")))

    def test_describe(self, make_rule):
        """Test the trace header for a rule."""
        rule = make_rule(name="PF Employee", priority=10)
        assert rule.describe() == "pf_employee via rule 'PF Employee' (priority 10)"


class TestSlabValidation:
    """Test slab table invariants."""

    def test_ascending_bounds(self, make_rule):
        """Test that bounds must be strictly ascending."""
        with pytest.raises(RuleValidationError):
            make_rule(
                SlabConfig(
                    slabs=(
                        Slab(Decimal("25000"), Decimal("0")),
                        Slab(Decimal("25000"), Decimal("200")),
                    )
                )
            )

    def test_only_last_slab_unbounded(self, make_rule):
        """Test that an unbounded slab must be last."""
        with pytest.raises(RuleValidationError):
            make_rule(
                SlabConfig(
                    slabs=(Slab(None, Decimal("0")), Slab(Decimal("25000"), Decimal("200")))
                )
            )

    def test_empty_table(self, make_rule):
        """Test that a slab table needs at least one slab."""
        with pytest.raises(RuleValidationError):
            make_rule(SlabConfig(slabs=()))

    def test_infinite_bound_means_unbounded(self, make_rule):
        """Test that an Infinity bound is normalised to unbounded."""
        rule = make_rule(
            SlabConfig(
                slabs=(Slab(Decimal("10000"), Decimal("0")), Slab(Decimal("Infinity"), "150"))
            )
        )
        assert rule.config.slabs[-1].is_unbounded
        assert rule.config.slabs[-1].value == Decimal("150")

    def test_non_numeric_bound(self, make_rule):
        """Test that a bound must be a number."""
        with pytest.raises(RuleValidationError):
            make_rule(SlabConfig(slabs=(Slab("lots", Decimal("0")),)))


class TestRuleApplicability:
    """Test validity windows and conditions on a single rule."""

    def test_open_ended_window(self, make_rule):
        """Test that effective_to=None never expires."""
        rule = make_rule(effective_from=date(2024, 1, 1))
        assert not rule.is_effective_on(date(2023, 12, 31))
        assert rule.is_effective_on(date(2024, 1, 1))
        assert rule.is_effective_on(date(2099, 1, 1))

    def test_conditional_rule_needs_context(self, make_rule):
        """Test that conditions never match a missing context."""
        rule = make_rule(conditions=(RuleCondition("department", "equals", "Sales"),))
        assert not rule.applies_to(None)
        assert rule.applies_to(FactContext(attributes={"department": "sales"}))

    def test_unconditional_rule_always_applies(self, make_rule):
        """Test a rule without conditions."""
        assert make_rule().applies_to(None)


class TestRuleSet:
    """Test immutable rule snapshots."""

    def test_groups_by_component(self, rule_set):
        """Test component lookup and listing."""
        assert rule_set.component_codes == [
            "conveyance",
            "esi_employee",
            "hra",
            "lop",
            "pf_employee",
            "pt",
        ]
        assert len(rule_set.for_component("PF_EMPLOYEE")) == 1
        assert rule_set.for_component("unknown") == ()

    def test_get_by_id(self, statutory_rules):
        """Test looking a rule up by id."""
        rule_set = RuleSet(statutory_rules)
        assert rule_set.get(statutory_rules[2].rule_id) is statutory_rules[2]
        assert rule_set.get(uuid4()) is None

    def test_duplicate_id_rejected(self, make_rule):
        """Test that a rule id appears once."""
        rule = make_rule()
        with pytest.raises(RuleValidationError):
            RuleSet([rule, rule])

    def test_indistinguishable_rules_rejected(self, make_rule):
        """Test two rules that resolution could never separate."""
        with pytest.raises(RuleValidationError) as exc_info:
            RuleSet([make_rule(priority=10), make_rule(priority=10)])
        assert exc_info.value.field == "priority"

    def test_same_priority_different_start_allowed(self, make_rule):
        """Test that a later start date is a valid tie-break."""
        rule_set = RuleSet(
            [
                make_rule(priority=10, effective_from=date(2024, 1, 1)),
                make_rule(priority=10, effective_from=date(2024, 4, 1)),
            ]
        )
        assert len(rule_set) == 2

    def test_same_priority_disjoint_windows_allowed(self, make_rule):
        """Test that non-overlapping windows never compete."""
        rule_set = RuleSet(
            [
                make_rule(
                    priority=10,
                    effective_from=date(2024, 1, 1),
                    effective_to=date(2024, 3, 31),
                ),
                make_rule(priority=10, effective_from=date(2024, 4, 1)),
            ]
        )
        assert len(rule_set) == 2

    def test_same_priority_different_scope_allowed(self, make_rule, company_id):
        """Test that a company rule may share a system rule's priority."""
        rule_set = RuleSet([make_rule(priority=10), make_rule(priority=10, company_id=company_id)])
        assert len(rule_set) == 2

    def test_inactive_duplicates_ignored(self, make_rule):
        """Test that retired rules do not count as duplicates."""
        rule_set = RuleSet([make_rule(priority=10), make_rule(priority=10, is_active=False)])
        assert len(rule_set) == 2

    def test_same_priority_different_conditions_allowed(self, make_rule):
        """Test that differently conditioned rules may share a priority."""
        rule_set = RuleSet(
            [
                make_rule(priority=10, conditions=(RuleCondition("grade", "equals", "A"),)),
                make_rule(priority=10, conditions=(RuleCondition("grade", "equals", "B"),)),
            ]
        )
        assert len(rule_set) == 2
