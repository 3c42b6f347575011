"""Tests for rule resolution."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_rules.calculators.conditions import RuleCondition
from payroll_rules.calculators.errors import ResolutionAmbiguityError
from payroll_rules.calculators.rule_resolver import RuleResolver
from payroll_rules.calculators.rules import FixedConfig, RuleSet
from payroll_rules.calculators.types import ComponentType, FactContext

AS_OF = date(2024, 4, 30)


def fixed(amount: str) -> FixedConfig:
    return FixedConfig(Decimal(amount))


class TestRuleResolver:
    """Test rule selection by scope, priority and validity."""

    def test_lowest_priority_wins(self, make_rule):
        """Test that priority 10 beats 20 regardless of insertion order."""
        high = make_rule(fixed("1"), component_code="bonus", priority=10)
        low = make_rule(fixed("2"), component_code="bonus", priority=20)

        for rules in ([high, low], [low, high]):
            resolver = RuleResolver(RuleSet(rules))
            assert resolver.resolve(None, "bonus", AS_OF) is high

    def test_company_rule_shadows_system_default(self, make_rule, company_id):
        """Test that a company rule wins even with a worse priority number."""
        system = make_rule(fixed("1"), component_code="bonus", priority=10)
        company = make_rule(fixed("2"), component_code="bonus", priority=20, company_id=company_id)
        resolver = RuleResolver(RuleSet([system, company]))

        assert resolver.resolve(company_id, "bonus", AS_OF) is company

    def test_system_default_for_other_companies(self, make_rule, company_id):
        """Test that another company's rule is invisible."""
        system = make_rule(fixed("1"), component_code="bonus", priority=10)
        company = make_rule(fixed("2"), component_code="bonus", priority=5, company_id=company_id)
        resolver = RuleResolver(RuleSet([system, company]))

        assert resolver.resolve(uuid4(), "bonus", AS_OF) is system
        assert resolver.resolve(None, "bonus", AS_OF) is system

    def test_expired_rule_never_chosen(self, make_rule):
        """Test that a rule past its effective_to is not a candidate."""
        expired = make_rule(
            fixed("1"),
            component_code="bonus",
            priority=1,
            effective_from=date(2023, 1, 1),
            effective_to=date(2024, 3, 31),
        )
        current = make_rule(fixed("2"), component_code="bonus", priority=50)
        resolver = RuleResolver(RuleSet([expired, current]))

        assert resolver.resolve(None, "bonus", AS_OF) is current
        assert resolver.resolve(None, "bonus", date(2024, 3, 31)) is expired

    def test_future_rule_not_yet_effective(self, make_rule):
        """Test that a rule starting after the date is ignored."""
        future = make_rule(fixed("1"), component_code="bonus", effective_from=date(2024, 5, 1))
        resolver = RuleResolver(RuleSet([future]))

        assert resolver.resolve(None, "bonus", AS_OF) is None
        assert resolver.resolve(None, "bonus", date(2024, 5, 1)) is future

    def test_inactive_rule_ignored(self, make_rule):
        """Test that deactivated rules never fire."""
        inactive = make_rule(fixed("1"), component_code="bonus", priority=1, is_active=False)
        active = make_rule(fixed("2"), component_code="bonus", priority=50)
        resolver = RuleResolver(RuleSet([inactive, active]))

        assert resolver.resolve(None, "bonus", AS_OF) is active

    def test_no_rule_returns_none(self, rule_set):
        """Test a component without rules."""
        assert RuleResolver(rule_set).resolve(None, "overtime", AS_OF) is None

    def test_later_start_breaks_tie(self, make_rule):
        """Test that the newer of two equal-priority rules wins."""
        old = make_rule(fixed("1"), component_code="bonus", priority=10, effective_from=date(2023, 4, 1))
        new = make_rule(fixed("2"), component_code="bonus", priority=10, effective_from=date(2024, 4, 1))
        resolver = RuleResolver(RuleSet([new, old]))

        assert resolver.resolve(None, "bonus", AS_OF) is new
        assert resolver.resolve(None, "bonus", date(2024, 3, 31)) is old

    def test_unresolvable_tie_raises(self, make_rule):
        """Test that a remaining tie is an error, not an arbitrary pick."""
        a = make_rule(
            fixed("1"),
            component_code="bonus",
            priority=10,
            conditions=(RuleCondition("grade", "equals", "A"),),
        )
        b = make_rule(
            fixed("2"),
            component_code="bonus",
            priority=10,
            conditions=(RuleCondition("location", "equals", "Pune"),),
        )
        resolver = RuleResolver(RuleSet([a, b]))
        context = FactContext(attributes={"grade": "A", "location": "Pune"})

        with pytest.raises(ResolutionAmbiguityError) as exc_info:
            resolver.resolve(None, "bonus", AS_OF, context)
        assert exc_info.value.component_code == "bonus"
        assert set(exc_info.value.rule_ids) == {a.rule_id, b.rule_id}

    def test_conditions_filter_candidates(self, make_rule):
        """Test that a non-matching conditional rule falls through to the next."""
        metro = make_rule(
            fixed("50"),
            component_code="hra",
            component_type=ComponentType.EARNING,
            priority=10,
            conditions=(RuleCondition("location", "in", ["Mumbai", "Delhi"]),),
        )
        default = make_rule(
            fixed("40"),
            component_code="hra",
            component_type=ComponentType.EARNING,
            priority=20,
        )
        resolver = RuleResolver(RuleSet([metro, default]))

        mumbai = FactContext(attributes={"location": "Mumbai"})
        pune = FactContext(attributes={"location": "Pune"})
        assert resolver.resolve(None, "hra", AS_OF, mumbai) is metro
        assert resolver.resolve(None, "hra", AS_OF, pune) is default
        assert resolver.resolve(None, "hra", AS_OF) is default

    def test_candidates(self, make_rule, company_id):
        """Test the candidate list before priority is applied."""
        system = make_rule(fixed("1"), component_code="bonus", priority=10)
        company = make_rule(fixed("2"), component_code="bonus", priority=20, company_id=company_id)
        resolver = RuleResolver(RuleSet([system, company]))

        assert set(resolver.candidates(company_id, "bonus", AS_OF)) == {system, company}
        assert resolver.candidates(None, "bonus", AS_OF) == [system]
