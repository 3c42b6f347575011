"""Calculation rule resolution by scope, priority and validity."""

from __future__ import annotations

import logging
from datetime import date
from uuid import UUID

from payroll_rules.calculators.errors import ResolutionAmbiguityError
from payroll_rules.calculators.rules import CalculationRule, RuleSet
from payroll_rules.calculators.types import FactContext

logger = logging.getLogger(__name__)


class RuleResolver:
    """Selects the single rule that computes a component.

    Rule selection:
    1. Candidates are active rules for the component whose validity window
       includes the effective date and whose conditions match the facts
    2. Company-scoped rules for the target company shadow system defaults
       entirely (specificity beats priority across scopes)
    3. Lowest priority number wins within the winning scope
    4. Tie-break: later effective_from wins
    5. Anything still tied is a configuration error, never an arbitrary pick
    """

    def __init__(self, rule_set: RuleSet):
        self.rule_set = rule_set

    def candidates(
        self,
        company_id: UUID | None,
        component_code: str,
        effective_date: date,
        context: FactContext | None = None,
    ) -> list[CalculationRule]:
        """All rules eligible to fire, before priority is considered."""
        return [
            rule
            for rule in self.rule_set.for_component(component_code)
            if rule.is_active
            and rule.is_effective_on(effective_date)
            and (rule.is_system_default or rule.company_id == company_id)
            and rule.applies_to(context)
        ]

    def resolve(
        self,
        company_id: UUID | None,
        component_code: str,
        effective_date: date,
        context: FactContext | None = None,
    ) -> CalculationRule | None:
        """Resolve the winning rule, or None if the component does not apply.

        Raises:
            ResolutionAmbiguityError: if two rules remain tied after tie-breaks
        """
        rules = self.candidates(company_id, component_code, effective_date, context)
        if not rules:
            logger.debug(
                "No applicable rule for %s (company %s, %s)",
                component_code,
                company_id,
                effective_date,
            )
            return None

        company_rules = [r for r in rules if not r.is_system_default]
        pool = company_rules or rules

        best_priority = min(r.priority for r in pool)
        tied = [r for r in pool if r.priority == best_priority]

        if len(tied) > 1:
            latest = max(r.effective_from for r in tied)
            tied = [r for r in tied if r.effective_from == latest]

        if len(tied) > 1:
            raise ResolutionAmbiguityError(
                component_code,
                sorted((r.rule_id for r in tied), key=str),
                reason=f"same scope, priority {best_priority} and start date {tied[0].effective_from}",
            )

        winner = tied[0]
        logger.debug(
            "Resolved %s to rule %s (%s) out of %d candidate(s)",
            component_code,
            winner.rule_id,
            winner.name,
            len(rules),
        )
        return winner
