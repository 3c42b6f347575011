"""Calculation rule engine."""

from payroll_rules.calculators.cache import ExpressionCache
from payroll_rules.calculators.engine import ComponentEvaluator
from payroll_rules.calculators.expression import (
    Expression,
    ExpressionEvaluator,
    ExpressionParser,
    evaluate_expression,
    parse_expression,
    validate_formula,
)
from payroll_rules.calculators.rule_resolver import RuleResolver
from payroll_rules.calculators.rules import CalculationRule, RuleSet
from payroll_rules.calculators.slab_resolver import SlabResolver
from payroll_rules.calculators.types import (
    ComponentFailure,
    EvaluationResult,
    FactContext,
    NotApplicable,
)

__all__ = [
    "CalculationRule",
    "ComponentEvaluator",
    "ComponentFailure",
    "EvaluationResult",
    "Expression",
    "ExpressionCache",
    "ExpressionEvaluator",
    "ExpressionParser",
    "FactContext",
    "NotApplicable",
    "RuleResolver",
    "RuleSet",
    "SlabResolver",
    "evaluate_expression",
    "parse_expression",
    "validate_formula",
]
