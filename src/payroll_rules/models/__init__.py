"""ORM models for the rule store."""

from payroll_rules.models.base import Base, TimestampMixin
from payroll_rules.models.rules import CalculationRuleConditionRow, CalculationRuleRow

__all__ = [
    "Base",
    "TimestampMixin",
    "CalculationRuleRow",
    "CalculationRuleConditionRow",
]
