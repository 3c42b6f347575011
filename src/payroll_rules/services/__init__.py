"""Services over the rule store."""

from payroll_rules.services.rule_store import RuleStore

__all__ = ["RuleStore"]
