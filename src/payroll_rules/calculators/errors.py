"""Exception taxonomy for the calculation rule engine.

- ParseError: malformed formula text, rejected when a rule is saved or loaded
- RuleValidationError: inconsistent rule configuration, rejected at construction
- EvalError: recoverable failure for one employee/component during a run
- ResolutionAmbiguityError: two rules equally entitled to fire
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class RuleEngineError(Exception):
    """Base class for all rule engine errors."""


# === Parse errors ===


class ParseError(RuleEngineError):
    """Raised when a formula expression cannot be parsed."""

    def __init__(self, message: str, position: int, token: str | None = None):
        self.message = message
        self.position = position
        self.token = token
        super().__init__(f"{message} at position {position}")


class UnexpectedTokenError(ParseError):
    """Raised on a token the grammar does not allow at this point."""

    def __init__(self, token: str, position: int, expected: str | None = None):
        self.expected = expected
        if token:
            message = f"Unexpected token '{token}'"
        else:
            message = "Unexpected end of expression"
        if expected:
            message += f", expected {expected}"
        super().__init__(message, position, token)


class InvalidFunctionError(ParseError):
    """Raised for an unknown function name or a call with the wrong arity."""

    def __init__(
        self,
        name: str,
        position: int,
        expected_arity: int | None = None,
        actual_arity: int | None = None,
    ):
        self.name = name
        self.expected_arity = expected_arity
        self.actual_arity = actual_arity
        if expected_arity is None:
            message = f"Unknown function '{name}'"
        else:
            message = (
                f"Function {name.upper()} takes {expected_arity} argument(s), "
                f"got {actual_arity}"
            )
        super().__init__(message, position, name)


class ExpressionTooComplexError(ParseError):
    """Raised when an expression exceeds the configured length or nesting bounds."""


# === Rule validation ===


class RuleValidationError(RuleEngineError):
    """Raised when a rule is internally inconsistent."""

    def __init__(
        self,
        message: str,
        rule_id: Any = None,
        field: str | None = None,
    ):
        self.rule_id = rule_id
        self.field = field
        self.message = message
        prefix = f"Rule {rule_id}: " if rule_id is not None else ""
        super().__init__(f"{prefix}{message}")


# === Evaluation errors ===


class EvalError(RuleEngineError):
    """Raised when a parsed expression or rule cannot be evaluated for a context."""


class UnknownVariableError(EvalError):
    """Raised when a referenced variable is absent from the fact context."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown variable: {name}")


class DivisionByZeroError(EvalError):
    """Raised on division or modulo by zero."""

    def __init__(self, operator: str = "/"):
        self.operator = operator
        kind = "Modulo" if operator == "%" else "Division"
        super().__init__(f"{kind} by zero")


class TypeMismatchError(EvalError):
    """Raised when an operand is not usable where it appears."""


class NoMatchingSlabError(EvalError):
    """Raised when an input lies above every bounded slab."""

    def __init__(self, value: Any, highest_bound: Any):
        self.value = value
        self.highest_bound = highest_bound
        super().__init__(
            f"No slab covers {value}; highest slab bound is {highest_bound}"
        )


# === Resolution ===


class ResolutionAmbiguityError(RuleEngineError):
    """Raised when resolution cannot pick a single rule deterministically."""

    def __init__(
        self,
        component_code: str,
        rule_ids: Sequence[Any],
        reason: str | None = None,
    ):
        self.component_code = component_code
        self.rule_ids = list(rule_ids)
        msg = (
            f"Ambiguous rules for component '{component_code}': "
            f"{', '.join(str(r) for r in self.rule_ids)}"
        )
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)
