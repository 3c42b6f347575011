"""Typed, validated calculation rules and rule-set snapshots.

A rule's configuration is a tagged union: exactly one config class per
rule type. Construction enforces every invariant, so an inconsistent rule
never reaches the candidate pool.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, DecimalException
from typing import Union
from uuid import UUID

from payroll_rules.calculators.conditions import (
    RuleCondition,
    condition_signature,
    conditions_match,
)
from payroll_rules.calculators.errors import (
    ParseError,
    RuleValidationError,
    TypeMismatchError,
)
from payroll_rules.calculators.expression import (
    Expression,
    ExpressionParser,
    to_decimal,
)
from payroll_rules.calculators.types import ComponentType, FactContext, RuleType

_VARIABLE_CHARS = set("abcdefghijklmnopqrstuvwxyz0123456789_")

# Company id meaning "system default for every company"
SYSTEM_COMPANY_ID = None


def _variable_name(name: str, rule_id: UUID | None, field_name: str) -> str:
    normalized = (name or "").strip().lower()
    if (
        not normalized
        or normalized[0].isdigit()
        or not set(normalized) <= _VARIABLE_CHARS
    ):
        raise RuleValidationError(
            f"'{name}' is not a valid variable name", rule_id, field_name
        )
    return normalized


def _decimal(value: object, rule_id: UUID | None, field_name: str) -> Decimal:
    try:
        number = to_decimal(value)
    except TypeMismatchError:
        raise RuleValidationError(
            f"{field_name} must be a number, got {value!r}", rule_id, field_name
        ) from None
    if not number.is_finite():
        raise RuleValidationError(f"{field_name} must be finite", rule_id, field_name)
    return number


# === Formula configs ===


@dataclass(frozen=True)
class PercentageConfig:
    """`percentage`% of the `base` fact, optionally capping the base at `ceiling`."""

    percentage: Decimal
    base: str
    ceiling: Decimal | None = None

    rule_type = RuleType.PERCENTAGE

    def validate(self, rule_id: UUID | None) -> PercentageConfig:
        percentage = _decimal(self.percentage, rule_id, "percentage")
        ceiling = None
        if self.ceiling is not None:
            ceiling = _decimal(self.ceiling, rule_id, "ceiling")
            if ceiling < 0:
                raise RuleValidationError("ceiling cannot be negative", rule_id, "ceiling")
        return PercentageConfig(
            percentage=percentage,
            base=_variable_name(self.base, rule_id, "base"),
            ceiling=ceiling,
        )


@dataclass(frozen=True)
class FixedConfig:
    """A literal amount, optionally pro-rated by payable days."""

    amount: Decimal
    pro_rata: bool = False

    rule_type = RuleType.FIXED

    def validate(self, rule_id: UUID | None) -> FixedConfig:
        return FixedConfig(
            amount=_decimal(self.amount, rule_id, "amount"),
            pro_rata=bool(self.pro_rata),
        )


@dataclass(frozen=True)
class Slab:
    """One bracket. `upto_amount=None` means unbounded."""

    upto_amount: Decimal | None
    value: Decimal
    is_percentage: bool = False

    @property
    def is_unbounded(self) -> bool:
        return self.upto_amount is None


@dataclass(frozen=True)
class SlabConfig:
    """Bracket table applied to the `base` fact."""

    slabs: tuple[Slab, ...]
    base: str = "gross_earnings"

    rule_type = RuleType.SLAB

    def validate(self, rule_id: UUID | None) -> SlabConfig:
        if not self.slabs:
            raise RuleValidationError("slab table cannot be empty", rule_id, "slabs")

        slabs: list[Slab] = []
        previous: Decimal | None = None
        for index, slab in enumerate(self.slabs):
            upto = slab.upto_amount
            if upto is not None:
                try:
                    upto = Decimal(str(upto))
                except DecimalException:
                    raise RuleValidationError(
                        f"slab {index} bound {slab.upto_amount!r} is not a number",
                        rule_id,
                        "slabs",
                    ) from None
                if upto.is_infinite() and upto > 0:
                    upto = None
                elif not upto.is_finite():
                    raise RuleValidationError(
                        f"slab {index} has an invalid bound", rule_id, "slabs"
                    )
            if upto is None and index != len(self.slabs) - 1:
                raise RuleValidationError(
                    f"only the last slab may be unbounded (slab {index})",
                    rule_id,
                    "slabs",
                )
            if upto is not None and previous is not None and upto <= previous:
                raise RuleValidationError(
                    f"slab bounds must be strictly ascending: {upto} after {previous}",
                    rule_id,
                    "slabs",
                )
            previous = upto
            slabs.append(
                Slab(
                    upto_amount=upto,
                    value=_decimal(slab.value, rule_id, "slabs"),
                    is_percentage=bool(slab.is_percentage),
                )
            )

        return SlabConfig(
            slabs=tuple(slabs),
            base=_variable_name(self.base, rule_id, "base"),
        )


@dataclass(frozen=True)
class FormulaConfig:
    """An expression in the restricted formula language."""

    expression: str
    variables: tuple[str, ...] = ()

    rule_type = RuleType.FORMULA

    def validate(
        self, rule_id: UUID | None, parser: ExpressionParser | None = None
    ) -> FormulaConfig:
        if not isinstance(self.expression, str):
            raise RuleValidationError("expression must be text", rule_id, "expression")
        try:
            parsed = (parser or ExpressionParser()).parse(self.expression)
        except ParseError as e:
            raise RuleValidationError(
                f"invalid formula: {e}", rule_id, "expression"
            ) from e
        return FormulaConfig(expression=self.expression, variables=parsed.variables)

    def parse(self, parser: ExpressionParser | None = None) -> Expression:
        return (parser or ExpressionParser()).parse(self.expression)


RuleConfig = Union[PercentageConfig, FixedConfig, SlabConfig, FormulaConfig]

CONFIG_TYPES: dict[RuleType, type] = {
    RuleType.PERCENTAGE: PercentageConfig,
    RuleType.FIXED: FixedConfig,
    RuleType.SLAB: SlabConfig,
    RuleType.FORMULA: FormulaConfig,
}


# === Rules ===


@dataclass(frozen=True)
class CalculationRule:
    """A calculation rule as read from the rule store.

    Lower `priority` wins. `company_id=None` marks a system default that
    applies to every company. The validity window is inclusive on both
    ends; `effective_to=None` is open-ended.
    """

    rule_id: UUID
    company_id: UUID | None
    name: str
    component_code: str
    component_type: ComponentType
    rule_type: RuleType
    config: RuleConfig
    priority: int = 100
    effective_from: date = date.min
    effective_to: date | None = None
    is_active: bool = True
    is_system: bool = False
    conditions: tuple[RuleCondition, ...] = ()
    description: str | None = None
    parser: ExpressionParser | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        rule_id = self.rule_id

        try:
            component_type = ComponentType(self.component_type)
        except ValueError:
            raise RuleValidationError(
                f"unknown component type '{self.component_type}'", rule_id, "component_type"
            ) from None
        try:
            rule_type = RuleType(self.rule_type)
        except ValueError:
            raise RuleValidationError(
                f"unknown rule type '{self.rule_type}'", rule_id, "rule_type"
            ) from None
        object.__setattr__(self, "component_type", component_type)
        object.__setattr__(self, "rule_type", rule_type)

        code = (self.component_code or "").strip().lower()
        if not code:
            raise RuleValidationError("component_code is required", rule_id, "component_code")
        object.__setattr__(self, "component_code", code)

        expected = CONFIG_TYPES[rule_type]
        if not isinstance(self.config, expected):
            raise RuleValidationError(
                f"{rule_type.value} rule carries a {type(self.config).__name__}, "
                f"expected {expected.__name__}",
                rule_id,
                "config",
            )
        if isinstance(self.config, FormulaConfig):
            config = self.config.validate(rule_id, self.parser)
        else:
            config = self.config.validate(rule_id)
        object.__setattr__(self, "config", config)

        if isinstance(self.priority, bool) or not isinstance(self.priority, int):
            raise RuleValidationError("priority must be an integer", rule_id, "priority")

        if self.effective_to is not None and self.effective_from > self.effective_to:
            raise RuleValidationError(
                f"effective_from {self.effective_from} is after "
                f"effective_to {self.effective_to}",
                rule_id,
                "effective_to",
            )

        object.__setattr__(self, "conditions", tuple(self.conditions))

    @property
    def is_system_default(self) -> bool:
        return self.company_id is SYSTEM_COMPANY_ID

    def is_effective_on(self, as_of_date: date) -> bool:
        """Check if the validity window includes a date."""
        if self.effective_from > as_of_date:
            return False
        if self.effective_to is not None and self.effective_to < as_of_date:
            return False
        return True

    def applies_to(self, context: FactContext | None) -> bool:
        """Check conditions; conditional rules never apply without a context."""
        if not self.conditions:
            return True
        if context is None:
            return False
        return conditions_match(self.conditions, context)

    def overlaps(self, other: CalculationRule) -> bool:
        """Check if two validity windows share at least one day."""
        self_end = self.effective_to or date.max
        other_end = other.effective_to or date.max
        return self.effective_from <= other_end and other.effective_from <= self_end

    def describe(self) -> str:
        return f"{self.component_code} via rule '{self.name}' (priority {self.priority})"


class RuleSet:
    """Immutable snapshot of the rules used by one payroll run.

    Two active rules in the same scope, for the same component, with the
    same priority, start date and conditions and overlapping windows can
    never be told apart; such a snapshot is rejected.
    """

    def __init__(self, rules: Iterable[CalculationRule]):
        self._rules: tuple[CalculationRule, ...] = tuple(rules)
        by_component: dict[str, list[CalculationRule]] = defaultdict(list)
        for rule in self._rules:
            by_component[rule.component_code].append(rule)
        self._by_component = {k: tuple(v) for k, v in by_component.items()}
        self._check_duplicates()

    def __iter__(self) -> Iterator[CalculationRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    @property
    def component_codes(self) -> list[str]:
        return sorted(self._by_component)

    def for_component(self, component_code: str) -> tuple[CalculationRule, ...]:
        return self._by_component.get(component_code.lower(), ())

    def get(self, rule_id: UUID) -> CalculationRule | None:
        return next((r for r in self._rules if r.rule_id == rule_id), None)

    def _check_duplicates(self) -> None:
        seen_ids: set[UUID] = set()
        for rule in self._rules:
            if rule.rule_id in seen_ids:
                raise RuleValidationError("duplicate rule id in snapshot", rule.rule_id)
            seen_ids.add(rule.rule_id)

        for rules in self._by_component.values():
            active = [r for r in rules if r.is_active]
            for i, first in enumerate(active):
                for second in active[i + 1:]:
                    if (
                        first.company_id == second.company_id
                        and first.priority == second.priority
                        and first.effective_from == second.effective_from
                        and condition_signature(first.conditions)
                        == condition_signature(second.conditions)
                        and first.overlaps(second)
                    ):
                        raise RuleValidationError(
                            f"rules {first.rule_id} and {second.rule_id} share "
                            f"priority {first.priority} for '{first.component_code}' "
                            f"with overlapping validity",
                            second.rule_id,
                            "priority",
                        )
