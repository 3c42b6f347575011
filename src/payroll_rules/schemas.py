"""Pydantic schemas for stored rule records and their formula_config JSON."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import asdict
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from payroll_rules.calculators.conditions import ConditionOperator, RuleCondition
from payroll_rules.calculators.errors import RuleValidationError
from payroll_rules.calculators.expression import ExpressionParser
from payroll_rules.calculators.rules import (
    CalculationRule,
    FixedConfig,
    FormulaConfig,
    PercentageConfig,
    RuleConfig,
    RuleSet,
    Slab,
    SlabConfig,
)
from payroll_rules.calculators.types import ComponentType, RuleType

_UNBOUNDED = {"infinity", "inf", "+infinity", "+inf", "unbounded"}


# ============================================================================
# formula_config shapes, one per rule type
# ============================================================================


class PercentageConfigSchema(BaseModel):
    """{"percentage": 12, "base": "basic", "ceiling": 15000}; also {"rate", "of"}."""

    model_config = ConfigDict(extra="forbid")

    percentage: Decimal = Field(validation_alias=AliasChoices("percentage", "rate"))
    base: str = Field(validation_alias=AliasChoices("base", "of"))
    ceiling: Decimal | None = None

    def to_config(self) -> PercentageConfig:
        return PercentageConfig(self.percentage, self.base, self.ceiling)


class FixedConfigSchema(BaseModel):
    """{"amount": 1600, "pro_rata": true}."""

    model_config = ConfigDict(extra="forbid")

    amount: Decimal
    pro_rata: bool = Field(default=False, validation_alias=AliasChoices("pro_rata", "proRata"))

    def to_config(self) -> FixedConfig:
        return FixedConfig(self.amount, self.pro_rata)


class SlabSchema(BaseModel):
    """One slab. Lower bounds (`min`) are implied by the previous slab and ignored."""

    model_config = ConfigDict(extra="ignore")

    upto_amount: Decimal | None = Field(
        default=None,
        validation_alias=AliasChoices("upto_amount", "uptoAmount", "max"),
    )
    value: Decimal
    is_percentage: bool = Field(
        default=False,
        validation_alias=AliasChoices("is_percentage", "isPercentage"),
    )

    @field_validator("upto_amount", mode="before")
    @classmethod
    def _unbounded(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() in _UNBOUNDED:
            return None
        if isinstance(value, float) and value == float("inf"):
            return None
        return value


class SlabConfigSchema(BaseModel):
    """{"base": "gross_earnings", "slabs": [{"upto_amount": 25000, "value": 0}, ...]}."""

    model_config = ConfigDict(extra="forbid")

    slabs: list[SlabSchema]
    base: str = Field(default="gross_earnings", validation_alias=AliasChoices("base", "of"))

    def to_config(self) -> SlabConfig:
        return SlabConfig(
            slabs=tuple(Slab(s.upto_amount, s.value, s.is_percentage) for s in self.slabs),
            base=self.base,
        )


class FormulaConfigSchema(BaseModel):
    """{"expression": "MIN(basic * 0.12, 1800)", "variables": ["basic"]}."""

    model_config = ConfigDict(extra="forbid")

    expression: str
    variables: list[str] = Field(default_factory=list)

    def to_config(self) -> FormulaConfig:
        return FormulaConfig(self.expression, tuple(self.variables))


CONFIG_SCHEMAS: dict[RuleType, type[BaseModel]] = {
    RuleType.PERCENTAGE: PercentageConfigSchema,
    RuleType.FIXED: FixedConfigSchema,
    RuleType.SLAB: SlabConfigSchema,
    RuleType.FORMULA: FormulaConfigSchema,
}


# ============================================================================
# Rule records
# ============================================================================


class RuleConditionSchema(BaseModel):
    """Stored condition row."""

    model_config = ConfigDict(from_attributes=True)

    field: str
    operator: ConditionOperator
    value: Any
    condition_group: int = Field(
        default=1, validation_alias=AliasChoices("condition_group", "group")
    )

    def to_condition(self) -> RuleCondition:
        return RuleCondition(self.field, self.operator, self.value, self.condition_group)


class CalculationRuleRecord(BaseModel):
    """A rule as stored: flat columns plus an untyped formula_config."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: UUID | None = None
    name: str
    description: str | None = None
    component_type: ComponentType
    component_code: str
    rule_type: RuleType
    formula_config: dict[str, Any]
    priority: int = 100
    effective_from: date
    effective_to: date | None = None
    is_active: bool = True
    is_system: bool = False
    conditions: list[RuleConditionSchema] = Field(default_factory=list)

    def parse_config(self) -> RuleConfig:
        """Validate formula_config against the shape its rule type requires."""
        schema = CONFIG_SCHEMAS[self.rule_type]
        try:
            return schema.model_validate(self.formula_config).to_config()
        except ValidationError as e:
            raise RuleValidationError(
                f"formula_config does not match rule type '{self.rule_type.value}': "
                f"{_summarize(e)}",
                self.id,
                "formula_config",
            ) from e

    def to_rule(self, parser: ExpressionParser | None = None) -> CalculationRule:
        """Build the validated domain rule.

        Raises:
            RuleValidationError: on any inconsistency
        """
        return CalculationRule(
            rule_id=self.id,
            company_id=self.company_id,
            name=self.name,
            description=self.description,
            component_code=self.component_code,
            component_type=self.component_type,
            rule_type=self.rule_type,
            config=self.parse_config(),
            priority=self.priority,
            effective_from=self.effective_from,
            effective_to=self.effective_to,
            is_active=self.is_active,
            is_system=self.is_system,
            conditions=tuple(c.to_condition() for c in self.conditions),
            parser=parser,
        )

    @classmethod
    def parse_rule(
        cls, data: Mapping[str, Any] | Any, parser: ExpressionParser | None = None
    ) -> CalculationRule:
        """Validate a raw record (dict or ORM row) into a rule."""
        try:
            record = cls.model_validate(data)
        except ValidationError as e:
            rule_id = data.get("id") if isinstance(data, Mapping) else getattr(data, "id", None)
            raise RuleValidationError(f"invalid rule record: {_summarize(e)}", rule_id) from e
        return record.to_rule(parser)


def rule_set_from_records(
    records: Iterable[Mapping[str, Any] | Any],
    parser: ExpressionParser | None = None,
) -> RuleSet:
    """Build a snapshot from raw records, failing on the first bad one."""
    return RuleSet(CalculationRuleRecord.parse_rule(r, parser) for r in records)


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "record"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def dump_config(config: RuleConfig) -> dict[str, Any]:
    """Serialize a rule config to its stored formula_config JSON."""
    schema = CONFIG_SCHEMAS[config.rule_type]
    return schema.model_validate(asdict(config)).model_dump(mode="json")
