"""Calculation rule storage models."""

from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_rules.models.base import Base, JSONType, TimestampMixin


class CalculationRuleRow(Base, TimestampMixin):
    """Stored calculation rule. `company_id IS NULL` marks a system default."""

    __tablename__ = "calculation_rules"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID | None] = mapped_column(nullable=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    component_type: Mapped[str] = mapped_column(String(30), nullable=False)
    component_code: Mapped[str] = mapped_column(String(50), nullable=False)

    rule_type: Mapped[str] = mapped_column(String(20), nullable=False)
    formula_config: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint(
            "component_type IN ('earning', 'deduction', 'employer_contribution')",
            name="calculation_rules_component_type_check",
        ),
        CheckConstraint(
            "rule_type IN ('percentage', 'fixed', 'slab', 'formula')",
            name="calculation_rules_rule_type_check",
        ),
        CheckConstraint(
            "effective_to IS NULL OR effective_to >= effective_from",
            name="calculation_rules_dates_check",
        ),
        Index("idx_calculation_rules_company", "company_id"),
        Index("idx_calculation_rules_component", "component_code"),
        Index("idx_calculation_rules_active", "company_id", "is_active", "effective_from"),
    )

    # Relationships
    conditions: Mapped[list[CalculationRuleConditionRow]] = relationship(
        back_populates="rule",
        cascade="all, delete-orphan",
        order_by="CalculationRuleConditionRow.condition_group",
    )


class CalculationRuleConditionRow(Base):
    """Condition deciding whether a rule applies to an employee."""

    __tablename__ = "calculation_rule_conditions"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    rule_id: Mapped[UUID] = mapped_column(
        ForeignKey("calculation_rules.id", ondelete="CASCADE"),
        nullable=False,
    )
    condition_group: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    field: Mapped[str] = mapped_column(String(50), nullable=False)
    operator: Mapped[str] = mapped_column(String(30), nullable=False)
    value: Mapped[Any] = mapped_column(JSONType, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "operator IN ('equals', 'not_equals', 'greater_than', 'less_than', "
            "'greater_than_or_equals', 'less_than_or_equals', 'between', 'in', "
            "'not_in', 'contains')",
            name="calculation_rule_conditions_operator_check",
        ),
        Index("idx_rule_conditions_rule", "rule_id"),
    )

    rule: Mapped[CalculationRuleRow] = relationship(back_populates="conditions")
