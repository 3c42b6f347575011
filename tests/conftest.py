"""Pytest fixtures for rule engine tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from payroll_rules.calculators.engine import ComponentEvaluator
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
from payroll_rules.config import Settings
from payroll_rules.models import Base

# In-memory SQLite shared by every connection of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

PERIOD_END = date(2024, 4, 30)


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the developer's environment."""
    return Settings(database_url=TEST_DATABASE_URL)


@pytest.fixture
def company_id() -> UUID:
    return UUID("7b0a1f5e-0000-4000-8000-000000000001")


@pytest.fixture
def make_rule() -> Callable[..., CalculationRule]:
    """Factory for rules with sensible defaults; config picks the rule type."""

    def factory(
        config: Any = None,
        component_code: str = "pf_employee",
        component_type: ComponentType = ComponentType.DEDUCTION,
        company_id: UUID | None = None,
        priority: int = 100,
        effective_from: date = date(2024, 1, 1),
        effective_to: date | None = None,
        name: str | None = None,
        **kwargs: Any,
    ) -> CalculationRule:
        config = config or FormulaConfig("MIN(basic + da, 15000) * 12 / 100")
        return CalculationRule(
            rule_id=kwargs.pop("rule_id", None) or uuid4(),
            company_id=company_id,
            name=name or f"{component_code} p{priority}",
            component_code=component_code,
            component_type=component_type,
            rule_type=config.rule_type,
            config=config,
            priority=priority,
            effective_from=effective_from,
            effective_to=effective_to,
            **kwargs,
        )

    return factory


@pytest.fixture
def statutory_rules(make_rule) -> list[CalculationRule]:
    """System defaults for a typical Indian payroll."""
    return [
        make_rule(
            FormulaConfig("MIN(basic + da, 15000) * 12 / 100"),
            component_code="pf_employee",
            priority=10,
            name="PF Employee",
        ),
        make_rule(
            FormulaConfig("IF(gross <= 21000, gross * 0.75 / 100, 0)"),
            component_code="esi_employee",
            priority=20,
            name="ESI Employee",
        ),
        make_rule(
            SlabConfig(
                slabs=(Slab(Decimal("25000"), Decimal("0")), Slab(None, Decimal("200"))),
                base="gross",
            ),
            component_code="pt",
            priority=30,
            name="Professional Tax",
        ),
        make_rule(
            PercentageConfig(Decimal("50"), "basic"),
            component_code="hra",
            component_type=ComponentType.EARNING,
            priority=50,
            name="HRA",
        ),
        make_rule(
            FixedConfig(Decimal("1600"), pro_rata=True),
            component_code="conveyance",
            component_type=ComponentType.EARNING,
            priority=60,
            name="Conveyance",
        ),
        make_rule(
            FormulaConfig("basic * lop_days / working_days"),
            component_code="lop",
            priority=70,
            name="Loss of Pay",
        ),
    ]


@pytest.fixture
def rule_set(statutory_rules) -> RuleSet:
    return RuleSet(statutory_rules)


@pytest.fixture
def evaluator(rule_set, settings) -> ComponentEvaluator:
    return ComponentEvaluator(rule_set, settings=settings)


@pytest.fixture
def employee_facts() -> FactContext:
    return FactContext(
        {
            "basic": Decimal("10000"),
            "da": Decimal("5000"),
            "gross": Decimal("21000"),
            "lop_days": 2,
            "working_days": 30,
            "payable_days": 28,
        },
        {"department": "Engineering", "location": "Bengaluru"},
    )


# === Rule store ===


@pytest.fixture
async def engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()
