"""Rule store - loads immutable rule snapshots for payroll runs."""

from __future__ import annotations

import logging
from datetime import date
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payroll_rules.calculators.expression import ExpressionParser
from payroll_rules.calculators.rules import RuleSet
from payroll_rules.config import Settings, get_settings
from payroll_rules.models import CalculationRuleRow
from payroll_rules.schemas import CalculationRuleRecord

logger = logging.getLogger(__name__)


class RuleStore:
    """Read side of the calculation rule tables.

    A run loads its snapshot once and evaluates every employee against
    it; the store never writes.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.parser = ExpressionParser.from_settings(settings or get_settings())

    async def get_rows(
        self,
        company_id: UUID | None,
        as_of: date | None = None,
    ) -> list[CalculationRuleRow]:
        """Load active system and company rows with their conditions."""
        scope = CalculationRuleRow.company_id.is_(None)
        if company_id is not None:
            scope = or_(scope, CalculationRuleRow.company_id == company_id)

        query = (
            select(CalculationRuleRow)
            .where(CalculationRuleRow.is_active.is_(True), scope)
            .options(selectinload(CalculationRuleRow.conditions))
            .order_by(
                CalculationRuleRow.component_code,
                CalculationRuleRow.priority,
                CalculationRuleRow.effective_from,
            )
        )
        if as_of is not None:
            query = query.where(
                CalculationRuleRow.effective_from <= as_of,
                or_(
                    CalculationRuleRow.effective_to.is_(None),
                    CalculationRuleRow.effective_to >= as_of,
                ),
            )

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def load_rule_set(
        self,
        company_id: UUID | None,
        as_of: date | None = None,
    ) -> RuleSet:
        """Build the snapshot for a company (system defaults included).

        Raises:
            RuleValidationError: if any stored row is invalid
        """
        rows = await self.get_rows(company_id, as_of)
        rules = [CalculationRuleRecord.parse_rule(row, self.parser) for row in rows]
        rule_set = RuleSet(rules)
        logger.debug(
            "Loaded %d rule(s) for company %s as of %s", len(rule_set), company_id, as_of
        )
        return rule_set
