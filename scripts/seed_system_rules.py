"""Seed script for system default calculation rules.

Run with:
    python scripts/seed_system_rules.py [--effective-from 2024-04-01]

This creates one system rule per component from the built-in templates
(the first template per component by display order). Existing system
rules with the same name are left alone.
"""

from __future__ import annotations

import argparse
import asyncio
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_rules.calculators.templates import RULE_TEMPLATES, RuleTemplate
from payroll_rules.database import create_tables, get_session, init_db
from payroll_rules.models import CalculationRuleRow
from payroll_rules.schemas import dump_config


def default_templates() -> list[RuleTemplate]:
    """First template for each component code, by display order."""
    chosen: dict[str, RuleTemplate] = {}
    for template in sorted(RULE_TEMPLATES, key=lambda t: t.display_order):
        chosen.setdefault(template.component_code, template)
    return list(chosen.values())


async def seed_system_rules(session: AsyncSession, effective_from: date) -> int:
    """Insert missing system rules. Returns the number created."""
    created = 0
    for template in default_templates():
        result = await session.execute(
            select(CalculationRuleRow).where(
                CalculationRuleRow.company_id.is_(None),
                CalculationRuleRow.name == template.name,
            )
        )
        if result.scalar_one_or_none():
            print(f"{template.name} already exists, skipping...")
            continue

        rule = template.instantiate(None, effective_from=effective_from)
        session.add(
            CalculationRuleRow(
                id=rule.rule_id,
                company_id=None,
                name=rule.name,
                description=rule.description,
                component_type=rule.component_type.value,
                component_code=rule.component_code,
                rule_type=rule.rule_type.value,
                formula_config=dump_config(rule.config),
                priority=rule.priority,
                effective_from=rule.effective_from,
                is_active=True,
                is_system=True,
            )
        )
        print(f"Created {rule.describe()}")
        created += 1

    await session.flush()
    return created


async def main(effective_from: date) -> None:
    """Run all seed functions."""
    engine, _ = init_db()
    await create_tables(engine)

    async with get_session() as session:
        created = await seed_system_rules(session, effective_from)

    print(f"\nSeeding complete: {created} rule(s) created")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed system default rules")
    parser.add_argument(
        "--effective-from",
        type=date.fromisoformat,
        default=date(2024, 4, 1),
        help="Start date for the seeded rules (ISO format)",
    )
    args = parser.parse_args()
    asyncio.run(main(args.effective_from))
