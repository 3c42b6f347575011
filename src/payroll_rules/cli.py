"""Rule engine command line interface.

Provides operator tools for:
- Formula validation
- Rule preview against a fact file
- Component evaluation against a rule file
- Listing built-in templates and formula variables

Usage:
    python -m payroll_rules validate "MIN(basic + da, 15000) * 12 / 100"
    python -m payroll_rules preview --rules rules.json --rule-id X --facts facts.json
    python -m payroll_rules evaluate --rules rules.json --facts facts.json --date 2024-04-30
    python -m payroll_rules templates
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable
from uuid import UUID

from payroll_rules.calculators.engine import ComponentEvaluator
from payroll_rules.calculators.errors import RuleEngineError
from payroll_rules.calculators.expression import validate_formula
from payroll_rules.calculators.templates import (
    FORMULA_VARIABLES,
    RULE_TEMPLATES,
    known_variable_codes,
)
from payroll_rules.calculators.types import (
    ComponentFailure,
    ComponentOutcome,
    EvaluationResult,
    FactContext,
)
from payroll_rules.config import Settings, get_settings
from payroll_rules.schemas import rule_set_from_records

logger = logging.getLogger(__name__)


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def load_json(path: Path) -> Any:
    with path.open(encoding="utf-8") as f:
        return json.load(f)


def load_rule_records(path: Path) -> list[dict[str, Any]]:
    """Rule files hold a list of records or {"rules": [...]}."""
    data = load_json(path)
    if isinstance(data, dict):
        data = data.get("rules", [])
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of rule records")
    return data


def load_facts(path: Path) -> FactContext:
    """Fact files hold {"values": {...}, "attributes": {...}} or a flat object.

    In a flat object, numbers and numeric strings are facts and any other
    string is an attribute.
    """
    data = load_json(path)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object of facts")
    if "values" in data or "attributes" in data:
        return FactContext(data.get("values"), data.get("attributes"))

    values: dict[str, Any] = {}
    attributes: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, bool) or value is None:
            attributes[key] = value
        elif isinstance(value, (int, float)):
            values[key] = value
        else:
            try:
                values[key] = Decimal(str(value))
            except InvalidOperation:
                attributes[key] = value
    return FactContext(values, attributes)


def outcome_to_dict(outcome: ComponentOutcome) -> dict[str, Any]:
    """JSON-friendly view of a component outcome."""
    if isinstance(outcome, EvaluationResult):
        return {
            "status": "ok",
            "component_code": outcome.component_code,
            "component_type": outcome.component_type.value,
            "amount": str(outcome.amount),
            "rule_id": str(outcome.fired_rule_id),
            "rule_name": outcome.rule_name,
            "priority": outcome.priority,
            "calculation_id": str(outcome.calculation_id),
            "trace": list(outcome.trace),
        }
    if isinstance(outcome, ComponentFailure):
        return {
            "status": "error",
            "component_code": outcome.component_code,
            "error_type": outcome.error_type,
            "message": outcome.message,
            "rule_id": str(outcome.rule_id) if outcome.rule_id else None,
        }
    return {
        "status": "not_applicable",
        "component_code": outcome.component_code,
        "reason": outcome.reason,
    }


class RuleCli:
    """Rule engine Command Line Interface."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m payroll_rules",
            description="Payroll calculation rule tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # validate command
        validate = subparsers.add_parser("validate", help="Validate a formula")
        validate.add_argument("expression", help="Formula text")
        validate.add_argument(
            "--known-variables",
            nargs="*",
            help="Allowed variable names (default: built-in catalog)",
        )
        validate.add_argument(
            "--any-variable",
            action="store_true",
            help="Do not check variable names against a catalog",
        )

        # preview command
        preview = subparsers.add_parser(
            "preview",
            help="Evaluate one rule from a rule file, skipping resolution",
        )
        preview.add_argument("--rules", type=Path, required=True, help="Rule records JSON file")
        preview.add_argument("--rule-id", type=parse_uuid, required=True, help="Rule to evaluate")
        preview.add_argument("--facts", type=Path, required=True, help="Facts JSON file")
        preview.add_argument("--date", type=parse_date, help="Effective date (ISO format)")

        # evaluate command
        evaluate = subparsers.add_parser(
            "evaluate",
            help="Resolve and evaluate components for one employee",
        )
        evaluate.add_argument("--rules", type=Path, required=True, help="Rule records JSON file")
        evaluate.add_argument("--facts", type=Path, required=True, help="Facts JSON file")
        evaluate.add_argument(
            "--component",
            action="append",
            help="Component code (repeatable; default: every component in the file)",
        )
        evaluate.add_argument(
            "--date",
            type=parse_date,
            required=True,
            help="Effective date (ISO format)",
        )
        evaluate.add_argument(
            "--company",
            type=parse_uuid,
            help="Company ID (default: system rules only)",
        )

        # templates command
        templates = subparsers.add_parser(
            "templates",
            help="List rule templates and formula variables",
        )
        templates.add_argument(
            "--variables",
            action="store_true",
            help="List formula variables instead of templates",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[..., int]] = {
            "validate": self._cmd_validate,
            "preview": self._cmd_preview,
            "evaluate": self._cmd_evaluate,
            "templates": self._cmd_templates,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return handler(parsed)
        except (RuleEngineError, ValueError, OSError) as e:
            logger.error("%s failed: %s", parsed.command, e)
            self._emit({"status": "error", "error_type": type(e).__name__, "message": str(e)})
            return 1

    def _emit(self, payload: Any) -> None:
        print(json.dumps(payload, indent=2, default=str))

    def _cmd_validate(self, args: argparse.Namespace) -> int:
        """Validate a formula."""
        if args.any_variable:
            known = None
        elif args.known_variables is not None:
            known = args.known_variables
        else:
            known = known_variable_codes()

        result = validate_formula(args.expression, known_variables=known, settings=self.settings)
        self._emit(asdict(result))
        return 0 if result.is_valid else 1

    def _cmd_preview(self, args: argparse.Namespace) -> int:
        """Evaluate one rule without resolution."""
        rule_set = rule_set_from_records(load_rule_records(args.rules))
        rule = rule_set.get(args.rule_id)
        if rule is None:
            raise ValueError(f"Rule {args.rule_id} not found in {args.rules}")

        evaluator = ComponentEvaluator(rule_set, settings=self.settings)
        result = evaluator.preview(rule, load_facts(args.facts), args.date)
        self._emit(outcome_to_dict(result))
        return 0

    def _cmd_evaluate(self, args: argparse.Namespace) -> int:
        """Resolve and evaluate components."""
        rule_set = rule_set_from_records(load_rule_records(args.rules))
        context = load_facts(args.facts)
        evaluator = ComponentEvaluator(rule_set, settings=self.settings)

        evaluation = evaluator.evaluate_employee(
            args.company, args.date, employee_id=None, context=context, component_codes=args.component
        )
        self._emit(
            {
                "effective_date": args.date.isoformat(),
                "company_id": str(args.company) if args.company else None,
                "components": [outcome_to_dict(o) for o in evaluation.outcomes.values()],
                "errors": evaluation.errors,
            }
        )
        return 0 if evaluation.success else 1

    def _cmd_templates(self, args: argparse.Namespace) -> int:
        """List templates or variables."""
        if args.variables:
            self._emit([asdict(v) for v in FORMULA_VARIABLES])
            return 0

        self._emit(
            [
                {
                    "key": t.key,
                    "name": t.name,
                    "category": t.category,
                    "component_code": t.component_code,
                    "component_type": t.component_type.value,
                    "rule_type": t.rule_type.value,
                    "config": asdict(t.config),
                }
                for t in RULE_TEMPLATES
            ]
        )
        return 0


def main() -> int:
    """CLI entry point."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    cli = RuleCli(settings)
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
