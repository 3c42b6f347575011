"""Component evaluation engine - main orchestrator."""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, DecimalException
from typing import Any
from uuid import UUID

from payroll_rules.calculators.cache import ExpressionCache
from payroll_rules.calculators.errors import (
    DivisionByZeroError,
    EvalError,
    RuleEngineError,
    TypeMismatchError,
    UnknownVariableError,
)
from payroll_rules.calculators.expression import ExpressionEvaluator
from payroll_rules.calculators.rule_resolver import RuleResolver
from payroll_rules.calculators.rules import (
    CalculationRule,
    FixedConfig,
    FormulaConfig,
    PercentageConfig,
    RuleSet,
    SlabConfig,
)
from payroll_rules.calculators.slab_resolver import SlabResolver
from payroll_rules.calculators.types import (
    CalculationStep,
    ComponentFailure,
    ComponentOutcome,
    EmployeeEvaluation,
    EvaluationResult,
    FactContext,
    NotApplicable,
    PayrollRunEvaluation,
)
from payroll_rules.config import Settings, get_settings

logger = logging.getLogger(__name__)


class ComponentEvaluator:
    """Evaluates salary components against an immutable rule snapshot.

    Pipeline per component:
    1) Resolve the winning rule (scope, priority, validity, conditions)
    2) No rule -> NotApplicable
    3) Dispatch by rule type: fixed, percentage, slab, formula
    4) Round to paise (half up) and attach the firing rule and trace

    Evaluation and resolution errors are returned as ComponentFailure so
    one bad rule or one employee's missing fact never stops a run.

    The evaluator holds no mutable state besides the expression cache,
    which tolerates concurrent use; a run may fan out across threads.
    """

    def __init__(
        self,
        rule_set: RuleSet,
        cache: ExpressionCache | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings if settings is not None else get_settings()
        self.rule_set = rule_set
        self.resolver = RuleResolver(rule_set)
        self.slab_resolver = SlabResolver()
        self.expression_evaluator = ExpressionEvaluator()
        self.cache = cache if cache is not None else ExpressionCache.from_settings(self.settings)

    def evaluate(
        self,
        company_id: UUID | None,
        component_code: str,
        effective_date: date,
        context: FactContext,
    ) -> ComponentOutcome:
        """Evaluate one component for one employee and period."""
        try:
            rule = self.resolver.resolve(company_id, component_code, effective_date, context)
        except RuleEngineError as e:
            logger.warning("Resolution failed for %s: %s", component_code, e)
            return ComponentFailure(component_code=component_code, error=e)

        if rule is None:
            return NotApplicable(
                component_code=component_code,
                reason=f"No applicable rule for '{component_code}' on {effective_date}",
            )

        try:
            return self._apply_rule(rule, context, effective_date)
        except RuleEngineError as e:
            logger.warning(
                "Component %s failed under rule %s (%s): %s",
                component_code,
                rule.rule_id,
                rule.name,
                e,
            )
            return ComponentFailure(component_code=component_code, error=e, rule_id=rule.rule_id)

    def preview(
        self,
        rule: CalculationRule,
        context: FactContext,
        effective_date: date | None = None,
    ) -> EvaluationResult:
        """Evaluate a single rule without resolution, e.g. from the rule editor.

        Raises:
            EvalError: if the rule cannot be evaluated for the context
        """
        return self._apply_rule(rule, context, effective_date or rule.effective_from)

    def evaluate_employee(
        self,
        company_id: UUID | None,
        effective_date: date,
        employee_id: Any,
        context: FactContext,
        component_codes: Iterable[str] | None = None,
    ) -> EmployeeEvaluation:
        """Evaluate every requested component for one employee."""
        codes = list(component_codes) if component_codes is not None else self.rule_set.component_codes
        evaluation = EmployeeEvaluation(employee_id=employee_id)

        for code in codes:
            try:
                evaluation.outcomes[code] = self.evaluate(company_id, code, effective_date, context)
            except Exception as e:
                # Catch unexpected errors so the rest of the run proceeds
                logger.exception(
                    "Unexpected error evaluating %s for employee %s", code, employee_id
                )
                evaluation.errors.append(f"{code}: Unexpected error: {e}")

        return evaluation

    def evaluate_run(
        self,
        company_id: UUID | None,
        effective_date: date,
        employees: Mapping[Any, FactContext],
        component_codes: Iterable[str] | None = None,
        max_workers: int = 1,
    ) -> PayrollRunEvaluation:
        """Evaluate components for all employees of a run.

        Results keep the input order of `employees` regardless of
        `max_workers`.
        """
        codes = list(component_codes) if component_codes is not None else self.rule_set.component_codes

        def run_one(item: tuple[Any, FactContext]) -> EmployeeEvaluation:
            employee_id, context = item
            return self.evaluate_employee(company_id, effective_date, employee_id, context, codes)

        items = list(employees.items())
        if max_workers > 1 and len(items) > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                evaluations = list(pool.map(run_one, items))
        else:
            evaluations = [run_one(item) for item in items]

        results = {e.employee_id: e for e in evaluations}
        error_count = sum(1 for e in evaluations if not e.success)
        if error_count:
            logger.warning(
                "Run for company %s on %s: %d of %d employee(s) have component errors",
                company_id,
                effective_date,
                error_count,
                len(evaluations),
            )

        return PayrollRunEvaluation(results=results, error_count=error_count)

    # === Rule dispatch ===

    def _apply_rule(
        self,
        rule: CalculationRule,
        context: FactContext,
        effective_date: date,
    ) -> EvaluationResult:
        config = rule.config
        try:
            if isinstance(config, FixedConfig):
                raw, steps = self._evaluate_fixed(config, context)
            elif isinstance(config, PercentageConfig):
                raw, steps = self._evaluate_percentage(config, context)
            elif isinstance(config, SlabConfig):
                raw, steps = self._evaluate_slab(config, context)
            else:
                raw, steps = self._evaluate_formula(config, context)
            amount = self.round_amount(raw)
        except DecimalException as e:
            raise EvalError(f"Arithmetic error: {type(e).__name__}") from e
        if not amount.is_finite():
            raise TypeMismatchError(f"Rule produced a non-finite amount: {raw}")

        steps.append(
            CalculationStep(
                description="Final result",
                expression=f"ROUND({raw}, {-self.settings.amount_precision.as_tuple().exponent})",
                value=amount,
            )
        )

        trace = [rule.describe()]
        trace.extend(f"{s.description}: {s.expression} = {s.value}" for s in steps)

        return EvaluationResult(
            component_code=rule.component_code,
            component_type=rule.component_type,
            amount=amount,
            fired_rule_id=rule.rule_id,
            rule_name=rule.name,
            priority=rule.priority,
            calculation_id=self._generate_calculation_id(rule, effective_date, context),
            trace=tuple(trace),
            steps=tuple(steps),
        )

    def round_amount(self, amount: Decimal) -> Decimal:
        """Round a monetary amount half up to the configured precision."""
        return amount.quantize(self.settings.amount_precision, rounding=ROUND_HALF_UP)

    def _evaluate_fixed(
        self, config: FixedConfig, context: FactContext
    ) -> tuple[Decimal, list[CalculationStep]]:
        steps = [CalculationStep("Fixed amount", str(config.amount), config.amount)]
        if not config.pro_rata:
            return config.amount, steps

        payable_days = self._lookup(context, "payable_days")
        working_days = self._lookup(context, "working_days")
        if working_days == 0:
            raise DivisionByZeroError("/")

        prorated = config.amount * payable_days / working_days
        steps.append(
            CalculationStep(
                "Pro-rate for payable days",
                f"{config.amount} * {payable_days} / {working_days}",
                prorated,
            )
        )
        return prorated, steps

    def _evaluate_percentage(
        self, config: PercentageConfig, context: FactContext
    ) -> tuple[Decimal, list[CalculationStep]]:
        base = self._lookup(context, config.base)
        steps = [CalculationStep(f"Get {config.base}", config.base, base)]

        if config.ceiling is not None:
            capped = min(base, config.ceiling)
            steps.append(
                CalculationStep(
                    f"Apply ceiling of {config.ceiling}",
                    f"MIN({base}, {config.ceiling})",
                    capped,
                )
            )
            base = capped

        result = base * config.percentage / 100
        steps.append(
            CalculationStep(
                f"Calculate {config.percentage}% of {base}",
                f"{base} * {config.percentage} / 100",
                result,
            )
        )
        return result, steps

    def _evaluate_slab(
        self, config: SlabConfig, context: FactContext
    ) -> tuple[Decimal, list[CalculationStep]]:
        value = self._lookup(context, config.base)
        amount, slab = self.slab_resolver.resolve(config, value)
        return amount, [
            CalculationStep(f"Get {config.base} for slab lookup", config.base, value),
            CalculationStep(
                f"Matched {self.slab_resolver.describe(slab)}",
                f"{value} * {slab.value} / 100" if slab.is_percentage else str(slab.value),
                amount,
            ),
        ]

    def _evaluate_formula(
        self, config: FormulaConfig, context: FactContext
    ) -> tuple[Decimal, list[CalculationStep]]:
        expression = self.cache.get(config.expression)
        result = self.expression_evaluator.evaluate(expression, context)
        inputs = ", ".join(f"{name}={context[name]}" for name in expression.variables if name in context)
        return result, [
            CalculationStep(
                f"Formula ({inputs})" if inputs else "Formula",
                config.expression,
                result,
            )
        ]

    @staticmethod
    def _lookup(context: FactContext, name: str) -> Decimal:
        try:
            return context[name]
        except KeyError:
            raise UnknownVariableError(name) from None

    def _generate_calculation_id(
        self,
        rule: CalculationRule,
        effective_date: date,
        context: FactContext,
    ) -> UUID:
        """Generate deterministic calculation ID."""
        data = {
            "component_code": rule.component_code,
            "rule_id": str(rule.rule_id),
            "effective_date": str(effective_date),
            "engine_version": self.settings.engine_version,
            "facts_fingerprint": context.fingerprint(),
        }
        json_str = json.dumps(data, sort_keys=True)
        hash_bytes = hashlib.sha256(json_str.encode()).digest()
        return UUID(bytes=hash_bytes[:16])
