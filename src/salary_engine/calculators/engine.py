"""Rule evaluation engine - main orchestrator."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, Mapping
from uuid import UUID

from salary_engine.calculators.dependency_resolver import DependencyResolver
from salary_engine.calculators.errors import (
    DuplicateActiveRuleError,
    EvaluationError,
    ExpressionEvaluationError,
    LookupFailureError,
    UnresolvedDependencyError,
)
from salary_engine.calculators.expressions import Value, evaluate, to_amount
from salary_engine.calculators.table_service import TableService
from salary_engine.calculators.types import (
    ZERO,
    BulkEvaluationResult,
    ComponentResult,
    EvalContext,
    EvaluationResult,
    Rule,
    RuleSet,
    format_decimal,
)
from salary_engine.config import get_settings

logger = logging.getLogger(__name__)

RulePredicate = Callable[[Rule], bool]


class _ComponentScope:
    """Symbol table for one component's expression.

    Reads only components computed earlier in the same evaluation, context
    inputs and the table service. Every resolved value is recorded in the
    component's trace.
    """

    def __init__(
        self,
        target: str,
        rule: Rule,
        values: Mapping[str, Decimal],
        context: EvalContext,
        table_service: TableService | None,
        trace: list[str],
    ):
        self.target = target
        self.rule = rule
        self.values = values
        self.context = context
        self.table_service = table_service
        self.trace = trace

    def component(self, name: str) -> Decimal:
        if name not in self.values:
            raise UnresolvedDependencyError(
                self.target, name, self.rule, reason="component has not been computed"
            )
        value = self.values[name]
        self.trace.append(f"{name} = {format_decimal(value)}")
        return value

    def input(self, name: str) -> Decimal:
        if name not in self.context.inputs:
            raise UnresolvedDependencyError(self.target, name, self.rule, reason="no such input")
        value = self.context.inputs[name]
        self.trace.append(f"{name} = {format_decimal(value)} (input)")
        return value

    async def lookup(self, table: str, keys: list[Value], on_date: date | None) -> Decimal:
        lookup_date = on_date or self.context.as_of_date
        if self.table_service is None:
            raise LookupFailureError(
                self.target,
                table,
                self.rule,
                cause=RuntimeError("no table service configured"),
            )
        try:
            value = await self.table_service.lookup(
                self.context.tenant_id, self.target, table, keys, lookup_date
            )
        except Exception as e:
            raise LookupFailureError(self.target, table, self.rule, cause=e) from e
        shown = "".join(f", {k}" for k in keys)
        self.trace.append(f'TBL("{table}"{shown}) on {lookup_date} = {value}')
        return value


class RuleEngine:
    """Evaluates active rules in dependency order.

    Evaluation pipeline (one context):
    1) Validate references and build the dependency graph
    2) Order components topologically, ties by declaration order
    3) Evaluate each expression against earlier components, inputs and tables
    4) Sum the total over all components (or a caller-selected subset)
    5) Fingerprint inputs and rules into a deterministic calculation id

    Any failure aborts the whole evaluation; no partial result is returned.
    """

    def __init__(
        self,
        table_service: TableService | None = None,
        engine_version: str | None = None,
    ):
        self.table_service = table_service
        self.resolver = DependencyResolver()
        self.engine_version = engine_version or get_settings().engine_version

    async def evaluate(
        self,
        active_rules: Mapping[str, Rule],
        context: EvalContext,
        table_service: TableService | None = None,
        *,
        declaration_order: Mapping[str, int] | None = None,
        include_in_total: RulePredicate | None = None,
    ) -> EvaluationResult:
        """Evaluate every active rule for one context.

        Args:
            active_rules: Target -> rule active on ``context.as_of_date``
            context: Inputs, date and tenant for this evaluation
            table_service: Lookup capability; defaults to the engine's own
            declaration_order: Tie-break rank per target
            include_in_total: Selects the rules counted in ``total``; all
                rules count when omitted

        Raises:
            EvaluationError: Any subclass, for the first failure encountered
        """
        tables = table_service if table_service is not None else self.table_service

        try:
            order = self.resolver.order(active_rules, context.inputs.keys(), declaration_order)

            values: dict[str, Decimal] = {}
            components: dict[str, ComponentResult] = {}
            for target in order:
                rule = active_rules[target]
                components[target] = await self._evaluate_component(
                    target, rule, values, context, tables
                )
                values[target] = components[target].amount
        except EvaluationError as e:
            self._log_failure(context, e)
            raise

        total = sum(
            (
                result.amount
                for result in components.values()
                if include_in_total is None or include_in_total(result.rule)
            ),
            ZERO,
        )

        inputs_fingerprint = self._compute_inputs_fingerprint(context.inputs)
        rules_fingerprint = self._compute_rules_fingerprint(active_rules.values())
        calculation_id = self._generate_calculation_id(
            context.tenant_id,
            context.as_of_date,
            inputs_fingerprint,
            rules_fingerprint,
        )

        logger.info(
            "Evaluated %d components on %s for tenant '%s', total %s",
            len(components),
            context.as_of_date,
            context.tenant_id,
            total,
        )

        return EvaluationResult(
            components=components,
            total=total,
            as_of_date=context.as_of_date,
            calculation_id=calculation_id,
            inputs_fingerprint=inputs_fingerprint,
            rules_fingerprint=rules_fingerprint,
        )

    async def evaluate_rule_set(
        self,
        rule_set: RuleSet,
        context: EvalContext,
        *,
        include_in_total: RulePredicate | None = None,
    ) -> EvaluationResult:
        """Select the rules active on the context date and evaluate them.

        The rule set's tenant is used when the context names none.
        """
        if not context.tenant_id:
            context = EvalContext(context.inputs, context.as_of_date, rule_set.tenant)
        try:
            active_rules = rule_set.active_rule_index(context.as_of_date)
        except DuplicateActiveRuleError as e:
            self._log_failure(context, e)
            raise
        return await self.evaluate(
            active_rules,
            context,
            declaration_order=rule_set.declaration_order(),
            include_in_total=include_in_total,
        )

    async def evaluate_bulk(
        self,
        rule_set: RuleSet,
        contexts: Mapping[str, EvalContext],
    ) -> BulkEvaluationResult:
        """Evaluate several employees against one rule set.

        Evaluations run concurrently; the first failure fails the batch and
        cancels the evaluations still running.
        """
        keys = list(contexts)
        tasks = [
            asyncio.create_task(self.evaluate_rule_set(rule_set, contexts[key])) for key in keys
        ]
        try:
            outcomes = await asyncio.gather(*tasks)
        except Exception:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        results: dict[str, EvaluationResult] = {}
        totals_by_component: dict[str, Decimal] = {}
        grand_total = ZERO
        for key, result in zip(keys, outcomes):
            results[key] = result
            grand_total += result.total
            for name, component in result.components.items():
                totals_by_component[name] = totals_by_component.get(name, ZERO) + component.amount

        return BulkEvaluationResult(
            results=results,
            totals_by_component=totals_by_component,
            grand_total=grand_total,
        )

    @staticmethod
    def _log_failure(context: EvalContext, error: EvaluationError) -> None:
        logger.warning(
            "Evaluation failed on %s for tenant '%s': %s",
            context.as_of_date,
            context.tenant_id,
            error,
        )

    async def _evaluate_component(
        self,
        target: str,
        rule: Rule,
        values: Mapping[str, Decimal],
        context: EvalContext,
        table_service: TableService | None,
    ) -> ComponentResult:
        """Evaluate a single component."""
        trace: list[str] = []
        scope = _ComponentScope(target, rule, values, context, table_service, trace)

        try:
            amount = to_amount(await evaluate(rule.expression, scope))
        except ExpressionEvaluationError as e:
            if e.target is not None:
                raise
            raise ExpressionEvaluationError(str(e), target=target, rule=rule, cause=e.cause) from e

        trace.append(f"{target} = {format_decimal(amount)}")
        logger.debug("Evaluated component %s = %s", target, amount)
        return ComponentResult(name=target, amount=amount, rule=rule, trace=tuple(trace))

    def _generate_calculation_id(
        self,
        tenant_id: str,
        as_of_date: date,
        inputs_fingerprint: str,
        rules_fingerprint: str,
    ) -> UUID:
        """Generate deterministic calculation ID."""
        data = {
            "tenant_id": tenant_id,
            "as_of_date": str(as_of_date),
            "engine_version": self.engine_version,
            "inputs_fingerprint": inputs_fingerprint,
            "rules_fingerprint": rules_fingerprint,
        }
        json_str = json.dumps(data, sort_keys=True)
        hash_bytes = hashlib.sha256(json_str.encode()).digest()
        return UUID(bytes=hash_bytes[:16])

    def _compute_inputs_fingerprint(self, inputs: Mapping[str, Decimal]) -> str:
        """Compute fingerprint of all inputs used in calculation."""
        data = {name: format_decimal(value) for name, value in inputs.items()}
        json_str = json.dumps(data, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    def _compute_rules_fingerprint(self, rules: Iterable[Rule]) -> str:
        """Compute fingerprint of all rules used in calculation."""
        canonical = sorted(
            (rule.to_canonical_dict() for rule in rules), key=lambda item: item["target"]
        )
        json_str = json.dumps(canonical, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]
