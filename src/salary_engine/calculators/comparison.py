"""Original-vs-simulated salary comparison."""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping

from salary_engine.calculators.engine import RuleEngine, RulePredicate
from salary_engine.calculators.types import (
    ZERO,
    EvalContext,
    EvaluationResult,
    Rule,
    RuleSet,
    StructuredSalaryResult,
)
from salary_engine.config import ComparisonConfig

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


class SalaryComparator:
    """Runs the engine on original and simulated inputs and diffs the runs.

    Both evaluations run concurrently and must both succeed; if either
    fails the comparison fails with that error (the original run's error
    wins when both fail).

    Aggregation policy comes from ComparisonConfig:
    - Contribution totals sum simulated components per contribution group
    - Taxable salary sums components whose rule is flagged taxable
    - Total tax sums components classified as tax (by group or target)
    """

    def __init__(self, engine: RuleEngine, config: ComparisonConfig | None = None):
        self.engine = engine
        self.config = config or ComparisonConfig()

    def is_tax(self, rule: Rule) -> bool:
        """Check if a rule produces a tax component."""
        if rule.target in self.config.tax_targets:
            return True
        group = rule.contribution_group
        return group is not None and group in self.config.tax_groups

    async def compare(
        self,
        rule_set: RuleSet,
        original_inputs: Mapping[str, Any],
        overrides: Mapping[str, Any],
        as_of_date: date,
    ) -> StructuredSalaryResult:
        """Compare the original inputs against the same inputs with overrides.

        Inputs not named in ``overrides`` keep their original values.
        """
        original = EvalContext(original_inputs, as_of_date, rule_set.tenant)
        simulated = original.with_overrides(overrides)
        return await self._compare(rule_set, original, rule_set, simulated)

    async def compare_rule_sets(
        self,
        original_rules: RuleSet,
        simulated_rules: RuleSet,
        inputs: Mapping[str, Any],
        as_of_date: date,
    ) -> StructuredSalaryResult:
        """Compare two versions of a rule set on the same inputs."""
        original = EvalContext(inputs, as_of_date, original_rules.tenant)
        simulated = EvalContext(inputs, as_of_date, simulated_rules.tenant)
        return await self._compare(original_rules, original, simulated_rules, simulated)

    async def _compare(
        self,
        original_rules: RuleSet,
        original_context: EvalContext,
        simulated_rules: RuleSet,
        simulated_context: EvalContext,
    ) -> StructuredSalaryResult:
        include_in_total = self._total_filter()
        outcomes = await asyncio.gather(
            self.engine.evaluate_rule_set(
                original_rules, original_context, include_in_total=include_in_total
            ),
            self.engine.evaluate_rule_set(
                simulated_rules, simulated_context, include_in_total=include_in_total
            ),
            return_exceptions=True,
        )
        original, simulated = outcomes
        for outcome in (original, simulated):
            if isinstance(outcome, BaseException):
                raise outcome

        result = self.build_result(original, simulated)

        logger.info(
            "Compared salary on %s: original %s, simulated %s",
            original_context.as_of_date,
            result.original_total_salary,
            result.simulated_total_salary,
        )
        return result

    def build_result(
        self, original: EvaluationResult, simulated: EvaluationResult
    ) -> StructuredSalaryResult:
        """Aggregate two finished evaluations into a comparison."""
        contribution_totals = self._contribution_totals(simulated)

        return StructuredSalaryResult(
            original_total_salary=original.total,
            simulated_total_salary=simulated.total,
            original_breakdown=original.amounts,
            simulated_breakdown=simulated.amounts,
            delta_breakdown=self._delta(original.amounts, simulated.amounts),
            contribution_totals=contribution_totals,
            original_taxable_salary=self._taxable_total(original),
            simulated_taxable_salary=self._taxable_total(simulated),
            original_total_tax=self._tax_total(original),
            simulated_total_tax=self._tax_total(simulated),
            contribution_amounts=self._contribution_amounts(contribution_totals),
        )

    def _total_filter(self) -> RulePredicate | None:
        if not self.config.exclude_tax_from_total:
            return None
        return lambda rule: not self.is_tax(rule)

    @staticmethod
    def _delta(
        original: Mapping[str, Decimal], simulated: Mapping[str, Decimal]
    ) -> dict[str, Decimal]:
        """Simulated minus original per component; a missing side counts as zero."""
        names = list(dict.fromkeys([*original, *simulated]))
        return {name: simulated.get(name, ZERO) - original.get(name, ZERO) for name in names}

    @staticmethod
    def _contribution_totals(result: EvaluationResult) -> dict[str, Decimal]:
        totals: dict[str, Decimal] = {}
        for component in result.components.values():
            group = component.rule.contribution_group
            if group is None:
                continue
            totals[group] = totals.get(group, ZERO) + component.amount
        return totals

    def _contribution_amounts(self, totals: Mapping[str, Decimal]) -> dict[str, Decimal]:
        return {
            group: (total * self.config.group_rates[group]).quantize(CENTS, rounding=ROUND_HALF_UP)
            for group, total in totals.items()
            if group in self.config.group_rates
        }

    @staticmethod
    def _taxable_total(result: EvaluationResult) -> Decimal:
        return sum(
            (c.amount for c in result.components.values() if c.rule.taxable),
            ZERO,
        )

    def _tax_total(self, result: EvaluationResult) -> Decimal:
        return sum(
            (c.amount for c in result.components.values() if self.is_tax(c.rule)),
            ZERO,
        )
