#!/usr/bin/env python
"""Raise simulation example - library-first demonstration.

This example shows how to use the salary engine as a library:
1. Declare a salary structure as components plus explicit rules
2. Load a lookup table into the in-memory table service
3. Evaluate one employee
4. Compare a 10% raise and a bonus percentage change against today

Usage:
    python main.py
    python main.py --base 4200 --grade 2 --raise-percent 5
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import date
from decimal import Decimal

from salary_engine.calculators import (
    EvalContext,
    EvaluationError,
    InMemoryTableService,
    Rule,
    RuleEngine,
    RuleSet,
    SalaryComparator,
    SalaryComponent,
    compile_components,
)
from salary_engine.calculators.expressions import inp, tbl
from salary_engine.config import ComparisonConfig

TENANT = "demo"
STRUCTURE_START = date(2025, 1, 1)

COMPONENTS = [
    SalaryComponent("Bonus", depends_on=("Base",), percentage=Decimal("10"), taxable=True),
    SalaryComponent(
        "Pension",
        depends_on=("Base", "Bonus"),
        percentage=Decimal("5"),
        contribution_group="pension",
    ),
    SalaryComponent(
        "IncomeTax",
        depends_on=("Base", "Bonus"),
        percentage=Decimal("20"),
        contribution_group="tax",
    ),
    SalaryComponent("Meal", fixed_amount=Decimal("50")),
]


def build_rule_set(bonus_percent: Decimal | None = None) -> RuleSet:
    """Components compiled to rules, plus the hand-written Base and Allowance."""
    overrides = {"Bonus": bonus_percent} if bonus_percent is not None else None
    compiled = compile_components(COMPONENTS, "demo", TENANT, overrides)
    explicit = (
        Rule("Base", inp("Base"), effective_from=STRUCTURE_START, meta={"taxable": "true"}),
        Rule(
            "Allowance",
            tbl("grade_allowance", inp("GRADE")),
            effective_from=STRUCTURE_START,
            meta={"taxable": "true"},
        ),
    )
    return RuleSet(id=compiled.id, rules=explicit + compiled.rules, tenant_id=TENANT)


def build_tables() -> InMemoryTableService:
    tables = InMemoryTableService()
    for grade, amount in ((1, "150"), (2, "250"), (3, "400")):
        tables.add_row(TENANT, "Allowance", "grade_allowance", [grade], amount, STRUCTURE_START)
    return tables


def print_breakdown(title: str, amounts: dict[str, Decimal]) -> None:
    print(f"\n{title}")
    for name, amount in amounts.items():
        print(f"  {name:<12} {amount:>12.2f}")


async def run(base: Decimal, grade: int, raise_percent: Decimal, bonus_percent: Decimal) -> None:
    engine = RuleEngine(build_tables(), engine_version="example")
    comparator = SalaryComparator(
        engine,
        ComparisonConfig(group_rates={"pension": Decimal("0.135")}),
    )
    rule_set = build_rule_set()
    inputs = {"Base": base, "GRADE": grade}
    today = date.today()

    result = await engine.evaluate_rule_set(rule_set, EvalContext(inputs, today))
    print_breakdown("Current salary", result.amounts)
    print(f"  {'total':<12} {result.total:>12.2f}")
    print(f"\nBonus trace:\n{result.components['Bonus'].explain()}")

    raised = base * (1 + raise_percent / 100)
    comparison = await comparator.compare(rule_set, inputs, {"Base": raised}, today)
    print_breakdown(f"Delta for a {raise_percent}% raise", dict(comparison.delta_breakdown))
    print(f"  {'taxable':<12} {comparison.simulated_taxable_salary:>12.2f}")
    print(f"  {'tax':<12} {comparison.simulated_total_tax:>12.2f}")

    restructured = await comparator.compare_rule_sets(
        rule_set, build_rule_set(bonus_percent), inputs, today
    )
    print_breakdown(f"Delta for a {bonus_percent}% bonus", dict(restructured.delta_breakdown))
    print_breakdown("Pension contributions", dict(restructured.contribution_amounts))


def main() -> int:
    parser = argparse.ArgumentParser(description="Salary raise simulation")
    parser.add_argument("--base", type=Decimal, default=Decimal("3000"))
    parser.add_argument("--grade", type=int, default=1)
    parser.add_argument("--raise-percent", type=Decimal, default=Decimal("10"))
    parser.add_argument("--bonus-percent", type=Decimal, default=Decimal("15"))
    args = parser.parse_args()

    try:
        asyncio.run(run(args.base, args.grade, args.raise_percent, args.bonus_percent))
    except EvaluationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
