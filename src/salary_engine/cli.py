"""Salary engine command line interface.

Provides tools for:
- Evaluating one employee against a rule set
- Comparing original inputs against simulated overrides
- Validating a rule set file

Usage:
    python -m salary_engine evaluate --rules rules.json --input Base=3000 --date 2025-01-31
    python -m salary_engine compare --rules rules.json --input Base=3000 --override Base=3300
    python -m salary_engine compare --rules rules.json --request simulation.json
    python -m salary_engine validate --rules rules.json --date 2025-01-31
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, TypeVar

from pydantic import ValidationError

from salary_engine.calculators.comparison import SalaryComparator
from salary_engine.calculators.dependency_resolver import DependencyResolver
from salary_engine.calculators.engine import RuleEngine
from salary_engine.calculators.errors import EvaluationError
from salary_engine.calculators.table_service import SqlTableService, TableService
from salary_engine.calculators.types import EvalContext, EvaluationResult, format_decimal
from salary_engine.config import ComparisonConfig, get_settings
from salary_engine.database import create_session_factory, get_engine
from salary_engine.schemas import (
    EmployeeInput,
    EvaluationRequest,
    RuleSetDefinition,
    SimulationRequest,
    TablesDefinition,
)

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT", bound=EvaluationRequest)


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


def parse_assignment(s: str) -> tuple[str, Decimal]:
    """Parse ``Name=123.45``."""
    name, sep, value = s.partition("=")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"Expected NAME=VALUE, got '{s}'")
    try:
        return name.strip(), Decimal(value.strip())
    except ArithmeticError as e:
        raise argparse.ArgumentTypeError(f"Not a decimal value: '{value}'") from e


def _read_json(path: Path) -> Any:
    with path.open(encoding="utf-8") as f:
        return json.load(f)


def _build_context(
    args: argparse.Namespace, request: EvaluationRequest, default_tenant: str
) -> EvalContext:
    """Request file values, overridden by command line inputs, date and tenant."""
    context = request.to_eval_context()
    return EvalContext(
        {**context.inputs, **dict(args.input)},
        args.date or context.as_of_date,
        args.tenant_id or context.tenant_id or default_tenant,
    )


def _result_to_dict(result: EvaluationResult, explain: bool) -> dict[str, Any]:
    data: dict[str, Any] = {
        "calculation_id": str(result.calculation_id),
        "as_of_date": result.as_of_date.isoformat(),
        "components": {name: format_decimal(amount) for name, amount in result.amounts.items()},
        "total": format_decimal(result.total),
    }
    if explain:
        data["trace"] = {name: list(c.trace) for name, c in result.components.items()}
    return data


class SalaryCli:
    """Salary engine command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m salary_engine",
            description="Evaluate and simulate salary rule sets",
        )
        parser.add_argument(
            "--log-level",
            type=str.upper,
            help="Logging level (defaults to LOG_LEVEL)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        evaluate = subparsers.add_parser("evaluate", help="Evaluate one employee")
        self._add_common_arguments(evaluate)
        evaluate.add_argument(
            "--explain",
            action="store_true",
            help="Include per-component traces",
        )

        compare = subparsers.add_parser(
            "compare",
            help="Compare original inputs against simulated overrides",
        )
        self._add_common_arguments(compare)
        compare.add_argument(
            "--override",
            type=parse_assignment,
            action="append",
            default=[],
            help="Simulated input value NAME=VALUE (repeatable)",
        )
        compare.add_argument(
            "--percentage-override",
            type=parse_assignment,
            action="append",
            default=[],
            help="Simulated component percentage NAME=PERCENT (repeatable)",
        )

        validate = subparsers.add_parser("validate", help="Validate a rule set file")
        validate.add_argument("--rules", type=Path, required=True, help="Rule set JSON file")
        validate.add_argument(
            "--date",
            type=parse_date,
            help="Also check dependency ordering of the rules active on this date",
        )
        validate.add_argument(
            "--input-name",
            action="append",
            default=[],
            help="Input name available to rules (repeatable)",
        )

        return parser

    @staticmethod
    def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--rules", type=Path, required=True, help="Rule set JSON file")
        parser.add_argument(
            "--input",
            type=parse_assignment,
            action="append",
            default=[],
            help="Input value NAME=VALUE (repeatable)",
        )
        parser.add_argument(
            "--request",
            type=Path,
            help="Request JSON file with employee inputs, period and tenant",
        )
        parser.add_argument(
            "--date",
            type=parse_date,
            default=None,
            help="Evaluation date (ISO format, defaults to today)",
        )
        parser.add_argument("--tenant-id", type=str, help="Tenant ID (defaults to the rule set's)")
        tables = parser.add_mutually_exclusive_group()
        tables.add_argument("--tables", type=Path, help="Lookup table rows JSON file")
        tables.add_argument(
            "--database-url",
            type=str,
            help="Read lookup tables from this database",
        )

    def run(self, args: list[str] | None = None) -> int:
        """Run CLI with arguments."""
        parsed = self.parser.parse_args(args)

        logging.basicConfig(
            level=parsed.log_level or get_settings().log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        if parsed.command is None:
            self.parser.print_help()
            return 1

        try:
            if parsed.command == "evaluate":
                return asyncio.run(self.cmd_evaluate(parsed))
            if parsed.command == "compare":
                return asyncio.run(self.cmd_compare(parsed))
            return self.cmd_validate(parsed)
        except (EvaluationError, ValidationError, ValueError, OSError) as e:
            logger.debug("Command %s failed", parsed.command, exc_info=True)
            print(f"ERROR: {e}", file=sys.stderr)
            return 1

    async def cmd_evaluate(self, args: argparse.Namespace) -> int:
        """Evaluate one employee and print the breakdown."""
        definition = RuleSetDefinition.model_validate(_read_json(args.rules))
        rule_set = definition.to_rule_set()
        request = self._load_request(args, EvaluationRequest)
        context = _build_context(args, request, rule_set.tenant)

        async with self._table_service(args) as tables:
            engine = RuleEngine(tables)
            result = await engine.evaluate_rule_set(rule_set, context)

        print(json.dumps(_result_to_dict(result, args.explain), indent=2))
        return 0

    async def cmd_compare(self, args: argparse.Namespace) -> int:
        """Compare original and simulated salary and print the result."""
        request = self._load_request(args, SimulationRequest)
        overrides = {**request.overrides, **dict(args.override)}
        percentage_overrides = {
            **request.percentage_overrides,
            **dict(args.percentage_override),
        }
        if overrides and percentage_overrides:
            raise ValueError("Use either --override or --percentage-override, not both")

        definition = RuleSetDefinition.model_validate(_read_json(args.rules))
        context = _build_context(args, request, definition.tenant_id or definition.id)
        definition = definition.model_copy(update={"tenant_id": context.tenant_id})
        original_rules = definition.to_rule_set()
        config = ComparisonConfig.from_settings(get_settings())

        async with self._table_service(args) as tables:
            comparator = SalaryComparator(RuleEngine(tables), config)
            if percentage_overrides:
                simulated_rules = definition.to_rule_set(percentage_overrides)
                result = await comparator.compare_rule_sets(
                    original_rules, simulated_rules, context.inputs, context.as_of_date
                )
            else:
                result = await comparator.compare(
                    original_rules, context.inputs, overrides, context.as_of_date
                )

        print(json.dumps(result.to_dict(), indent=2))
        return 0

    def cmd_validate(self, args: argparse.Namespace) -> int:
        """Check rule overlaps and, for a date, dependency ordering."""
        definition = RuleSetDefinition.model_validate(_read_json(args.rules))
        rule_set = definition.to_rule_set()
        rule_set.validate()
        print(f"{len(rule_set.rules)} rules, no overlapping effective ranges")

        if args.date is not None:
            active = rule_set.active_rule_index(args.date)
            order = DependencyResolver().order(
                active, args.input_name, rule_set.declaration_order()
            )
            print(f"Evaluation order on {args.date}: {', '.join(order)}")
        return 0

    @staticmethod
    def _load_request(args: argparse.Namespace, schema: type[RequestT]) -> RequestT:
        if args.request is None:
            return schema(employee=EmployeeInput())
        return schema.model_validate(_read_json(args.request))

    def _table_service(self, args: argparse.Namespace) -> _TableServiceScope:
        return _TableServiceScope(args.tables, args.database_url)


class _TableServiceScope:
    """Opens the lookup backend chosen on the command line."""

    def __init__(self, tables_path: Path | None, database_url: str | None):
        self.tables_path = tables_path
        self.database_url = database_url
        self._engine = None

    async def __aenter__(self) -> TableService | None:
        if self.tables_path is not None:
            return TablesDefinition.model_validate(_read_json(self.tables_path)).to_table_service()
        if self.database_url is not None:
            self._engine = get_engine(self.database_url)
            return SqlTableService(create_session_factory(self._engine))
        return None

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None


def main() -> int:
    """CLI entry point."""
    cli = SalaryCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
