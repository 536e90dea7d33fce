"""Salary rule evaluation engine."""

from salary_engine.calculators.comparison import SalaryComparator
from salary_engine.calculators.component_compiler import compile_component, compile_components
from salary_engine.calculators.dependency_resolver import DependencyGraph, DependencyResolver
from salary_engine.calculators.engine import RuleEngine
from salary_engine.calculators.errors import (
    CyclicDependencyError,
    DuplicateActiveRuleError,
    EvaluationError,
    ExpressionEvaluationError,
    LookupFailureError,
    UnresolvedDependencyError,
)
from salary_engine.calculators.table_service import (
    InMemoryTableService,
    SqlTableService,
    TableLookupError,
    TableService,
)
from salary_engine.calculators.types import (
    BulkEvaluationResult,
    ComponentResult,
    EvalContext,
    EvaluationResult,
    Rule,
    RuleSet,
    SalaryComponent,
    StructuredSalaryResult,
)

__all__ = [
    "RuleEngine",
    "SalaryComparator",
    "DependencyGraph",
    "DependencyResolver",
    "compile_component",
    "compile_components",
    "InMemoryTableService",
    "SqlTableService",
    "TableLookupError",
    "TableService",
    "EvaluationError",
    "DuplicateActiveRuleError",
    "UnresolvedDependencyError",
    "CyclicDependencyError",
    "LookupFailureError",
    "ExpressionEvaluationError",
    "Rule",
    "RuleSet",
    "EvalContext",
    "ComponentResult",
    "EvaluationResult",
    "BulkEvaluationResult",
    "SalaryComponent",
    "StructuredSalaryResult",
]
