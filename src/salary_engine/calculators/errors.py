"""Evaluation error types.

Every failure aborts the whole evaluation. Callers receive exactly one
error describing the first failure, with the offending target, the rule
that produced it (when known) and the underlying cause.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from salary_engine.calculators.types import Rule


class EvaluationError(Exception):
    """Base class for all rule evaluation failures."""

    def __init__(
        self,
        message: str,
        target: str | None = None,
        rule: Rule | None = None,
        cause: BaseException | None = None,
    ):
        self.target = target
        self.rule = rule
        self.cause = cause
        super().__init__(message)


class DuplicateActiveRuleError(EvaluationError):
    """Raised when two rules for the same target are active on one date."""

    def __init__(self, target: str, on_date: date, rules: Iterable[Rule]):
        self.on_date = on_date
        self.rules = tuple(rules)
        super().__init__(
            f"{len(self.rules)} rules for target '{target}' are active on {on_date}",
            target=target,
            rule=self.rules[0] if self.rules else None,
        )


class UnresolvedDependencyError(EvaluationError):
    """Raised when a rule reads a name that is neither a component nor an input."""

    def __init__(self, target: str, name: str, rule: Rule | None = None, reason: str = ""):
        self.name = name
        message = f"Component '{target}' references unresolved name '{name}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, target=target, rule=rule)


class CyclicDependencyError(EvaluationError):
    """Raised when active components depend on each other in a cycle."""

    def __init__(self, members: Iterable[str]):
        self.members = tuple(members)
        super().__init__(
            f"Cyclic dependency detected involving: {', '.join(self.members)}",
            target=self.members[0] if self.members else None,
        )


class LookupFailureError(EvaluationError):
    """Raised when a table lookup for a component fails."""

    def __init__(
        self,
        target: str,
        table_name: str,
        rule: Rule | None = None,
        cause: BaseException | None = None,
    ):
        self.table_name = table_name
        super().__init__(
            f"Table lookup '{table_name}' failed for component '{target}': {cause}",
            target=target,
            rule=rule,
            cause=cause,
        )


class ExpressionEvaluationError(EvaluationError):
    """Raised when an expression is malformed or cannot be computed."""

    def __init__(
        self,
        message: str,
        target: str | None = None,
        rule: Rule | None = None,
        cause: BaseException | None = None,
    ):
        if target is not None:
            message = f"Component '{target}': {message}"
        super().__init__(message, target=target, rule=rule, cause=cause)
