"""Type definitions for the rule evaluation pipeline."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Mapping
from uuid import UUID

from salary_engine.calculators.errors import DuplicateActiveRuleError

if TYPE_CHECKING:
    from salary_engine.calculators.expressions import Expr

ZERO = Decimal("0")

# Rule metadata keys read by the comparison layer
META_CONTRIBUTION_GROUP = "contribution_group"
META_TAXABLE = "taxable"
META_LABEL = "label"

_TRUE_VALUES = frozenset({"true", "1", "yes", "y"})


def as_decimal(value: Any) -> Decimal:
    """Convert an input value to a finite Decimal without going through float."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        result = Decimal(int(value))
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation as e:
            raise ValueError(f"Not a decimal value: {value!r}") from e
    else:
        raise TypeError(f"Cannot convert {type(value).__name__} to Decimal")
    if not result.is_finite():
        raise ValueError(f"Not a finite decimal value: {value!r}")
    return result


def format_decimal(value: Decimal) -> str:
    """Plain (non-scientific) string for a decimal amount."""
    return format(value, "f")


@dataclass(frozen=True)
class Rule:
    """Date-effective definition of one salary component."""

    target: str
    expression: Expr
    depends_on: tuple[str, ...] = ()
    effective_from: date | None = None  # None = active since forever
    effective_to: date | None = None  # None = still active
    meta: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "depends_on", tuple(self.depends_on))
        if (
            self.effective_from is not None
            and self.effective_to is not None
            and self.effective_to < self.effective_from
        ):
            raise ValueError(
                f"Rule '{self.target}' ends ({self.effective_to}) "
                f"before it starts ({self.effective_from})"
            )

    def is_active_on(self, as_of_date: date) -> bool:
        """Check if rule is active on a given date (both bounds inclusive)."""
        if self.effective_from is not None and self.effective_from > as_of_date:
            return False
        if self.effective_to is not None and self.effective_to < as_of_date:
            return False
        return True

    def overlaps(self, other: Rule) -> bool:
        """Check if two rules share at least one active date."""
        starts_before_other_ends = (
            self.effective_from is None
            or other.effective_to is None
            or self.effective_from <= other.effective_to
        )
        other_starts_before_end = (
            other.effective_from is None
            or self.effective_to is None
            or other.effective_from <= self.effective_to
        )
        return starts_before_other_ends and other_starts_before_end

    @property
    def contribution_group(self) -> str | None:
        return self.meta.get(META_CONTRIBUTION_GROUP) or None

    @property
    def taxable(self) -> bool:
        return str(self.meta.get(META_TAXABLE, "")).strip().lower() in _TRUE_VALUES

    @property
    def label(self) -> str:
        return self.meta.get(META_LABEL) or self.target

    def to_canonical_dict(self) -> dict[str, Any]:
        """Return canonical dict for hashing (deterministic ordering)."""
        from salary_engine.calculators.expressions import render

        return {
            "target": self.target,
            "expression": render(self.expression),
            "depends_on": sorted(self.depends_on),
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
            "effective_to": self.effective_to.isoformat() if self.effective_to else None,
            "meta": dict(sorted(self.meta.items())),
        }


@dataclass(frozen=True)
class RuleSet:
    """Ordered collection of rules for one tenant/version.

    Order of ``rules`` only matters for deterministic iteration: it breaks
    ties between independent components during evaluation.
    """

    id: str
    rules: tuple[Rule, ...]
    tenant_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "rules", tuple(self.rules))

    @property
    def tenant(self) -> str:
        return self.tenant_id if self.tenant_id is not None else self.id

    def active_rule_index(self, as_of_date: date) -> dict[str, Rule]:
        """Map each target to the single rule active on ``as_of_date``.

        Raises:
            DuplicateActiveRuleError: If two rules for one target are both active
        """
        active: dict[str, list[Rule]] = defaultdict(list)
        for rule in self.rules:
            if rule.is_active_on(as_of_date):
                active[rule.target].append(rule)

        index: dict[str, Rule] = {}
        for target, rules in active.items():
            if len(rules) > 1:
                raise DuplicateActiveRuleError(target, as_of_date, rules)
            index[target] = rules[0]
        return index

    def declaration_order(self) -> dict[str, int]:
        """Position of each target's first rule in the rule set."""
        order: dict[str, int] = {}
        for position, rule in enumerate(self.rules):
            order.setdefault(rule.target, position)
        return order

    def validate(self) -> None:
        """Check that no two rules for the same target ever overlap.

        Raises:
            DuplicateActiveRuleError: For the first overlapping pair, dated at
                the first day both rules are active
        """
        by_target: dict[str, list[Rule]] = defaultdict(list)
        for rule in self.rules:
            by_target[rule.target].append(rule)

        for target, rules in by_target.items():
            for i, first in enumerate(rules):
                for second in rules[i + 1 :]:
                    if first.overlaps(second):
                        starts = [d for d in (first.effective_from, second.effective_from) if d]
                        overlap_start = max(starts) if starts else date.min
                        raise DuplicateActiveRuleError(target, overlap_start, (first, second))


@dataclass(frozen=True)
class EvalContext:
    """Inputs and date for one evaluation."""

    inputs: Mapping[str, Decimal]
    as_of_date: date
    tenant_id: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "inputs", {name: as_decimal(value) for name, value in self.inputs.items()}
        )

    def with_overrides(self, overrides: Mapping[str, Any]) -> EvalContext:
        """Copy of this context with some inputs replaced or added."""
        merged = dict(self.inputs)
        merged.update({name: as_decimal(value) for name, value in overrides.items()})
        return EvalContext(inputs=merged, as_of_date=self.as_of_date, tenant_id=self.tenant_id)


@dataclass(frozen=True)
class ComponentResult:
    """One computed component with its provenance."""

    name: str
    amount: Decimal
    rule: Rule
    trace: tuple[str, ...] = ()

    def explain(self) -> str:
        lines = [f"{self.name}:"]
        lines.extend(f"  {step}" for step in self.trace)
        return "\n".join(lines)


@dataclass(frozen=True)
class EvaluationResult:
    """Components computed for one context, in evaluation order."""

    components: Mapping[str, ComponentResult]
    total: Decimal
    as_of_date: date
    calculation_id: UUID
    inputs_fingerprint: str
    rules_fingerprint: str

    @property
    def amounts(self) -> dict[str, Decimal]:
        return {name: result.amount for name, result in self.components.items()}

    @property
    def order(self) -> list[str]:
        return list(self.components)

    def amount(self, target: str) -> Decimal:
        return self.components[target].amount


@dataclass(frozen=True)
class BulkEvaluationResult:
    """Result of evaluating several employees against one rule set."""

    results: Mapping[str, EvaluationResult]  # employee key -> result
    totals_by_component: Mapping[str, Decimal]
    grand_total: Decimal


@dataclass(frozen=True)
class SalaryComponent:
    """Declarative component definition compiled into a Rule.

    Exactly one of ``percentage`` (of the sum of ``depends_on``) or
    ``fixed_amount`` is set.
    """

    name: str
    depends_on: tuple[str, ...] = ()
    percentage: Decimal | None = None
    fixed_amount: Decimal | None = None
    contribution_group: str | None = None
    taxable: bool = False
    effective_from: date | None = None
    effective_to: date | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "depends_on", tuple(self.depends_on))
        if self.percentage is None and self.fixed_amount is None:
            raise ValueError(f"Component '{self.name}' needs a percentage or a fixed amount")


@dataclass(frozen=True)
class StructuredSalaryResult:
    """Original vs. simulated comparison of two evaluations."""

    original_total_salary: Decimal
    simulated_total_salary: Decimal
    original_breakdown: Mapping[str, Decimal]
    simulated_breakdown: Mapping[str, Decimal]
    delta_breakdown: Mapping[str, Decimal]
    contribution_totals: Mapping[str, Decimal]
    original_taxable_salary: Decimal
    simulated_taxable_salary: Decimal
    original_total_tax: Decimal
    simulated_total_tax: Decimal
    contribution_amounts: Mapping[str, Decimal] = field(default_factory=dict)

    @property
    def total_delta(self) -> Decimal:
        return self.simulated_total_salary - self.original_total_salary

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation with amounts as plain strings."""

        def amounts(values: Mapping[str, Decimal]) -> dict[str, str]:
            return {name: format_decimal(value) for name, value in values.items()}

        return {
            "original_total_salary": format_decimal(self.original_total_salary),
            "simulated_total_salary": format_decimal(self.simulated_total_salary),
            "original_breakdown": amounts(self.original_breakdown),
            "simulated_breakdown": amounts(self.simulated_breakdown),
            "delta_breakdown": amounts(self.delta_breakdown),
            "contribution_totals": amounts(self.contribution_totals),
            "contribution_amounts": amounts(self.contribution_amounts),
            "original_taxable_salary": format_decimal(self.original_taxable_salary),
            "simulated_taxable_salary": format_decimal(self.simulated_taxable_salary),
            "original_total_tax": format_decimal(self.original_total_tax),
            "simulated_total_tax": format_decimal(self.simulated_total_tax),
        }
