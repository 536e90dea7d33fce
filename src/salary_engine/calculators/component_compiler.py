"""Compiles declarative salary components into rules."""

from __future__ import annotations

from decimal import Decimal
from typing import Collection, Mapping, Sequence

from salary_engine.calculators.expressions import (
    BinaryOp,
    ComponentRef,
    Expr,
    InputRef,
    Literal,
    sum_of,
)
from salary_engine.calculators.types import (
    META_CONTRIBUTION_GROUP,
    META_LABEL,
    META_TAXABLE,
    Rule,
    RuleSet,
    SalaryComponent,
    as_decimal,
)

HUNDRED = Decimal("100")


def compile_component(
    component: SalaryComponent,
    component_names: Collection[str],
    percentage_override: Decimal | None = None,
) -> Rule:
    """Compile one component into a rule.

    A fixed amount becomes a constant with no dependencies. A percentage
    becomes ``(dep1 + dep2 + ...) * (percentage / 100)``; dependencies
    naming another component read that component, all others read the
    context input of the same name.

    Args:
        component: The component definition
        component_names: Names of all components compiled together
        percentage_override: Replaces the component's percentage
    """
    meta = {
        META_LABEL: component.name,
        META_TAXABLE: "true" if component.taxable else "false",
    }
    if component.contribution_group:
        meta[META_CONTRIBUTION_GROUP] = component.contribution_group

    expression: Expr
    if component.fixed_amount is not None:
        expression = Literal(as_decimal(component.fixed_amount))
        depends_on: tuple[str, ...] = ()
    else:
        percentage = (
            percentage_override if percentage_override is not None else component.percentage
        )
        terms: list[Expr] = [
            ComponentRef(dep) if dep in component_names else InputRef(dep)
            for dep in component.depends_on
        ]
        expression = BinaryOp(
            "*",
            sum_of(terms),
            BinaryOp("/", Literal(as_decimal(percentage)), Literal(HUNDRED)),
        )
        depends_on = component.depends_on

    return Rule(
        target=component.name,
        expression=expression,
        depends_on=depends_on,
        effective_from=component.effective_from,
        effective_to=component.effective_to,
        meta=meta,
    )


def compile_components(
    components: Sequence[SalaryComponent],
    rule_set_id: str = "components",
    tenant_id: str | None = None,
    percentage_overrides: Mapping[str, Decimal] | None = None,
) -> RuleSet:
    """Compile a salary structure into a rule set, keeping declaration order.

    Raises:
        ValueError: If an override names an unknown or fixed-amount component
    """
    overrides = {name: as_decimal(value) for name, value in (percentage_overrides or {}).items()}
    by_name = {component.name: component for component in components}

    for name in overrides:
        if name not in by_name:
            raise ValueError(f"Percentage override for unknown component '{name}'")
        if by_name[name].fixed_amount is not None:
            raise ValueError(f"Component '{name}' has a fixed amount, not a percentage")

    names = set(by_name)
    rules = tuple(
        compile_component(component, names, overrides.get(component.name))
        for component in components
    )
    return RuleSet(id=rule_set_id, rules=rules, tenant_id=tenant_id)
