"""Pydantic schemas for rule definitions, table rows and employee inputs."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from salary_engine.calculators.component_compiler import compile_component
from salary_engine.calculators.expressions import Expr, from_json
from salary_engine.calculators.table_service import InMemoryTableService
from salary_engine.calculators.types import EvalContext, Rule, RuleSet, SalaryComponent

# Reserved input names filled from EmployeeInput fields
INPUT_BASE = "Base"
INPUT_HOURS = "HOURS"
INPUT_RATE = "RATE"


# ============================================================================
# Rule definitions
# ============================================================================


class RuleDefinition(BaseModel):
    """Stored form of one rule: the minimal schema the engine depends on."""

    model_config = ConfigDict(extra="forbid")

    target: str = Field(min_length=1)
    expression: Any
    depends_on: list[str] = Field(default_factory=list)
    effective_from: date
    effective_to: date | None = None
    meta: dict[str, str] = Field(default_factory=dict)

    @field_validator("expression")
    @classmethod
    def _check_expression(cls, value: Any) -> Any:
        try:
            from_json(value)
        except TypeError as e:
            raise ValueError(str(e)) from e
        return value

    @model_validator(mode="after")
    def _check_dates(self) -> RuleDefinition:
        if self.effective_to is not None and self.effective_to < self.effective_from:
            raise ValueError("effective_to must not be before effective_from")
        return self

    def parsed_expression(self) -> Expr:
        return from_json(self.expression)

    def to_rule(self) -> Rule:
        return Rule(
            target=self.target,
            expression=self.parsed_expression(),
            depends_on=tuple(self.depends_on),
            effective_from=self.effective_from,
            effective_to=self.effective_to,
            meta=dict(self.meta),
        )


class SalaryComponentDefinition(BaseModel):
    """Stored form of a percentage or fixed-amount salary component."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    depends_on: list[str] = Field(default_factory=list)
    percentage: Decimal | None = None
    fixed_amount: Decimal | None = None
    contribution_group: str | None = None
    taxable: bool = False
    effective_from: date | None = None
    effective_to: date | None = None

    @model_validator(mode="after")
    def _check_amount(self) -> SalaryComponentDefinition:
        if self.percentage is None and self.fixed_amount is None:
            raise ValueError("either percentage or fixed_amount is required")
        return self

    def to_component(self) -> SalaryComponent:
        return SalaryComponent(
            name=self.name,
            depends_on=tuple(self.depends_on),
            percentage=self.percentage,
            fixed_amount=self.fixed_amount,
            contribution_group=self.contribution_group,
            taxable=self.taxable,
            effective_from=self.effective_from,
            effective_to=self.effective_to,
        )


class RuleSetDefinition(BaseModel):
    """A tenant's rule set: explicit rules plus components compiled to rules.

    Compiled components come first, in file order, followed by the rules.
    """

    id: str = Field(min_length=1)
    tenant_id: str | None = None
    components: list[SalaryComponentDefinition] = Field(default_factory=list)
    rules: list[RuleDefinition] = Field(default_factory=list)

    def to_rule_set(self, percentage_overrides: dict[str, Decimal] | None = None) -> RuleSet:
        """Build the rule set.

        Raises:
            ValueError: If an override names an unknown or fixed-amount component
        """
        overrides = percentage_overrides or {}
        components = {c.name: c.to_component() for c in self.components}
        for name in overrides:
            if name not in components or components[name].fixed_amount is not None:
                raise ValueError(f"No percentage component named '{name}' to override")

        names = set(components) | {r.target for r in self.rules}
        rules = [
            compile_component(component, names, overrides.get(name))
            for name, component in components.items()
        ]
        rules.extend(r.to_rule() for r in self.rules)
        return RuleSet(id=self.id, rules=tuple(rules), tenant_id=self.tenant_id)


# ============================================================================
# Lookup tables
# ============================================================================


class TableRowDefinition(BaseModel):
    """One keyed lookup value for a component's table."""

    component: str
    table: str
    keys: list[Any] = Field(default_factory=list)
    value: Decimal
    effective_start: date
    effective_end: date | None = None


class TablesDefinition(BaseModel):
    tenant_id: str
    rows: list[TableRowDefinition] = Field(default_factory=list)

    def to_table_service(self) -> InMemoryTableService:
        service = InMemoryTableService()
        for row in self.rows:
            service.add_row(
                self.tenant_id,
                row.component,
                row.table,
                row.keys,
                row.value,
                row.effective_start,
                row.effective_end,
            )
        return service


# ============================================================================
# Employee inputs
# ============================================================================


class EmployeeInput(BaseModel):
    """Employee values feeding one evaluation."""

    id: str | None = None
    base: Decimal | None = None
    hours: Decimal | None = None
    rate: Decimal | None = None
    extra: dict[str, Decimal] = Field(default_factory=dict)

    def to_inputs(self) -> dict[str, Decimal]:
        """Map fields to named inputs; ``extra`` values win over reserved names."""
        inputs: dict[str, Decimal] = {}
        if self.base is not None:
            inputs[INPUT_BASE] = self.base
        if self.hours is not None:
            inputs[INPUT_HOURS] = self.hours
        if self.rate is not None:
            inputs[INPUT_RATE] = self.rate
        inputs.update(self.extra)
        return inputs


class EvaluationRequest(BaseModel):
    """Request to evaluate one employee for a period."""

    tenant_id: str = ""
    period_start: date | None = None
    employee: EmployeeInput

    def to_eval_context(self, today: date | None = None) -> EvalContext:
        """Build the evaluation context; the date defaults to today."""
        as_of_date = self.period_start or today or date.today()
        return EvalContext(self.employee.to_inputs(), as_of_date, self.tenant_id)


class SimulationRequest(EvaluationRequest):
    """Request to compare an employee's salary against overridden inputs."""

    overrides: dict[str, Decimal] = Field(default_factory=dict)
    percentage_overrides: dict[str, Decimal] = Field(default_factory=dict)
