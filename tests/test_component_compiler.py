"""Unit tests for compiling salary components into rules."""

from datetime import date
from decimal import Decimal

import pytest

from salary_engine.calculators.component_compiler import compile_component, compile_components
from salary_engine.calculators.engine import RuleEngine
from salary_engine.calculators.expressions import Literal, render
from salary_engine.calculators.types import EvalContext, SalaryComponent


class TestCompileComponent:
    """Test the generated rule for one component."""

    def test_fixed_amount(self):
        rule = compile_component(SalaryComponent("Meal", fixed_amount=Decimal("50")), {"Meal"})

        assert rule.expression == Literal(Decimal("50"))
        assert rule.depends_on == ()
        assert not rule.taxable

    def test_percentage_reads_components_and_inputs(self):
        component = SalaryComponent(
            "Pension",
            depends_on=("Base", "Bonus"),
            percentage=Decimal("5"),
            contribution_group="pension",
        )

        rule = compile_component(component, {"Bonus", "Pension"})

        assert render(rule.expression) == "((#{Base} + ${Bonus}) * (5 / 100))"
        assert rule.depends_on == ("Base", "Bonus")
        assert rule.contribution_group == "pension"
        assert rule.label == "Pension"

    def test_percentage_override(self):
        component = SalaryComponent("Bonus", depends_on=("Base",), percentage=Decimal("10"))

        rule = compile_component(component, {"Bonus"}, percentage_override=Decimal("12.5"))

        assert render(rule.expression) == "(#{Base} * (12.5 / 100))"

    def test_effective_dates_carried_over(self):
        component = SalaryComponent(
            "Meal",
            fixed_amount=Decimal("50"),
            effective_from=date(2025, 1, 1),
            effective_to=date(2025, 12, 31),
            taxable=True,
        )

        rule = compile_component(component, {"Meal"})

        assert rule.effective_from == date(2025, 1, 1)
        assert rule.effective_to == date(2025, 12, 31)
        assert rule.taxable

    def test_component_needs_an_amount(self):
        with pytest.raises(ValueError, match="percentage or a fixed amount"):
            SalaryComponent("Empty")


class TestCompileComponents:
    """Test compiling a whole salary structure."""

    @pytest.fixture
    def components(self) -> list[SalaryComponent]:
        return [
            SalaryComponent("Bonus", depends_on=("Base",), percentage=Decimal("10")),
            SalaryComponent("Pension", depends_on=("Base", "Bonus"), percentage=Decimal("5")),
            SalaryComponent("Meal", fixed_amount=Decimal("50")),
        ]

    def test_keeps_declaration_order(self, components):
        rule_set = compile_components(components, "structure", tenant_id="acme")

        assert [r.target for r in rule_set.rules] == ["Bonus", "Pension", "Meal"]
        assert rule_set.tenant == "acme"

    def test_override_for_unknown_component(self, components):
        with pytest.raises(ValueError, match="unknown component 'Tax'"):
            compile_components(components, percentage_overrides={"Tax": 10})

    def test_override_for_fixed_component(self, components):
        with pytest.raises(ValueError, match="fixed amount"):
            compile_components(components, percentage_overrides={"Meal": 10})

    @pytest.mark.asyncio
    async def test_compiled_structure_evaluates(self, components):
        rule_set = compile_components(components)
        engine = RuleEngine(engine_version="1.0.0-test")

        result = await engine.evaluate_rule_set(
            rule_set, EvalContext({"Base": 3000}, date(2025, 1, 31))
        )

        assert result.amounts == {
            "Bonus": Decimal("300"),
            "Pension": Decimal("165"),
            "Meal": Decimal("50"),
        }
        assert result.total == Decimal("515")
