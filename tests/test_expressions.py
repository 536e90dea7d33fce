"""Unit tests for the expression tree and its evaluator."""

from datetime import date
from decimal import Decimal

import pytest

from salary_engine.calculators.errors import ExpressionEvaluationError
from salary_engine.calculators.expressions import (
    BinaryOp,
    ComponentRef,
    FunctionCall,
    InputRef,
    Literal,
    TableLookup,
    UnaryOp,
    binary,
    call,
    component_refs,
    evaluate,
    from_json,
    inp,
    input_refs,
    lit,
    ref,
    render,
    sum_of,
    tbl,
    text,
    to_amount,
    to_json,
)


class FakeScope:
    """Scope over fixed dicts that records lookups."""

    def __init__(self, components=None, inputs=None, tables=None):
        self.components = components or {}
        self.inputs = inputs or {}
        self.tables = tables or {}
        self.lookups = []
        self.reads = []

    def component(self, name):
        self.reads.append(name)
        return self.components[name]

    def input(self, name):
        self.reads.append(name)
        return self.inputs[name]

    async def lookup(self, table, keys, on_date):
        self.lookups.append((table, list(keys), on_date))
        return self.tables[(table, tuple(keys))]


class TestArithmetic:
    """Test arithmetic operators."""

    @pytest.mark.asyncio
    async def test_percentage_of_component(self):
        scope = FakeScope(components={"Base": Decimal("3000")})

        result = await evaluate(ref("Base") * lit("0.10"), scope)

        assert result == Decimal("300")

    @pytest.mark.asyncio
    async def test_operators_and_power(self):
        scope = FakeScope(inputs={"HOURS": Decimal("160"), "RATE": Decimal("12.5")})

        assert await evaluate(inp("HOURS") * inp("RATE"), scope) == Decimal("2000")
        assert await evaluate(inp("HOURS") - 10, scope) == Decimal("150")
        assert await evaluate(100 - inp("HOURS"), scope) == Decimal("-60")
        assert await evaluate(inp("HOURS") / 4, scope) == Decimal("40")
        assert await evaluate(lit(2) ** 3, scope) == Decimal("8")
        assert await evaluate(-inp("RATE"), scope) == Decimal("-12.5")

    @pytest.mark.asyncio
    async def test_division_by_zero(self):
        with pytest.raises(ExpressionEvaluationError, match="Division by zero"):
            await evaluate(lit(1) / lit(0), FakeScope())

    @pytest.mark.asyncio
    async def test_text_in_arithmetic_rejected(self):
        with pytest.raises(ExpressionEvaluationError, match="expects a number"):
            await evaluate(binary("+", text("a"), lit(1)), FakeScope())

    @pytest.mark.asyncio
    async def test_boolean_counts_as_one_or_zero(self):
        assert await evaluate(binary("*", True, lit(5)), FakeScope()) == Decimal("5")


class TestConditions:
    """Test comparisons, boolean operators and IF."""

    @pytest.mark.asyncio
    async def test_comparisons(self):
        scope = FakeScope(inputs={"Base": Decimal("3000")})

        assert await evaluate(binary(">", inp("Base"), 2500), scope) is True
        assert await evaluate(binary("<=", inp("Base"), 2500), scope) is False
        assert await evaluate(binary("=", inp("Base"), lit("3000.00")), scope) is True
        assert await evaluate(binary("!=", text("a"), text("b")), scope) is True

    @pytest.mark.asyncio
    async def test_text_ordering_rejected(self):
        with pytest.raises(ExpressionEvaluationError, match="cannot compare text"):
            await evaluate(binary("<", text("a"), text("b")), FakeScope())

    @pytest.mark.asyncio
    async def test_ordering_against_nan_rejected(self):
        scope = FakeScope(components={"Odd": Decimal("NaN")})

        with pytest.raises(ExpressionEvaluationError, match="Cannot compare"):
            await evaluate(binary(">", ref("Odd"), 1), scope)

    @pytest.mark.asyncio
    async def test_and_short_circuits(self):
        scope = FakeScope()

        result = await evaluate(binary("AND", False, ref("Missing")), scope)

        assert result is False
        assert scope.reads == []

    @pytest.mark.asyncio
    async def test_if_evaluates_only_selected_branch(self):
        scope = FakeScope(inputs={"Base": Decimal("3000")})
        expr = call("IF", binary(">", inp("Base"), 2000), lit(100), ref("Missing"))

        assert await evaluate(expr, scope) == Decimal("100")
        assert "Missing" not in scope.reads

    @pytest.mark.asyncio
    async def test_if_requires_three_arguments(self):
        with pytest.raises(ExpressionEvaluationError, match="IF requires 3"):
            await evaluate(call("IF", True, lit(1)), FakeScope())

    @pytest.mark.asyncio
    async def test_not(self):
        assert await evaluate(UnaryOp("NOT", Literal(False)), FakeScope()) is True


class TestFunctions:
    @pytest.mark.asyncio
    async def test_min_max(self):
        scope = FakeScope(inputs={"Base": Decimal("3000")})

        assert await evaluate(call("MIN", inp("Base"), 2500), scope) == Decimal("2500")
        assert await evaluate(call("max", inp("Base"), 2500, 4000), scope) == Decimal("4000")

    @pytest.mark.asyncio
    async def test_round_half_up(self):
        assert await evaluate(call("ROUND", lit("2.345"), 2), FakeScope()) == Decimal("2.35")
        assert await evaluate(call("ROUND", lit("2.5")), FakeScope()) == Decimal("3")

    @pytest.mark.asyncio
    async def test_round_beyond_precision(self):
        scope = FakeScope(inputs={"Base": Decimal("3000")})

        with pytest.raises(ExpressionEvaluationError, match="Cannot round"):
            await evaluate(call("ROUND", inp("Base"), 40), scope)

    @pytest.mark.asyncio
    async def test_round_rejects_fractional_places(self):
        with pytest.raises(ExpressionEvaluationError, match="integral"):
            await evaluate(call("ROUND", lit(1), lit("1.5")), FakeScope())

    @pytest.mark.asyncio
    async def test_unknown_function(self):
        with pytest.raises(ExpressionEvaluationError, match="Unknown function"):
            await evaluate(FunctionCall("AVG", (lit(1),)), FakeScope())


class TestTableLookup:
    @pytest.mark.asyncio
    async def test_keys_are_evaluated_before_lookup(self):
        scope = FakeScope(
            inputs={"GRADE": Decimal("2")},
            tables={("grade_allowance", (Decimal("2"),)): Decimal("250")},
        )

        result = await evaluate(tbl("grade_allowance", inp("GRADE")), scope)

        assert result == Decimal("250")
        assert scope.lookups == [("grade_allowance", [Decimal("2")], None)]

    @pytest.mark.asyncio
    async def test_explicit_lookup_date(self):
        scope = FakeScope(tables={("t", ()): Decimal("1")})

        await evaluate(tbl("t", on_date=date(2024, 6, 1)), scope)

        assert scope.lookups == [("t", [], date(2024, 6, 1))]


class TestInspection:
    """Test reference discovery and rendering."""

    def test_refs_in_first_use_order(self):
        expr = call(
            "IF", binary(">", inp("HOURS"), 160), ref("Overtime") + ref("Base"), ref("Base")
        )

        assert component_refs(expr) == ["Overtime", "Base"]
        assert input_refs(expr) == ["HOURS"]

    def test_render(self):
        expr = call("ROUND", ref("Base") * tbl("rates", inp("GRADE"), text("A")), 2)

        assert render(expr) == 'ROUND((${Base} * TBL("rates", #{GRADE}, "A")), 2)'

    def test_sum_of(self):
        assert sum_of([]) == Literal(Decimal("0"))
        assert render(sum_of([ref("A"), ref("B"), inp("C")])) == "((${A} + ${B}) + #{C})"

    def test_unknown_operator_rejected(self):
        with pytest.raises(ValueError, match="Unknown operator"):
            BinaryOp("%", lit(1), lit(2))

    def test_to_amount_rejects_text(self):
        with pytest.raises(ExpressionEvaluationError, match="text"):
            to_amount("abc")


class TestJsonForm:
    """Test the stored JSON form of expressions."""

    def test_decode(self):
        expr = from_json(
            {
                "op": "*",
                "left": {"ref": "Base"},
                "right": {"tbl": "rates", "keys": [{"input": "GRADE"}, "A"], "on": "2025-01-01"},
            }
        )

        assert expr == BinaryOp(
            "*",
            ComponentRef("Base"),
            TableLookup("rates", (InputRef("GRADE"), Literal("A")), date(2025, 1, 1)),
        )

    def test_bare_values(self):
        assert from_json(10) == Literal(Decimal("10"))
        assert from_json(0.1) == Literal(Decimal("0.1"))
        assert from_json(True) == Literal(True)
        assert from_json({"lit": "0.10"}) == Literal(Decimal("0.10"))

    def test_unary_and_functions(self):
        assert from_json({"op": "not", "operand": True}) == UnaryOp("NOT", Literal(True))
        assert from_json({"fn": "min", "args": [1, 2]}) == FunctionCall(
            "MIN", (Literal(Decimal("1")), Literal(Decimal("2")))
        )

    def test_invalid_documents(self):
        with pytest.raises(ValueError):
            from_json([1, 2])
        with pytest.raises(ValueError, match="Unknown function"):
            from_json({"fn": "AVG", "args": []})
        with pytest.raises(ValueError, match="keys"):
            from_json({"value": 1})
        with pytest.raises(ValueError, match="left operand"):
            from_json({"op": "-", "right": 1})
        with pytest.raises(ValueError, match="needs an operand"):
            from_json({"op": "NOT"})
        with pytest.raises(ValueError, match="finite"):
            from_json({"lit": "NaN"})

    def test_encode_matches_decoder(self):
        expr = call("IF", binary(">", inp("HOURS"), 160), ref("Base") * lit("1.5"), lit(0))

        assert from_json(to_json(expr)) == expr
