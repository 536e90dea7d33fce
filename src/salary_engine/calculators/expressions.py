"""Expression tree for rule formulas.

Expressions are a closed set of immutable node types evaluated by one
recursive function against a scope that resolves components, inputs and
table lookups:

    Literal        constant (Decimal, bool or str)
    InputRef       named context input (terminal value)
    ComponentRef   previously computed component
    TableLookup    TBL("name", key, ...) resolved through the table service
    UnaryOp        -x, NOT x
    BinaryOp       + - * / ^ = != > >= < <= AND OR
    FunctionCall   IF, MIN, MAX, ROUND

Nodes support arithmetic operators so formulas can be written directly:

    ref("Base") * lit("0.10")
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterator, Protocol, Sequence, Union

from salary_engine.calculators.errors import ExpressionEvaluationError
from salary_engine.calculators.types import as_decimal, format_decimal

Value = Union[Decimal, bool, str]

ARITHMETIC_OPERATORS = frozenset({"+", "-", "*", "/", "^"})
COMPARISON_OPERATORS = frozenset({"=", "!=", ">", ">=", "<", "<="})
BOOLEAN_OPERATORS = frozenset({"AND", "OR"})
UNARY_OPERATORS = frozenset({"-", "NOT"})
FUNCTIONS = frozenset({"IF", "MIN", "MAX", "ROUND"})


class _Operators:
    """Arithmetic operator overloads building BinaryOp nodes."""

    def __add__(self, other: Any) -> BinaryOp:
        return BinaryOp("+", self, _wrap(other))  # type: ignore[arg-type]

    def __radd__(self, other: Any) -> BinaryOp:
        return BinaryOp("+", _wrap(other), self)  # type: ignore[arg-type]

    def __sub__(self, other: Any) -> BinaryOp:
        return BinaryOp("-", self, _wrap(other))  # type: ignore[arg-type]

    def __rsub__(self, other: Any) -> BinaryOp:
        return BinaryOp("-", _wrap(other), self)  # type: ignore[arg-type]

    def __mul__(self, other: Any) -> BinaryOp:
        return BinaryOp("*", self, _wrap(other))  # type: ignore[arg-type]

    def __rmul__(self, other: Any) -> BinaryOp:
        return BinaryOp("*", _wrap(other), self)  # type: ignore[arg-type]

    def __truediv__(self, other: Any) -> BinaryOp:
        return BinaryOp("/", self, _wrap(other))  # type: ignore[arg-type]

    def __rtruediv__(self, other: Any) -> BinaryOp:
        return BinaryOp("/", _wrap(other), self)  # type: ignore[arg-type]

    def __pow__(self, other: Any) -> BinaryOp:
        return BinaryOp("^", self, _wrap(other))  # type: ignore[arg-type]

    def __neg__(self) -> UnaryOp:
        return UnaryOp("-", self)  # type: ignore[arg-type]


@dataclass(frozen=True)
class Literal(_Operators):
    value: Value


@dataclass(frozen=True)
class InputRef(_Operators):
    name: str


@dataclass(frozen=True)
class ComponentRef(_Operators):
    name: str


@dataclass(frozen=True)
class TableLookup(_Operators):
    table: str
    keys: tuple[Expr, ...] = ()
    on_date: date | None = None  # None = evaluation date

    def __post_init__(self) -> None:
        object.__setattr__(self, "keys", tuple(self.keys))


@dataclass(frozen=True)
class UnaryOp(_Operators):
    op: str
    operand: Expr

    def __post_init__(self) -> None:
        if self.op not in UNARY_OPERATORS:
            raise ValueError(f"Unknown unary operator: {self.op}")


@dataclass(frozen=True)
class BinaryOp(_Operators):
    op: str
    left: Expr
    right: Expr

    def __post_init__(self) -> None:
        if self.op not in ARITHMETIC_OPERATORS | COMPARISON_OPERATORS | BOOLEAN_OPERATORS:
            raise ValueError(f"Unknown operator: {self.op}")


@dataclass(frozen=True)
class FunctionCall(_Operators):
    name: str
    args: tuple[Expr, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", self.name.upper())
        object.__setattr__(self, "args", tuple(self.args))


Expr = Union[Literal, InputRef, ComponentRef, TableLookup, UnaryOp, BinaryOp, FunctionCall]


def _wrap(value: Any) -> Expr:
    if isinstance(
        value, (Literal, InputRef, ComponentRef, TableLookup, UnaryOp, BinaryOp, FunctionCall)
    ):
        return value
    if isinstance(value, (bool, str)):
        return Literal(value)
    return Literal(as_decimal(value))


# === Constructors ===


def lit(value: Any) -> Literal:
    """Numeric literal (strings are parsed as decimals)."""
    return Literal(as_decimal(value))


def text(value: str) -> Literal:
    return Literal(value)


def inp(name: str) -> InputRef:
    return InputRef(name)


def ref(name: str) -> ComponentRef:
    return ComponentRef(name)


def tbl(table: str, *keys: Any, on_date: date | None = None) -> TableLookup:
    return TableLookup(table, tuple(_wrap(k) for k in keys), on_date)


def call(name: str, *args: Any) -> FunctionCall:
    return FunctionCall(name, tuple(_wrap(a) for a in args))


def binary(op: str, left: Any, right: Any) -> BinaryOp:
    return BinaryOp(op, _wrap(left), _wrap(right))


# === Evaluation ===


class Scope(Protocol):
    """Symbol resolution for one component's expression."""

    def component(self, name: str) -> Decimal: ...

    def input(self, name: str) -> Decimal: ...

    async def lookup(self, table: str, keys: list[Value], on_date: date | None) -> Decimal: ...


async def evaluate(expr: Expr, scope: Scope) -> Value:
    """Evaluate an expression tree.

    Raises:
        ExpressionEvaluationError: On type errors, division by zero, bad
            function calls or unknown node types
    """
    if isinstance(expr, Literal):
        return expr.value
    if isinstance(expr, InputRef):
        return scope.input(expr.name)
    if isinstance(expr, ComponentRef):
        return scope.component(expr.name)
    if isinstance(expr, TableLookup):
        keys = [await evaluate(key, scope) for key in expr.keys]
        return await scope.lookup(expr.table, keys, expr.on_date)
    if isinstance(expr, UnaryOp):
        operand = await evaluate(expr.operand, scope)
        if expr.op == "NOT":
            return not _truth(operand)
        return -_number(operand, "-")
    if isinstance(expr, BinaryOp):
        return await _evaluate_binary(expr, scope)
    if isinstance(expr, FunctionCall):
        return await _evaluate_call(expr, scope)
    raise ExpressionEvaluationError(f"Unknown expression node: {expr!r}")


async def _evaluate_binary(expr: BinaryOp, scope: Scope) -> Value:
    if expr.op in BOOLEAN_OPERATORS:
        left_truth = _truth(await evaluate(expr.left, scope))
        if expr.op == "AND" and not left_truth:
            return False
        if expr.op == "OR" and left_truth:
            return True
        return _truth(await evaluate(expr.right, scope))

    left = await evaluate(expr.left, scope)
    right = await evaluate(expr.right, scope)

    if expr.op in COMPARISON_OPERATORS:
        return _compare(expr.op, left, right)

    a = _number(left, expr.op)
    b = _number(right, expr.op)
    try:
        if expr.op == "+":
            return a + b
        if expr.op == "-":
            return a - b
        if expr.op == "*":
            return a * b
        if expr.op == "/":
            if b == 0:
                raise ExpressionEvaluationError(f"Division by zero: {render(expr)}")
            return a / b
        return a**b
    except ArithmeticError as e:
        raise ExpressionEvaluationError(f"Cannot compute {render(expr)}: {e!r}", cause=e) from e


async def _evaluate_call(expr: FunctionCall, scope: Scope) -> Value:
    name, args = expr.name, expr.args

    if name == "IF":
        if len(args) != 3:
            raise ExpressionEvaluationError("IF requires 3 arguments: condition, then, else")
        # Only the selected branch is evaluated
        branch = args[1] if _truth(await evaluate(args[0], scope)) else args[2]
        return await evaluate(branch, scope)

    values = [await evaluate(arg, scope) for arg in args]

    if name in ("MIN", "MAX"):
        if not values:
            raise ExpressionEvaluationError(f"{name} requires at least one argument")
        numbers = [_number(v, name) for v in values]
        return min(numbers) if name == "MIN" else max(numbers)

    if name == "ROUND":
        if not 1 <= len(values) <= 2:
            raise ExpressionEvaluationError("ROUND requires 1 or 2 arguments: value, [places]")
        number = _number(values[0], name)
        places = _number(values[1], name) if len(values) == 2 else Decimal("0")
        if places != places.to_integral_value():
            raise ExpressionEvaluationError(f"ROUND places must be integral, got {places}")
        exponent = Decimal(1).scaleb(-int(places))
        try:
            return number.quantize(exponent, rounding=ROUND_HALF_UP)
        except ArithmeticError as e:
            raise ExpressionEvaluationError(
                f"Cannot round {number} to {places} places", cause=e
            ) from e

    raise ExpressionEvaluationError(f"Unknown function: {name}")


def _number(value: Value, op: str) -> Decimal:
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, Decimal):
        return value
    raise ExpressionEvaluationError(f"Operator {op} expects a number, got {value!r}")


def _truth(value: Value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, Decimal):
        return value != 0
    raise ExpressionEvaluationError(f"Expected a condition, got {value!r}")


def _compare(op: str, left: Value, right: Value) -> bool:
    if isinstance(left, str) or isinstance(right, str):
        if op not in ("=", "!="):
            raise ExpressionEvaluationError(
                f"Operator {op} cannot compare text {left!r}, {right!r}"
            )
        equal = isinstance(left, str) and isinstance(right, str) and left == right
        return equal if op == "=" else not equal

    a, b = _number(left, op), _number(right, op)
    try:
        if op == "=":
            return a == b
        if op == "!=":
            return a != b
        if op == ">":
            return a > b
        if op == ">=":
            return a >= b
        if op == "<":
            return a < b
        return a <= b
    except ArithmeticError as e:
        raise ExpressionEvaluationError(f"Cannot compare {a} {op} {b}", cause=e) from e


def to_amount(value: Value) -> Decimal:
    """Final component amount for an evaluated value."""
    if isinstance(value, str):
        raise ExpressionEvaluationError(f"Expression produced text {value!r}, not an amount")
    return _number(value, "result")


# === Inspection ===


def walk(expr: Expr) -> Iterator[Expr]:
    """Yield every node of the tree, parents before children."""
    yield expr
    if isinstance(expr, TableLookup):
        for key in expr.keys:
            yield from walk(key)
    elif isinstance(expr, UnaryOp):
        yield from walk(expr.operand)
    elif isinstance(expr, BinaryOp):
        yield from walk(expr.left)
        yield from walk(expr.right)
    elif isinstance(expr, FunctionCall):
        for arg in expr.args:
            yield from walk(arg)


def component_refs(expr: Expr) -> list[str]:
    """Component names read by an expression, in first-use order."""
    return list(dict.fromkeys(n.name for n in walk(expr) if isinstance(n, ComponentRef)))


def input_refs(expr: Expr) -> list[str]:
    """Input names read by an expression, in first-use order."""
    return list(dict.fromkeys(n.name for n in walk(expr) if isinstance(n, InputRef)))


def render(expr: Expr) -> str:
    """Formula string for traces and fingerprints.

    Components render as ``${Name}``, inputs as ``#{Name}``.
    """
    if isinstance(expr, Literal):
        return _render_value(expr.value)
    if isinstance(expr, InputRef):
        return f"#{{{expr.name}}}"
    if isinstance(expr, ComponentRef):
        return f"${{{expr.name}}}"
    if isinstance(expr, TableLookup):
        parts = [f'"{expr.table}"'] + [render(k) for k in expr.keys]
        if expr.on_date is not None:
            parts.append(expr.on_date.isoformat())
        return f"TBL({', '.join(parts)})"
    if isinstance(expr, UnaryOp):
        if expr.op == "NOT":
            return f"NOT {render(expr.operand)}"
        return f"-{render(expr.operand)}"
    if isinstance(expr, BinaryOp):
        return f"({render(expr.left)} {expr.op} {render(expr.right)})"
    if isinstance(expr, FunctionCall):
        return f"{expr.name}({', '.join(render(a) for a in expr.args)})"
    raise TypeError(f"Not an expression: {expr!r}")


def _render_value(value: Value) -> str:
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, Decimal):
        return format_decimal(value)
    return f'"{value}"'


# === JSON encoding ===


def from_json(data: Any) -> Expr:
    """Decode the JSON form of an expression.

    Bare numbers are decimal literals, bare strings text literals and bare
    booleans boolean literals. Objects use one of the keys ``lit``,
    ``input``, ``ref``, ``tbl``, ``op`` or ``fn``.

    Raises:
        ValueError: If the document is not a valid expression
    """
    if isinstance(data, bool):
        return Literal(data)
    if isinstance(data, (int, float)):
        return Literal(as_decimal(data))
    if isinstance(data, str):
        return Literal(data)
    if not isinstance(data, dict):
        raise ValueError(f"Invalid expression: {data!r}")

    if "lit" in data:
        return Literal(as_decimal(data["lit"]))
    if "input" in data:
        return InputRef(str(data["input"]))
    if "ref" in data:
        return ComponentRef(str(data["ref"]))
    if "tbl" in data:
        on = data.get("on")
        return TableLookup(
            str(data["tbl"]),
            tuple(from_json(k) for k in data.get("keys", [])),
            date.fromisoformat(on) if on else None,
        )
    if "op" in data:
        op = str(data["op"]).upper()
        if "right" not in data:
            operand = data.get("operand", data.get("left"))
            if operand is None:
                raise ValueError(f"Operator {op} needs an operand")
            return UnaryOp(op, from_json(operand))
        if "left" not in data:
            raise ValueError(f"Operator {op} needs a left operand")
        return BinaryOp(op, from_json(data["left"]), from_json(data["right"]))
    if "fn" in data:
        name = str(data["fn"]).upper()
        if name not in FUNCTIONS:
            raise ValueError(f"Unknown function: {name}")
        return FunctionCall(name, tuple(from_json(a) for a in data.get("args", [])))
    raise ValueError(f"Invalid expression object, keys: {sorted(data)}")


def to_json(expr: Expr) -> Any:
    """Encode an expression in the form accepted by :func:`from_json`."""
    if isinstance(expr, Literal):
        if isinstance(expr.value, Decimal):
            return {"lit": format_decimal(expr.value)}
        return expr.value
    if isinstance(expr, InputRef):
        return {"input": expr.name}
    if isinstance(expr, ComponentRef):
        return {"ref": expr.name}
    if isinstance(expr, TableLookup):
        data: dict[str, Any] = {"tbl": expr.table, "keys": [to_json(k) for k in expr.keys]}
        if expr.on_date is not None:
            data["on"] = expr.on_date.isoformat()
        return data
    if isinstance(expr, UnaryOp):
        return {"op": expr.op, "operand": to_json(expr.operand)}
    if isinstance(expr, BinaryOp):
        return {"op": expr.op, "left": to_json(expr.left), "right": to_json(expr.right)}
    if isinstance(expr, FunctionCall):
        return {"fn": expr.name, "args": [to_json(a) for a in expr.args]}
    raise TypeError(f"Not an expression: {expr!r}")


def sum_of(terms: Sequence[Expr]) -> Expr:
    """Left-folded sum of terms (zero for no terms)."""
    if not terms:
        return Literal(Decimal("0"))
    result = terms[0]
    for term in terms[1:]:
        result = BinaryOp("+", result, term)
    return result
