# tablecraft/compiler/formula.py
import ast
import logging
import operator
from functools import reduce
from typing import Any, Dict, List, Mapping, Union

from tablecraft.core.exceptions import FormatError
from tablecraft.models.descriptor import FormulaSpec

logger = logging.getLogger(__name__)

Number = Union[int, float]

OPERATORS = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
    "%": operator.mod,
}

AGGREGATES = ("sum", "avg", "min", "max", "count", "concat")

_AST_BINOPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

_AST_UNARY = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


def to_number(value: Any) -> Number:
    """Coerce a cell value to int or float, raising FormatError otherwise"""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if value is None:
        raise FormatError("empty value in numeric formula")
    text = str(value).strip().replace(",", "")
    if not text:
        raise FormatError("empty value in numeric formula")
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        raise FormatError(f"not a number: {value!r}")


def _tidy(result: Any) -> Any:
    if isinstance(result, float) and result.is_integer():
        return int(result)
    if isinstance(result, float):
        return round(result, 10)
    return result


def _apply(op, left: Number, right: Number) -> Number:
    try:
        return op(left, right)
    except ZeroDivisionError:
        raise FormatError("division by zero")


def _eval_node(node: ast.AST, names: Dict[str, Any]) -> Number:
    if isinstance(node, ast.Expression):
        return _eval_node(node.body, names)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.Name):
        if node.id not in names:
            raise FormatError(f"unknown name in formula: {node.id}")
        return to_number(names[node.id])
    if isinstance(node, ast.BinOp) and type(node.op) in _AST_BINOPS:
        return _apply(_AST_BINOPS[type(node.op)], _eval_node(node.left, names), _eval_node(node.right, names))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _AST_UNARY:
        return _AST_UNARY[type(node.op)](_eval_node(node.operand, names))
    raise FormatError(f"unsupported expression element: {type(node).__name__}")


def evaluate_expression(expression: str, names: Mapping[str, Any]) -> Number:
    """Evaluate +, -, *, /, % arithmetic over the given names. Nothing else is allowed."""
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise FormatError(f"invalid formula expression: {expression!r}") from e
    return _eval_node(tree, dict(names))


def compute(formula: FormulaSpec, row: Mapping[str, Any]) -> Any:
    """Compute a formula value for one row. Raises FormatError on failure."""
    logic = (formula.logic or "").strip()
    fields = list(formula.source_fields)

    if logic in OPERATORS:
        if not fields:
            raise FormatError(f"formula '{formula.name}' has no source fields")
        values = [to_number(row.get(field)) for field in fields]
        op = OPERATORS[logic]
        return _tidy(reduce(lambda left, right: _apply(op, left, right), values))

    aggregate = logic.lower()
    if aggregate in AGGREGATES:
        present = [row.get(field) for field in fields if row.get(field) not in (None, "")]
        if aggregate == "count":
            return len(present)
        if aggregate == "concat":
            return " ".join(str(value) for value in present)
        if not present:
            raise FormatError(f"formula '{formula.name}' has no values to aggregate")
        numbers: List[Number] = [to_number(value) for value in present]
        if aggregate == "sum":
            return _tidy(sum(numbers))
        if aggregate == "avg":
            return _tidy(sum(numbers) / len(numbers))
        if aggregate == "min":
            return _tidy(min(numbers))
        return _tidy(max(numbers))

    names = {field: row.get(field) for field in fields}
    return _tidy(evaluate_expression(logic, names))


def evaluate(formula: FormulaSpec, row: Mapping[str, Any]) -> Any:
    """Formula cell value, or an empty string when it cannot be computed"""
    try:
        return compute(formula, row)
    except FormatError as e:
        logger.debug(f"Formula '{formula.name}' failed: {str(e)}")
        return ""
