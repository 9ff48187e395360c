"""Arithmetic calculator tool.

Expressions are screened against a character allow-list *before* anything is parsed, then evaluated
by walking the syntax tree with a fixed set of arithmetic operators.
"""

import ast
import logging
import math
import operator
import re
from typing import (
    Any,
    Callable,
    Dict,
    Type,
)

from pydantic import (
    BaseModel,
    Field,
)

logger = logging.getLogger(__name__)

_DISALLOWED = re.compile(r"[^0-9+\-*/(). ]")
_MAX_EXPRESSION_LENGTH = 500

_BINARY_OPS: Dict[Type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}
_UNARY_OPS: Dict[Type[ast.unaryop], Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


class CalculateArgs(BaseModel):
    """Arguments for the ``calculate`` tool."""

    expression: str = Field(
        ..., description='The mathematical expression to evaluate, e.g. "2 * 45 + 10"'
    )


class _UnsupportedExpression(ValueError):
    pass


def _eval_node(node: ast.AST) -> Any:
    if isinstance(node, ast.Expression):
        return _eval_node(node.body)
    if isinstance(node, ast.Constant) and type(node.value) in (int, float):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        return _BINARY_OPS[type(node.op)](_eval_node(node.left), _eval_node(node.right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand))
    raise _UnsupportedExpression(type(node).__name__)


def evaluate_expression(expression: str) -> Dict[str, Any]:
    """
    Evaluate an arithmetic *expression*.

    Returns ``{"result": number}`` on success or ``{"error": message}`` when the expression holds
    characters outside ``[0-9+-*/(). ]``, cannot be parsed, or yields a non-finite value.
    """
    expression = (expression or "").strip()
    if not expression:
        return {"error": "Empty expression."}
    if len(expression) > _MAX_EXPRESSION_LENGTH:
        return {"error": "Expression is too long."}
    if _DISALLOWED.search(expression):
        return {"error": "Invalid characters in expression."}

    try:
        value = _eval_node(ast.parse(expression, mode="eval"))
    except ZeroDivisionError:
        return {"error": "Division by zero."}
    except (SyntaxError, _UnsupportedExpression, OverflowError, RecursionError):
        logger.debug("Rejected expression %r", expression)
        return {"error": "Failed to evaluate expression."}

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return {"error": "Expression did not produce a number."}
    if isinstance(value, float):
        if not math.isfinite(value):
            return {"error": "Result is not a finite number."}
        if value.is_integer():
            value = int(value)
    return {"result": value}


async def calculate(args: CalculateArgs) -> Dict[str, Any]:
    """Tool entry point."""
    return evaluate_expression(args.expression)
