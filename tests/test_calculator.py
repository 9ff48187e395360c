"""Tests for the restricted arithmetic evaluator."""

import pytest

from nextgen.tools.calculator import evaluate_expression


@pytest.mark.parametrize(
    "expression, expected",
    [
        ("2 * 2 + 1", 5),
        ("12*11", 132),
        ("(1 + 2) * 3", 9),
        ("7 / 2", 3.5),
        ("-4 + 10", 6),
        ("6 / 3", 2),
    ],
)
def test_valid_expressions(expression: str, expected: float) -> None:
    """Plain arithmetic evaluates to a number."""
    assert evaluate_expression(expression) == {"result": expected}


def test_integral_division_result_is_int() -> None:
    """Whole-number quotients are reported without a trailing .0."""
    result = evaluate_expression("10 / 5")["result"]
    assert isinstance(result, int)


@pytest.mark.parametrize(
    "expression",
    ["2; DROP TABLE", "__import__('os')", "abs(-1)", "x + 1", "2 % 3"],
)
def test_disallowed_characters_are_rejected(expression: str) -> None:
    """Anything outside digits, operators, parentheses, dots and spaces is refused."""
    assert evaluate_expression(expression) == {"error": "Invalid characters in expression."}


def test_division_by_zero() -> None:
    """1/0 is an error payload, not an exception."""
    assert evaluate_expression("1/0") == {"error": "Division by zero."}


@pytest.mark.parametrize("expression", ["", "   ", "(1 + ", "1 2", "()"])
def test_unparseable_or_empty(expression: str) -> None:
    """Empty input and syntax errors produce an error payload."""
    assert "error" in evaluate_expression(expression)


def test_double_star_is_not_exponentiation() -> None:
    """``**`` passes the character screen but is not an allowed operator."""
    assert evaluate_expression("2 ** 3") == {"error": "Failed to evaluate expression."}


def test_overlong_expression() -> None:
    """Very long inputs are refused before parsing."""
    assert evaluate_expression("1+" * 300 + "1") == {"error": "Expression is too long."}
