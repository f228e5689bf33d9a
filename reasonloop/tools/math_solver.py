"""
Mathematical Expression Solver

A multitool over SymPy's parser with three sub-actions:

- evaluate: numeric value of an expression (2^16, 5!, sin(30 degrees))
- solve: roots of an equation ("x^2 - 4 = 0" or "x^2 - 4")
- simplify: symbolic simplification
"""

import logging
import re
from typing import Optional

from sympy import Eq, N, simplify, solve
from sympy.parsing.sympy_parser import (
    convert_xor,
    factorial_notation,
    implicit_multiplication_application,
    parse_expr,
    standard_transformations,
)

from ..errors import ToolError
from .registry import SubAction, ToolDescriptor, ToolRegistry

logger = logging.getLogger(__name__)

# Transformations for scientific calculator syntax
TRANSFORMATIONS = (
    standard_transformations
    + (implicit_multiplication_application,)
    + (convert_xor,)  # 2^16 -> 2**16
    + (factorial_notation,)  # 5! -> factorial(5)
)

EXPRESSION_SCHEMA = {
    "type": "object",
    "properties": {
        "expression": {
            "type": "string",
            "description": "math expression like 2+2 or sqrt(16)",
        }
    },
    "required": ["expression"],
}

SOLVE_SCHEMA = {
    "type": "object",
    "properties": {
        "expression": {
            "type": "string",
            "description": "equation like x^2 - 4 = 0",
        },
        "variable": {
            "type": "string",
            "description": "variable to solve for (default: the only free symbol)",
        },
    },
    "required": ["expression"],
}


def preprocess_expression(expression: str) -> str:
    """
    Preprocess expression for SymPy compatibility.

    Handles:
        - Degree notation: sin(30 degrees) -> sin(30 * pi / 180)
        - ceil function: ceil(x) -> ceiling(x) (SymPy naming)
    """
    degree_pattern = r"(\d+(?:\.\d+)?)\s*(?:degrees?|deg)\b"
    expression = re.sub(degree_pattern, r"(\1 * pi / 180)", expression, flags=re.IGNORECASE)
    expression = re.sub(r"\bceil\b", "ceiling", expression)
    return expression


def _parse(expression: str):
    if not expression or not expression.strip():
        raise ToolError(
            'Expression is empty. Please provide a math expression in format: {"expression": "2+2"}',
            tool_name="math",
        )
    try:
        return parse_expr(
            preprocess_expression(expression),
            transformations=TRANSFORMATIONS,
            evaluate=True,
        )
    except (SyntaxError, TypeError, ValueError) as e:
        logger.debug("Could not parse expression '%s': %s", expression, e)
        raise ToolError(f"Syntax error: {e}", tool_name="math") from e


def calculate(expression: str) -> dict:
    """
    Numerically evaluate a mathematical expression.

    Returns:
        Dictionary with the expression and its result

    Raises:
        ToolError: If the expression cannot be parsed or evaluated
    """
    expr = _parse(expression)
    try:
        result = complex(N(expr))
    except (TypeError, ValueError) as e:
        raise ToolError(f"Cannot evaluate '{expression}' numerically: {e}", tool_name="math") from e

    # Convert to real if no imaginary component
    if result.imag == 0:
        result = result.real
    if isinstance(result, float) and result.is_integer():
        result = int(result)

    return {"expression": expression, "result": result}


def solve_equation(expression: str, variable: Optional[str] = None) -> dict:
    """
    Solve an equation for one variable.

    ``lhs = rhs`` is solved as written; a bare expression is solved for zero.
    """
    if "=" in expression:
        lhs, _, rhs = expression.partition("=")
        equation = Eq(_parse(lhs), _parse(rhs))
    else:
        equation = Eq(_parse(expression), 0)

    free = sorted(equation.free_symbols, key=lambda s: s.name)
    if variable:
        symbols = [s for s in free if s.name == variable]
        if not symbols:
            raise ToolError(f"Variable '{variable}' does not appear in '{expression}'", tool_name="math")
        target = symbols[0]
    elif len(free) == 1:
        target = free[0]
    else:
        raise ToolError(
            f"Specify which variable to solve for; found {', '.join(s.name for s in free) or 'none'}",
            tool_name="math",
        )

    try:
        solutions = solve(equation, target)
    except NotImplementedError as e:
        raise ToolError(f"Cannot solve '{expression}': {e}", tool_name="math") from e
    return {"expression": expression, "result": [str(s) for s in solutions]}


def simplify_expression(expression: str) -> dict:
    """Symbolically simplify an expression."""
    return {"expression": expression, "result": str(simplify(_parse(expression)))}


def format_result_for_llm(calc_result: dict) -> str:
    """
    Format calculation result for LLM consumption.

    Args:
        calc_result: Result from any math sub-action

    Returns:
        Formatted string
    """
    result = calc_result["result"]
    if isinstance(result, list):
        if not result:
            return f"{calc_result['expression']}: no solution"
        return f"{calc_result['expression']}: " + ", ".join(result)
    return f"{calc_result['expression']} = {result}"


def _handle_math(args: dict, sub_action: str) -> dict:
    """Dispatch a math sub-action."""
    expression = args.get("expression", "")
    if sub_action == "evaluate":
        return calculate(expression)
    if sub_action == "solve":
        return solve_equation(expression, args.get("variable"))
    if sub_action == "simplify":
        return simplify_expression(expression)
    raise ToolError(f"Unknown math sub-action: {sub_action}", tool_name="math")


def register(registry: ToolRegistry) -> None:
    """Register the math multitool."""
    registry.register(
        ToolDescriptor(
            name="math",
            description="Perform mathematical calculations",
            invoke=_handle_math,
            input_schema=EXPRESSION_SCHEMA,
            formatter=format_result_for_llm,
            sub_actions=(
                SubAction(
                    name="evaluate",
                    description="evaluate a math expression numerically, e.g. 2^16 or sqrt(16)",
                    input_schema=EXPRESSION_SCHEMA,
                ),
                SubAction(
                    name="solve",
                    description="solve an equation for a variable, e.g. x^2 - 4 = 0",
                    input_schema=SOLVE_SCHEMA,
                ),
                SubAction(
                    name="simplify",
                    description="simplify a symbolic expression, e.g. (x^2 - 1)/(x - 1)",
                    input_schema=EXPRESSION_SCHEMA,
                ),
            ),
        )
    )
