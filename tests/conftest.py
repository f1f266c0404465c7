"""
Pytest fixtures and configuration for the Conductor test suite.
"""

import ast
import os
import operator

import pytest

from conductor.agent import Agent
from conductor.config.settings import ConductorSettings, reset_settings
from conductor.providers.scripted import ScriptedProvider
from conductor.tools.function import function_tool

# ============================================================================
# Core Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    """Isolate tests from CONDUCTOR_* variables in the environment."""
    for key in list(os.environ):
        if key.upper().startswith("CONDUCTOR_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings():
    """Default settings, ignoring any .env file."""
    return ConductorSettings(_env_file=None)


# ============================================================================
# Tools
# ============================================================================

_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.USub: operator.neg,
}


def _evaluate(node):
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _OPERATORS:
        return _OPERATORS[type(node.op)](_evaluate(node.left), _evaluate(node.right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _OPERATORS:
        return _OPERATORS[type(node.op)](_evaluate(node.operand))
    raise ValueError(f"Unsupported expression: {ast.dump(node)}")


@function_tool
def calculator(expression: str) -> dict:
    """Evaluate an arithmetic expression.

    Args:
        expression: Arithmetic using + - * / and parentheses.
    """
    return {"result": _evaluate(ast.parse(expression, mode="eval"))}


@pytest.fixture
def calculator_tool():
    """Calculator function tool returning {"result": value}."""
    return calculator


@pytest.fixture
def echo_tool():
    """Async tool returning its argument as a string."""

    @function_tool
    async def echo(text: str) -> str:
        """Echo the text back.

        Args:
            text: Text to echo.
        """
        return text

    return echo


# ============================================================================
# Agents and providers
# ============================================================================

@pytest.fixture
def math_agent(calculator_tool):
    """Agent with the calculator tool."""
    return Agent(
        name="Math",
        instructions="You solve arithmetic with the calculator tool.",
        tools=(calculator_tool,),
    )


@pytest.fixture
def scripted_provider():
    """Factory for ScriptedProvider instances."""

    def _make(*script, delay=0.0):
        return ScriptedProvider(list(script), delay=delay)

    return _make
