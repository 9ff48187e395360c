"""Shared fixtures."""

import pytest

from nextgen.tools import ToolRegistry
from nextgen.tools.calculator import (
    CalculateArgs,
    calculate,
)


@pytest.fixture
def registry() -> ToolRegistry:
    """Registry with the calculator tool only."""
    reg = ToolRegistry()
    reg.tool(
        "calculate",
        "Perform a mathematical calculation.",
        CalculateArgs,
        status_template="Calculating {expression}...",
    )(calculate)
    return reg
