"""
Basic sanity tests for the tool registry and executor.

Run with:
$ pytest -q
"""

import pytest
from pydantic import BaseModel

from nextgen.agent.tool_executor import (
    ToolExecutionError,
    execute_tool,
)
from nextgen.tools import ToolRegistry


class AddArgs(BaseModel):
    a: int
    b: int


def _registry() -> ToolRegistry:
    registry = ToolRegistry()

    # This is a stub tool for testing purposes.
    @registry.tool("add", "Return the sum of two integers", AddArgs)
    async def _add(args: AddArgs) -> int:
        return args.a + args.b

    @registry.tool("explode", "Always fails", AddArgs)
    async def _explode(args: AddArgs) -> int:
        raise RuntimeError("boom")

    return registry


async def test_execute_tool_success() -> None:
    """Executor should return the correct value when the tool is valid."""

    assert await execute_tool(_registry(), "add", {"a": 2, "b": 3}) == 5


async def test_execute_tool_missing() -> None:
    """Executor should raise *ToolExecutionError* for an unknown tool."""

    with pytest.raises(ToolExecutionError) as excinfo:
        await execute_tool(_registry(), "not_a_tool", {})
    assert "not_a_tool" in str(excinfo.value)


async def test_execute_tool_bad_args() -> None:
    """Executor should raise *ToolExecutionError* for wrong arguments."""

    with pytest.raises(ToolExecutionError) as excinfo:
        await execute_tool(_registry(), "add", {"a": 2})  # missing 'b'
    assert "Invalid arguments" in str(excinfo.value)


async def test_execute_tool_wraps_tool_exceptions() -> None:
    """Exceptions raised inside a tool surface as *ToolExecutionError*."""

    with pytest.raises(ToolExecutionError) as excinfo:
        await execute_tool(_registry(), "explode", {"a": 1, "b": 1})
    assert "boom" in str(excinfo.value)


def test_duplicate_tool_names_are_rejected() -> None:
    """Registering the same name twice is an error, not a silent override."""

    registry = _registry()
    with pytest.raises(ValueError):
        registry.tool("add", "Another add", AddArgs)(lambda args: None)
    assert len(registry) == 2


def test_advertisement_contains_only_metadata() -> None:
    """The advertised spec carries name, description and a JSON schema."""

    specs = _registry().advertisement()
    add = next(spec for spec in specs if spec["name"] == "add")
    assert set(add) == {"name", "description", "parameters"}
    assert add["parameters"]["required"] == ["a", "b"]


def test_status_text_uses_template_and_fallback(registry: ToolRegistry) -> None:
    """Status lines come from the tool's template, or a generic fallback."""

    descriptor = registry.get("calculate")
    assert descriptor is not None
    assert descriptor.status_text({"expression": "12*11"}) == "Calculating 12*11..."
    assert descriptor.status_text({}) == "Calculating ..."
    assert _registry().get("add").status_text({"a": 1}) == "Using tool add..."
