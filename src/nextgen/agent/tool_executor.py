"""Dispatches tool calls registered in a :class:`~nextgen.tools.ToolRegistry` and wraps errors."""

import logging
from typing import (
    Any,
    Dict,
)

from pydantic import ValidationError

from nextgen.tools import ToolRegistry

logger = logging.getLogger(__name__)


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""


async def execute_tool(registry: ToolRegistry, name: str, args: Dict[str, Any] | None = None) -> Any:
    """
    Look up *name* in *registry*, validate *args* and invoke the tool.

    Parameters
    ----------
    registry:
        Registry holding the tool descriptors.
    name:
        The registered tool name.
    args:
        Raw arguments supplied by the model.  If *None*, an empty dict is assumed.

    Returns
    -------
    Any
        Whatever the tool returns (tools report expected failures as ``{"error": ...}``).

    Raises
    ------
    ToolExecutionError
        If the tool is missing, the arguments do not match its schema, or it raises.
    """

    descriptor = registry.get(name)
    if descriptor is None:
        raise ToolExecutionError(f"Tool '{name}' is not registered.")

    try:
        validated = descriptor.validate_args(args)
    except ValidationError as exc:
        logger.warning("Invalid arguments for tool '%s': %s", name, args)
        raise ToolExecutionError(f"Invalid arguments for tool '{name}': {exc}") from exc

    try:
        logger.debug("Executing tool '%s' with args=%s", name, args)
        return await descriptor.execute(validated)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s'", name)
        raise ToolExecutionError(f"Tool '{name}' raised an error: {exc}") from exc
