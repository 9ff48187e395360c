"""
Tool registry for NextGen.

A tool is an async callable plus the metadata the completion service needs to decide when to call
it: a unique name, a description, and a pydantic model describing its arguments.  Only that
metadata is advertised to the model; the callable never leaves the process.

The registry is populated once while the server starts (see :mod:`nextgen.tools.defaults`) and is
read-only afterwards.
"""

import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Type,
    TypedDict,
)

from pydantic import (
    BaseModel,
    ConfigDict,
)

from nextgen.common import one_line

logger = logging.getLogger(__name__)

ToolFunction = Callable[[Any], Awaitable[Any]]


class ToolSpec(TypedDict):
    """
    Schema for a tool as advertised to the completion service.
    """

    name: str
    description: str
    parameters: Dict[str, Any]


class _BlankArgs(dict):
    """Format helper that renders unknown placeholders as empty strings."""

    def __missing__(self, key: str) -> str:
        return ""


class ToolDescriptor(BaseModel):
    """Everything the registry knows about one tool."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    description: str
    input_model: Type[BaseModel]
    execute: ToolFunction
    status_template: str = ""

    def validate_args(self, args: Mapping[str, Any] | None) -> BaseModel:
        """Validate raw model-supplied arguments (raises ``ValidationError``)."""
        return self.input_model.model_validate(dict(args or {}))

    def status_text(self, args: Mapping[str, Any] | None) -> str:
        """Human readable progress line for a call with *args*."""
        if not self.status_template:
            return f"Using tool {self.name}..."
        values = _BlankArgs({key: one_line(str(value), limit=80) for key, value in (args or {}).items()})
        return self.status_template.format_map(values)

    def spec(self) -> ToolSpec:
        """Metadata advertised to the completion service."""
        return ToolSpec(
            name=self.name,
            description=self.description,
            parameters=self.input_model.model_json_schema(),
        )


class ToolRegistry:
    """Mapping from tool name to :class:`ToolDescriptor`."""

    def __init__(self) -> None:
        self._tools: Dict[str, ToolDescriptor] = {}

    def register(self, descriptor: ToolDescriptor) -> None:
        """
        Add *descriptor* to the registry.

        Raises
        ------
        ValueError
            If a tool with the same name is already registered.
        """
        if descriptor.name in self._tools:
            raise ValueError(f"Tool '{descriptor.name}' is already registered.")
        logger.debug("Registering tool '%s'", descriptor.name)
        self._tools[descriptor.name] = descriptor

    def tool(
        self,
        name: str,
        description: str,
        input_model: Type[BaseModel],
        status_template: str = "",
    ) -> Callable[[ToolFunction], ToolFunction]:
        """
        Register an async function as a tool.

        The function is registered as a decorator, so it can be used like this::

            @registry.tool("echo", "Echo text back", EchoArgs)
            async def echo(args: EchoArgs) -> str:
                return args.text
        """

        def wrapper(fn: ToolFunction) -> ToolFunction:
            self.register(
                ToolDescriptor(
                    name=name,
                    description=description,
                    input_model=input_model,
                    execute=fn,
                    status_template=status_template,
                )
            )
            return fn

        return wrapper

    def get(self, name: str) -> ToolDescriptor | None:
        """Return the descriptor registered under *name*, if any."""
        return self._tools.get(name)

    def list(self) -> List[ToolDescriptor]:
        """All registered descriptors, in registration order."""
        return list(self._tools.values())

    def names(self) -> List[str]:
        """All registered tool names."""
        return list(self._tools)

    def advertisement(self) -> List[ToolSpec]:
        """Tool metadata for the completion service."""
        return [descriptor.spec() for descriptor in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self.list())

    def __len__(self) -> int:
        return len(self._tools)
