"""
Tool registry for contentflow.

This module defines the tool descriptor handed to agents, a decorator to register tools and a
registry to look them up by name.  A tool is an async function that receives its validated
arguments (an instance of the tool's pydantic parameter model) plus a :class:`ToolContext`, and
returns a JSON-serialisable value.
"""

import asyncio
import inspect
import logging
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    Mapping,
    Optional,
    Type,
)

from pydantic import (
    BaseModel,
    ValidationError,
)

from contentflow.core.errors import (
    AgentConfigError,
    InvalidArgumentsError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolContext:
    """Per-run values a tool may need (cancellation, caller identity)."""

    abort_signal: Optional[asyncio.Event] = None
    user_id: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


ToolFn = Callable[[Any, ToolContext], Awaitable[Any]]


@dataclass(frozen=True)
class Tool:
    """
    A declared, schema-validated capability the model may invoke mid-generation.

    ``memoize`` must be False for side-effecting tools that have to run on every call.
    ``terminal`` marks an "answer" tool: the engine stops after the step that calls it, and a
    terminal tool without ``execute`` simply returns its validated arguments.
    """

    name: str
    description: str
    parameters: Type[BaseModel]
    execute: Optional[ToolFn] = None
    memoize: bool = True
    terminal: bool = False

    def check(self) -> None:
        """Validate the descriptor itself. Called once when an agent is built."""
        if not self.name or not self.name.strip():
            raise AgentConfigError("Tool name must be a non-empty string.")
        if not (inspect.isclass(self.parameters) and issubclass(self.parameters, BaseModel)):
            raise AgentConfigError(f"Tool '{self.name}' parameters must be a pydantic model.")
        if self.execute is None and not self.terminal:
            raise AgentConfigError(f"Tool '{self.name}' has no execute function.")

    def validate_args(self, args: Mapping[str, Any] | None) -> BaseModel:
        """Return the validated parameter model or raise :class:`InvalidArgumentsError`."""
        try:
            return self.parameters.model_validate(dict(args or {}))
        except ValidationError as exc:
            raise InvalidArgumentsError(self.name, str(exc)) from exc

    def json_schema(self) -> Dict[str, Any]:
        """JSON schema of the parameters, as shown to the model."""
        return self.parameters.model_json_schema()


TOOL_REGISTRY: Dict[str, Tool] = {}
"""Global registry of tools."""


def register_tool(
    name: str,
    parameters: Type[BaseModel],
    *,
    description: str | None = None,
    memoize: bool = True,
    terminal: bool = False,
) -> Callable[[ToolFn], Tool]:
    """
    Register an async tool function under *name*.

    The function is registered as a decorator, so it can be used like this:
        @register_tool("research", ResearchArgs)
        async def research_tool(args, context):
            ...

    The decorated name is bound to the resulting :class:`Tool`.  When *description* is omitted
    the function's docstring is used.

    Raises
    ------
    ValueError
        If a tool with the same name is already registered.
    """
    if name in TOOL_REGISTRY:
        raise ValueError(f"Tool '{name}' is already registered.")
    logger.debug("Registering tool '%s'", name)

    def wrapper(fn: ToolFn) -> Tool:
        tool = Tool(
            name=name,
            description=description or inspect.getdoc(fn) or "",
            parameters=parameters,
            execute=fn,
            memoize=memoize,
            terminal=terminal,
        )
        tool.check()
        TOOL_REGISTRY[name] = tool
        return tool

    return wrapper


def tool_set(tools: Iterable[Tool]) -> Dict[str, Tool]:
    """Build a name -> tool mapping, rejecting duplicates."""
    mapping: Dict[str, Tool] = {}
    for tool in tools:
        tool.check()
        if tool.name in mapping:
            raise AgentConfigError(f"Duplicate tool name '{tool.name}'.")
        mapping[tool.name] = tool
    return mapping
