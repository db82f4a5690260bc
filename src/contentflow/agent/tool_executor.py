"""Memoizing tool invoker: validates, de-duplicates, logs and traces tool calls."""

import asyncio
import json
import logging
from datetime import (
    datetime,
    timezone,
)
from typing import (
    Any,
    Dict,
    Mapping,
)

from pydantic import BaseModel

from contentflow.agent.context import ExecutionContext
from contentflow.core.errors import (
    GenerationCancelledError,
    InvalidArgumentsError,
    ToolExecutionError,
)
from contentflow.core.schema import SpanStatus
from contentflow.tools import Tool

logger = logging.getLogger(__name__)

# Errors a tool may raise that the engine already handles as they are.
_PASSTHROUGH_ERRORS = (InvalidArgumentsError, ToolExecutionError, GenerationCancelledError)


def canonicalize(tool_name: str, args: Mapping[str, Any]) -> str:
    """Cache key for a call: JSON with sorted keys, so argument order never matters."""
    return json.dumps(
        {"toolName": tool_name, "args": args}, sort_keys=True, separators=(",", ":"), default=str
    )


class ToolResultCache:
    """
    Results of successful tool calls for one agent run.

    Each key has its own lock so that identical calls dispatched concurrently within one step
    still execute only once.
    """

    def __init__(self) -> None:
        self._results: Dict[str, Any] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._results

    def __len__(self) -> int:
        return len(self._results)

    def get(self, key: str) -> Any:
        return self._results[key]

    def set(self, key: str, value: Any) -> None:
        self._results[key] = value

    def lock(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    def keys(self) -> list[str]:
        return list(self._results)


class MemoizedTool:
    """
    A tool as seen by the generation engine.

    Exposes the wrapped tool's name, description and schema; :meth:`execute` validates the
    arguments, serves repeated identical calls from the cache, and records a span for every real
    execution.  Tool errors are logged and propagated, never cached.
    """

    def __init__(
        self,
        tool: Tool,
        cache: ToolResultCache,
        context: ExecutionContext | None = None,
        parent_span_id: str | None = None,
    ):
        self.tool = tool
        self.cache = cache
        self.context = context or ExecutionContext()
        self.parent_span_id = parent_span_id

    @property
    def name(self) -> str:
        return self.tool.name

    @property
    def description(self) -> str:
        return self.tool.description

    @property
    def terminal(self) -> bool:
        return self.tool.terminal

    def json_schema(self) -> Dict[str, Any]:
        return self.tool.json_schema()

    async def execute(self, args: Mapping[str, Any] | None) -> Any:
        """Run the tool once per distinct argument set; raises on invalid args or tool failure."""
        validated = self.tool.validate_args(args)
        if not self.tool.memoize:
            return await self._run(validated)

        key = canonicalize(self.name, validated.model_dump(mode="json"))
        async with self.cache.lock(key):
            if key in self.cache:
                logger.debug("Using cached result for %s", self.name)
                return self.cache.get(key)
            result = await self._run(validated)
            self.cache.set(key, result)
            return result

    async def _run(self, validated: BaseModel) -> Any:
        arguments = validated.model_dump(mode="json", by_alias=True)
        sink = self.context.sink
        logger.info("Tool execution started: %s %s", self.name, arguments)
        span_id = sink.start_span(
            f"tool-execution-{self.name}",
            parent_id=self.parent_span_id,
            trace_id=self.context.trace_id,
            input={
                "tool": self.name,
                "arguments": arguments,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

        try:
            if self.tool.execute is None:
                # Terminal answer tool: the validated arguments are the result.
                result = arguments
            else:
                result = await self.tool.execute(validated, self.context.tool_context())
        except Exception as exc:
            logger.error("Tool execution failed: %s: %s", self.name, exc)
            sink.end_span(
                span_id, output={"error": str(exc), "success": False}, status=SpanStatus.ERROR
            )
            if isinstance(exc, _PASSTHROUGH_ERRORS):
                raise
            raise ToolExecutionError(self.name, str(exc)) from exc

        logger.info("Tool execution completed: %s", self.name)
        logger.debug("Tool '%s' returned: %s", self.name, result)
        sink.end_span(span_id, output={"result": result, "success": True})
        return result


def wrap_tool(
    tool: Tool,
    cache: ToolResultCache,
    context: ExecutionContext | None = None,
    parent_span_id: str | None = None,
) -> MemoizedTool:
    """Wrap *tool* so that it shares *cache* with the other tools of the same run."""
    return MemoizedTool(tool, cache, context=context, parent_span_id=parent_span_id)


def wrap_tools(
    tools: Mapping[str, Tool],
    cache: ToolResultCache,
    context: ExecutionContext | None = None,
    parent_span_id: str | None = None,
) -> Dict[str, MemoizedTool]:
    return {
        name: wrap_tool(tool, cache, context=context, parent_span_id=parent_span_id)
        for name, tool in tools.items()
    }
