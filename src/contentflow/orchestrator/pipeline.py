"""
Content pipeline orchestration.

A request is classified by the router agent and then runs one of three workflows:

* ``create_content``: research -> strategy -> formatter -> publisher
* ``create_strategy``: strategy only
* ``manage_content``: placeholder, no further stages

Stages run strictly in sequence.  Each stage's prompt embeds the previous stage's output as JSON,
and each stage contributes its first tool result to the :class:`OrchestrationResult`.
"""

import asyncio
import json
import logging
from typing import (
    Any,
    Callable,
    Mapping,
    Optional,
    Sequence,
)

from pydantic import ValidationError

from contentflow.agent.context import ExecutionContext
from contentflow.agent.runner import Agent
from contentflow.agent.streaming import (
    AgentChunk,
    run_streaming,
)
from contentflow.core.errors import (
    AgentConfigError,
    StageError,
)
from contentflow.core.schema import (
    Message,
    OrchestrationResult,
    RouteAction,
    RoutingDecision,
    RunResult,
    SpanStatus,
    ToolResult,
)
from contentflow.orchestrator.agents import build_agents

logger = logging.getLogger(__name__)

StageCallback = Callable[[str, AgentChunk], None]

DEFAULT_TONE = "professional"
MANAGE_CONTENT_PLACEHOLDER = {"message": "Content management workflow not implemented yet"}


def first_tool_result(tool_results: Sequence[ToolResult]) -> Any:
    """The result of the first successful tool call of a stage, or None."""
    for tool_result in tool_results:
        if not tool_result.is_error:
            return tool_result.result
    return None


def parse_route(tool_results: Sequence[ToolResult]) -> RoutingDecision:
    """Routing decision from the router's tool output; falls back to create_content/blog."""
    raw = first_tool_result(tool_results)
    if raw is None:
        logger.warning("Router produced no tool result; using default route")
        return RoutingDecision.fallback()
    try:
        return RoutingDecision.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Malformed routing decision %r (%s); using default route", raw, exc)
        return RoutingDecision.fallback()


def _log_chunk(stage: str, chunk: AgentChunk) -> None:
    logger.debug("[%s] %s: %s", stage, chunk.type, chunk.content)


class _Pipeline:
    """Runs the stages of one orchestration; lives for a single request."""

    def __init__(
        self,
        agents: Mapping[str, Agent],
        context: ExecutionContext,
        on_chunk: Optional[StageCallback],
    ):
        self.agents = agents
        self.context = context
        self.on_chunk = on_chunk or _log_chunk

    async def stage(self, name: str, prompt: str, message_id: str) -> RunResult:
        agent = self.agents.get(name)
        if agent is None:
            raise AgentConfigError(f"No agent configured for stage '{name}'.")

        logger.info("Running %s agent", name)
        history = [Message(role="user", content=prompt, id=message_id)]
        try:
            result = await run_streaming(
                agent,
                history,
                context=self.context,
                on_chunk=lambda chunk: self.on_chunk(name, chunk),
            )
        except Exception as exc:
            logger.error("Error in %s stage: %s", name, exc)
            raise StageError(name, exc) from exc

        logger.debug("%s tool results: %s", name, [r.model_dump() for r in result.tool_results])
        return result

    async def create_content(self, user_input: str, result: OrchestrationResult) -> None:
        platform = result.platform.value

        research = await self.stage("research", f"Research this topic: {user_input}", "2")
        result.references = first_tool_result(research.tool_results)

        strategy = await self.stage(
            "strategy", f"Create a strategy for {platform} about: {user_input}", "3"
        )
        result.strategy = first_tool_result(strategy.tool_results)

        tone = result.strategy.get("tone") if isinstance(result.strategy, Mapping) else None
        formatter_input = {
            "content": user_input,
            "platform": platform,
            "tone": tone or DEFAULT_TONE,
        }
        formatted = await self.stage("formatter", json.dumps(formatter_input), "4")
        result.formatted_content = first_tool_result(formatted.tool_results)

        formatted_content = (
            result.formatted_content if isinstance(result.formatted_content, Mapping) else {}
        )
        publisher_input = {
            "content": formatted_content.get("formattedContent"),
            "metadata": formatted_content.get("metadata"),
            "platform": platform,
        }
        published = await self.stage("publisher", json.dumps(publisher_input), "5")
        result.published_content = first_tool_result(published.tool_results)

    async def create_strategy(self, result: OrchestrationResult) -> None:
        strategy = await self.stage(
            "strategy", f"Create a content strategy for {result.platform.value}", "6"
        )
        result.strategy = first_tool_result(strategy.tool_results)

    async def run(self, user_input: str) -> OrchestrationResult:
        router = await self.stage("router", user_input, "1")
        route = parse_route(router.tool_results)
        logger.info("Selected route: %s / %s", route.action.value, route.platform.value)

        result = OrchestrationResult(action=route.action, platform=route.platform)
        if route.action is RouteAction.CREATE_CONTENT:
            await self.create_content(user_input, result)
        elif route.action is RouteAction.CREATE_STRATEGY:
            await self.create_strategy(result)
        else:
            logger.info("Managing existing content (not implemented)")
            result.strategy = dict(MANAGE_CONTENT_PLACEHOLDER)
        return result


async def orchestrate(
    user_input: str,
    context: Optional[ExecutionContext] = None,
    agents: Optional[Mapping[str, Agent]] = None,
    on_chunk: Optional[StageCallback] = None,
) -> OrchestrationResult:
    """
    Route *user_input* and run the selected workflow.

    Parameters
    ----------
    user_input:
        The raw request, e.g. ``"Create a LinkedIn post about AI trends"``.
    context:
        Trace sink, abort signal and caller identity.  A fresh context (no tracing) by default.
    agents:
        Stage agents keyed by name; :func:`build_agents` by default.
    on_chunk:
        Receives ``(stage, chunk)`` for every streamed chunk of every stage.

    Raises
    ------
    StageError
        If any stage fails; carries the stage name and the underlying cause.
    """
    context = context or ExecutionContext()
    agents = agents if agents is not None else build_agents()
    sink = context.sink

    if context.owns_trace:
        sink.start_trace(
            context.trace_id,
            name="orchestration",
            input={"userInput": user_input},
            metadata={**context.metadata, "isServerless": context.serverless},
            user_id=context.user_id,
        )
    span = sink.start_span(
        "orchestration",
        parent_id=context.parent_span_id,
        input={"userInput": user_input},
        trace_id=context.trace_id,
    )

    pipeline = _Pipeline(agents, context.child(parent_span_id=span), on_chunk)
    try:
        result = await pipeline.run(user_input)

        output = result.model_dump(mode="json")
        sink.end_span(span, output=output)
        if context.owns_trace:
            sink.update_trace(context.trace_id, output)
        logger.info("Orchestration completed successfully")
        return result

    except (Exception, asyncio.CancelledError) as exc:
        logger.error("Orchestration failed: %r", exc)
        sink.end_span(span, output={"error": str(exc)}, status=SpanStatus.ERROR)
        raise
    finally:
        # Last sink call of the orchestration.
        if context.should_flush:
            await asyncio.shield(sink.flush())
