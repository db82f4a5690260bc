"""
Single-agent runner.

An agent is a system prompt, a model reference and a tool set.  Running it means: open a span,
wrap the tools with a fresh per-run cache, drive the generation engine, report each step to the
trace sink, and return either a free-form or a structured result.  Generation failures are
recorded and re-raised; only the trace sink swallows its own failures.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    AsyncIterator,
    Dict,
    Optional,
    Sequence,
    Union,
)

from contentflow.agent.context import ExecutionContext
from contentflow.agent.engine import (
    GenerationFinished,
    GenerationResult,
    StepFinished,
    TextDelta,
    ToolFinished,
    ToolStarted,
    stream_generation,
)
from contentflow.agent.providers import (
    LanguageModel,
    ModelRef,
)
from contentflow.agent.tool_executor import (
    ToolResultCache,
    wrap_tools,
)
from contentflow.config import settings
from contentflow.core.errors import (
    AgentConfigError,
    GenerationError,
)
from contentflow.core.schema import (
    Message,
    RunResult,
    SpanStatus,
    StructuredRunResult,
    TextRunResult,
)
from contentflow.tools import Tool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentConfig:
    """Immutable description of an agent; a run is a pure function of this plus its input."""

    name: str
    system_prompt: str
    model: Union[ModelRef, LanguageModel]
    tools: Dict[str, Tool] = field(default_factory=dict)
    max_steps: int = field(default_factory=lambda: settings.AGENT_MAX_STEPS)
    temperature: float = field(default_factory=lambda: settings.AGENT_TEMPERATURE)
    max_tokens: int = field(default_factory=lambda: settings.AGENT_MAX_TOKENS)
    require_structured_output: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise AgentConfigError("Agent name must be a non-empty string.")
        if self.max_steps < 1:
            raise AgentConfigError(f"Agent '{self.name}': max_steps must be >= 1.")
        for key, tool in self.tools.items():
            tool.check()
            if key != tool.name:
                raise AgentConfigError(
                    f"Agent '{self.name}': tool registered as '{key}' is named '{tool.name}'."
                )

    @property
    def model_id(self) -> str:
        if isinstance(self.model, LanguageModel):
            return self.model.model_id
        return self.model.identifier


@dataclass(frozen=True)
class RunCompleted:
    """Last event of a successful run."""

    result: RunResult


AgentEvent = Union[TextDelta, ToolStarted, ToolFinished, StepFinished, RunCompleted]


def _build_result(config: AgentConfig, generation: GenerationResult) -> RunResult:
    if config.require_structured_output:
        # The final tool call's arguments are the payload.
        last_call = generation.tool_calls[-1] if generation.tool_calls else None
        return StructuredRunResult(
            tool_calls=generation.tool_calls,
            tool_results=generation.tool_results,
            structured_output=dict(last_call.args) if last_call else None,
            finish_reason=generation.finish_reason,
            usage=generation.usage,
        )
    return TextRunResult(
        text=generation.text,
        tool_calls=generation.tool_calls,
        tool_results=generation.tool_results,
        finish_reason=generation.finish_reason,
        usage=generation.usage,
    )


def _summary(result: RunResult) -> Dict[str, Any]:
    summary: Dict[str, Any] = {
        "toolCalls": [call.model_dump() for call in result.tool_calls],
        "finishReason": result.finish_reason.value,
    }
    if isinstance(result, StructuredRunResult):
        summary["structuredOutput"] = result.structured_output
    else:
        summary["text"] = result.text
    return summary


async def stream_agent(
    config: AgentConfig,
    history: Sequence[Message] = (),
    user_input: Optional[str] = None,
    context: Optional[ExecutionContext] = None,
) -> AsyncIterator[AgentEvent]:
    """
    Run *config* and yield its events; the last event is :class:`RunCompleted`.

    *user_input*, when given, is appended to *history* as a new user turn.
    """
    context = context or ExecutionContext()
    sink = context.sink
    messages = list(history)
    if user_input is not None:
        messages.append(Message(role="user", content=user_input))
    prompt = messages[-1].content if messages else ""

    run_input = {
        "systemPrompt": config.system_prompt,
        "userPrompt": prompt,
        "tools": list(config.tools),
    }
    if context.owns_trace:
        sink.start_trace(
            context.trace_id,
            name=f"{config.name}-trace",
            input=run_input,
            metadata={
                **context.metadata,
                "parentTraceId": context.parent_trace_id,
                "isServerless": context.serverless,
                "requireStructuredOutput": config.require_structured_output,
                "maxSteps": config.max_steps,
            },
            user_id=context.user_id,
        )
    root_span = sink.start_span(
        config.name, parent_id=context.parent_span_id, input=run_input, trace_id=context.trace_id
    )

    cache = ToolResultCache()
    tools = wrap_tools(config.tools, cache, context=context, parent_span_id=root_span)
    logger.info("Starting agent run: %s (%d messages)", config.name, len(messages))

    generation: Optional[GenerationResult] = None
    try:
        async for event in stream_generation(
            config.model,
            config.system_prompt,
            messages,
            tools,
            max_steps=config.max_steps,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            abort_signal=context.abort_signal,
            tool_choice="required" if config.require_structured_output else "auto",
        ):
            if isinstance(event, GenerationFinished):
                generation = event.result
                continue
            if isinstance(event, StepFinished):
                logger.debug("Agent %s finished step %d", config.name, event.index)
                sink.generation(
                    f"{config.name}-step-{event.index}",
                    input={"step": event.index},
                    output={"text": event.step.text, "tokens": event.step.usage.total_tokens},
                    trace_id=context.trace_id,
                    parent_id=root_span,
                    model=config.model_id,
                )
            yield event

        if generation is None:
            raise GenerationError(f"Agent '{config.name}' produced no result")
        result = _build_result(config, generation)

        for tool_result in result.tool_results:
            sink.generation(
                f"tool-call-{tool_result.tool_name}",
                input=tool_result.args,
                output=tool_result.result,
                trace_id=context.trace_id,
                parent_id=root_span,
                model=config.model_id,
                metadata={
                    "maxSteps": config.max_steps,
                    "requireStructuredOutput": config.require_structured_output,
                },
            )
        summary = _summary(result)
        sink.end_span(root_span, output=summary)
        if context.owns_trace:
            sink.update_trace(context.trace_id, summary)
        logger.info(
            "Agent %s finished: reason=%s tool_calls=%d cached=%d",
            config.name,
            result.finish_reason.value,
            len(result.tool_calls),
            len(cache),
        )
        yield RunCompleted(result)

    except asyncio.CancelledError:
        sink.end_span(root_span, output={"error": "cancelled"}, status=SpanStatus.ERROR)
        raise
    except GeneratorExit:
        logger.warning("Agent %s stream closed before completion", config.name)
        sink.end_span(root_span, output={"error": "stream closed"}, status=SpanStatus.ERROR)
        raise
    except Exception as exc:
        logger.error("Agent %s failed: %s", config.name, exc)
        sink.end_span(root_span, output={"error": str(exc)}, status=SpanStatus.ERROR)
        raise
    finally:
        if context.should_flush:
            await asyncio.shield(sink.flush())


async def run_agent(
    config: AgentConfig,
    history: Sequence[Message] = (),
    user_input: Optional[str] = None,
    context: Optional[ExecutionContext] = None,
) -> RunResult:
    """Run *config* to completion and return its result."""
    result: Optional[RunResult] = None
    async for event in stream_agent(config, history, user_input, context):
        if isinstance(event, RunCompleted):
            result = event.result
    if result is None:
        raise GenerationError(f"Agent '{config.name}' produced no result")
    return result


class Agent:
    """A configured agent. Built with :func:`create_agent`."""

    def __init__(self, config: AgentConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    async def run(
        self,
        history: Sequence[Message] = (),
        user_input: Optional[str] = None,
        context: Optional[ExecutionContext] = None,
    ) -> RunResult:
        return await run_agent(self.config, history, user_input, context)

    def stream(
        self,
        history: Sequence[Message] = (),
        user_input: Optional[str] = None,
        context: Optional[ExecutionContext] = None,
    ) -> AsyncIterator[AgentEvent]:
        return stream_agent(self.config, history, user_input, context)


def create_agent(config: AgentConfig) -> Agent:
    return Agent(config)
