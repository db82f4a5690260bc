"""
Generation engine: the step loop around a model backend.

Each step asks the model for text and/or tool calls.  Requested tool calls are dispatched
concurrently, their results (or errors) are fed back on the next step, and the loop ends when the
model answers without calling a tool, calls a terminal tool, or the step budget is spent.  The
loop is an async generator of events so callers can render progress as it happens.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    List,
    Mapping,
    Sequence,
    TypeVar,
    Union,
)

from pydantic import (
    BaseModel,
    Field,
)

from contentflow.agent.providers import (
    LanguageModel,
    ModelRef,
    ToolSpec,
    load_model,
)
from contentflow.agent.tool_executor import MemoizedTool
from contentflow.core.errors import (
    GenerationCancelledError,
    GenerationError,
    InvalidArgumentsError,
    ToolExecutionError,
)
from contentflow.core.schema import (
    FinishReason,
    Message,
    StepResult,
    ToolCall,
    ToolResult,
    Usage,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolStarted:
    call: ToolCall


@dataclass(frozen=True)
class ToolFinished:
    result: ToolResult


@dataclass(frozen=True)
class StepFinished:
    index: int
    step: StepResult


class GenerationResult(BaseModel):
    """Everything a finished generation produced."""

    text: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_results: List[ToolResult] = Field(default_factory=list)
    finish_reason: FinishReason = FinishReason.UNKNOWN
    usage: Usage = Field(default_factory=Usage)
    steps: List[StepResult] = Field(default_factory=list)


@dataclass(frozen=True)
class GenerationFinished:
    result: GenerationResult


EngineEvent = Union[TextDelta, ToolStarted, ToolFinished, StepFinished, GenerationFinished]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
async def _abortable(aw: Awaitable[T], abort_signal: asyncio.Event | None) -> T:
    """Await *aw*, abandoning it if *abort_signal* fires first."""
    if abort_signal is None:
        return await aw

    task = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(abort_signal.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if task in done:
            return task.result()
        raise GenerationCancelledError("Generation aborted")
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()


def _check_abort(abort_signal: asyncio.Event | None) -> None:
    if abort_signal is not None and abort_signal.is_set():
        raise GenerationCancelledError("Generation aborted")


async def _invoke(tools: Mapping[str, MemoizedTool], call: ToolCall) -> ToolResult:
    """Run one tool call; validation and tool errors become error results for the model."""
    tool = tools.get(call.tool_name)
    if tool is None:
        logger.warning("Model requested unknown tool '%s'", call.tool_name)
        return ToolResult(
            tool_call_id=call.tool_call_id,
            tool_name=call.tool_name,
            args=call.args,
            result={"error": f"Tool '{call.tool_name}' is not available."},
            is_error=True,
        )

    try:
        result: Any = await tool.execute(call.args)
    except (InvalidArgumentsError, ToolExecutionError) as exc:
        logger.warning("Tool call %s failed: %s", call.tool_name, exc)
        return ToolResult(
            tool_call_id=call.tool_call_id,
            tool_name=call.tool_name,
            args=call.args,
            result={"error": str(exc)},
            is_error=True,
        )
    return ToolResult(
        tool_call_id=call.tool_call_id, tool_name=call.tool_name, args=call.args, result=result
    )


# ---------------------------------------------------------------------------
# Step loop
# ---------------------------------------------------------------------------
async def stream_generation(
    model: ModelRef | LanguageModel,
    system: str,
    messages: Sequence[Message],
    tools: Mapping[str, MemoizedTool],
    max_steps: int = 3,
    temperature: float = 0.7,
    max_tokens: int = 4096,
    abort_signal: asyncio.Event | None = None,
    tool_choice: str = "auto",
) -> AsyncIterator[EngineEvent]:
    """
    Drive *model* until it stops calling tools or *max_steps* round trips have been made.

    *tool_choice* is passed to every model call; ``"required"`` forces a tool call per step.

    Yields events in completion order and always ends with :class:`GenerationFinished`.

    Raises
    ------
    GenerationCancelledError
        If *abort_signal* is set before or during a step.
    GenerationError
        If the model backend fails.
    """
    if max_steps < 1:
        raise ValueError("max_steps must be >= 1")

    backend = load_model(model)
    specs = [
        ToolSpec(name=t.name, description=t.description, parameters=t.json_schema())
        for t in tools.values()
    ]
    steps: List[StepResult] = []

    for index in range(max_steps):
        _check_abort(abort_signal)
        try:
            model_step = await _abortable(
                backend.step(system, messages, steps, specs, temperature, max_tokens, tool_choice),
                abort_signal,
            )
        except GenerationCancelledError:
            raise
        except Exception as exc:
            raise GenerationError(f"Model call failed ({backend.model_id}): {exc}") from exc

        if model_step.text:
            yield TextDelta(model_step.text)

        results: List[ToolResult] = []
        if model_step.tool_calls:
            for call in model_step.tool_calls:
                yield ToolStarted(call)
            gathered = asyncio.gather(*(_invoke(tools, call) for call in model_step.tool_calls))
            results = list(await _abortable(gathered, abort_signal))
            for result in results:
                yield ToolFinished(result)

        step = StepResult(
            text=model_step.text,
            tool_calls=model_step.tool_calls,
            tool_results=results,
            finish_reason=model_step.finish_reason,
            usage=model_step.usage,
        )
        steps.append(step)
        yield StepFinished(index=index, step=step)

        if not model_step.tool_calls:
            break
        if any(
            call.tool_name in tools and tools[call.tool_name].terminal
            for call in model_step.tool_calls
        ):
            break
    else:
        logger.info("Step budget of %d exhausted", max_steps)

    usage = Usage()
    for step in steps:
        usage = usage + step.usage
    yield GenerationFinished(
        GenerationResult(
            text=steps[-1].text if steps else "",
            tool_calls=[call for step in steps for call in step.tool_calls],
            tool_results=[result for step in steps for result in step.tool_results],
            finish_reason=steps[-1].finish_reason if steps else FinishReason.UNKNOWN,
            usage=usage,
            steps=steps,
        )
    )


async def generate(
    model: ModelRef | LanguageModel,
    system: str,
    messages: Sequence[Message],
    tools: Mapping[str, MemoizedTool],
    max_steps: int = 3,
    temperature: float = 0.7,
    max_tokens: int = 4096,
    abort_signal: asyncio.Event | None = None,
    tool_choice: str = "auto",
) -> GenerationResult:
    """Run :func:`stream_generation` to completion and return its result."""
    async for event in stream_generation(
        model,
        system,
        messages,
        tools,
        max_steps,
        temperature,
        max_tokens,
        abort_signal,
        tool_choice,
    ):
        if isinstance(event, GenerationFinished):
            return event.result
    raise GenerationError("Generation produced no result")
