"""
Streaming adapter: turns runner events into discriminated chunks.

Chunks are what consoles and HTTP clients consume.  They arrive in step-completion order,
``agent-complete`` is always last, and an ``error`` chunk ends the stream early.
"""

import json
import logging
import sys
from contextlib import aclosing
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Literal,
    Optional,
    Sequence,
    TextIO,
)

from pydantic import BaseModel

from contentflow.agent.context import ExecutionContext
from contentflow.agent.engine import (
    StepFinished,
    TextDelta,
    ToolFinished,
    ToolStarted,
)
from contentflow.agent.runner import (
    Agent,
    AgentEvent,
    RunCompleted,
)
from contentflow.common import (
    AnsiColors,
    colored_print,
)
from contentflow.core.errors import GenerationError
from contentflow.core.schema import (
    Message,
    RunResult,
    StructuredRunResult,
    TextRunResult,
)

logger = logging.getLogger(__name__)

ChunkType = Literal["text", "tool-start", "tool-end", "step-complete", "agent-complete", "error"]


class AgentChunk(BaseModel):
    """One unit of incremental output."""

    type: ChunkType
    content: Any = None


ChunkCallback = Callable[[AgentChunk], None]


def to_chunk(event: AgentEvent) -> AgentChunk:
    """Map a runner event onto the chunk protocol."""
    if isinstance(event, TextDelta):
        return AgentChunk(type="text", content=event.text)
    if isinstance(event, ToolStarted):
        return AgentChunk(
            type="tool-start",
            content={
                "name": event.call.tool_name,
                "args": event.call.args,
                "toolCallId": event.call.tool_call_id,
            },
        )
    if isinstance(event, ToolFinished):
        return AgentChunk(
            type="tool-end",
            content={
                "name": event.result.tool_name,
                "result": event.result.result,
                "isError": event.result.is_error,
                "toolCallId": event.result.tool_call_id,
            },
        )
    if isinstance(event, StepFinished):
        return AgentChunk(
            type="step-complete",
            content={"text": event.step.text, "tokens": event.step.usage.total_tokens},
        )
    result = event.result
    return AgentChunk(
        type="agent-complete",
        content={
            "reason": result.finish_reason.value,
            "output": result.model_dump(mode="json"),
            "usage": {
                "promptTokens": result.usage.prompt_tokens,
                "completionTokens": result.usage.completion_tokens,
            },
        },
    )


def error_chunk(exc: BaseException) -> AgentChunk:
    return AgentChunk(type="error", content={"message": str(exc), "errorType": type(exc).__name__})


async def stream_chunks(
    agent: Agent,
    history: Sequence[Message] = (),
    user_input: Optional[str] = None,
    context: Optional[ExecutionContext] = None,
) -> AsyncIterator[AgentChunk]:
    """
    Run *agent* and yield chunks.

    A failure is yielded as a final ``error`` chunk instead of being raised, so a consumer that
    only reads the stream still learns why it ended.
    """
    try:
        async with aclosing(agent.stream(history, user_input, context)) as events:
            async for event in events:
                yield to_chunk(event)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Streaming run of %s failed: %s", agent.name, exc)
        yield error_chunk(exc)


def render_chunk(chunk: AgentChunk, output: TextIO | None = None) -> None:
    """Write a chunk to a console: text verbatim, tool activity in color."""
    out = output or sys.stdout
    if chunk.type == "text":
        out.write(str(chunk.content))
        out.flush()
    elif chunk.type == "tool-start":
        text = f"\n[{chunk.content['name']}] {chunk.content['args']}"
        colored_print(text, AnsiColors.GREY, file=out)
    elif chunk.type == "tool-end":
        color = AnsiColors.RED if chunk.content["isError"] else AnsiColors.GREEN
        colored_print(f"[{chunk.content['name']}] {chunk.content['result']}", color, file=out)
    elif chunk.type == "error":
        colored_print(f"⚠️ {chunk.content['message']}", AnsiColors.RED, file=out)


def format_response(result: Optional[RunResult]) -> str:
    """Human-readable summary of a run: its text followed by its tool results."""
    if result is None:
        return "No response received"
    output = []
    if isinstance(result, TextRunResult) and result.text:
        output.append(result.text)
    if result.tool_results:
        results = [r.model_dump(mode="json") for r in result.tool_results]
        output.append(f"Tool Results: {json.dumps(results, indent=2, default=str)}")
    return "\n".join(output) or "No text content in response"


def format_structured_response(payload: Any) -> str:
    """Pretty-print a structured payload; JSON strings are re-indented, other strings kept."""
    if payload is None or payload == "":
        return "No response received"
    if isinstance(payload, StructuredRunResult):
        payload = payload.structured_output
    if isinstance(payload, str):
        try:
            return json.dumps(json.loads(payload), indent=2)
        except json.JSONDecodeError:
            return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    return json.dumps(payload, indent=2, default=str)


async def run_streaming(
    agent: Agent,
    history: Sequence[Message] = (),
    user_input: Optional[str] = None,
    context: Optional[ExecutionContext] = None,
    output: TextIO | None = None,
    on_chunk: Optional[ChunkCallback] = None,
) -> RunResult:
    """
    Run *agent*, rendering chunks as they arrive, and return the final result.

    *on_chunk* replaces console rendering when given.  Errors are reported as an ``error`` chunk
    and then re-raised.
    """
    emit: ChunkCallback = on_chunk or (lambda chunk: render_chunk(chunk, output))
    result: Optional[RunResult] = None
    try:
        async with aclosing(agent.stream(history, user_input, context)) as events:
            async for event in events:
                emit(to_chunk(event))
                if isinstance(event, RunCompleted):
                    result = event.result
    except Exception as exc:
        emit(error_chunk(exc))
        raise

    if result is None:
        raise GenerationError(f"Agent '{agent.name}' produced no result")
    return result


async def encode_data_stream(chunks: AsyncIterator[AgentChunk]) -> AsyncIterator[str]:
    """
    Serialise chunks as newline-delimited JSON, ending with a ``finish`` marker.

    The marker carries ``{"finishReason", "usage": {"promptTokens", "completionTokens"}}``.
    """
    finish_reason = "unknown"
    usage = {"promptTokens": 0, "completionTokens": 0}
    async for chunk in chunks:
        if chunk.type == "agent-complete":
            finish_reason = chunk.content["reason"]
            usage = chunk.content["usage"]
        elif chunk.type == "error":
            finish_reason = "error"
        yield json.dumps({"type": chunk.type, "content": chunk.content}, default=str) + "\n"

    marker = {"type": "finish", "content": {"finishReason": finish_reason, "usage": usage}}
    yield json.dumps(marker) + "\n"
