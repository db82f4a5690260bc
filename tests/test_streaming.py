"""Tests for the chunk protocol and its NDJSON encoding."""

import io
import json

import pytest
from fakes import (
    ScriptedModel,
    call_step,
    text_step,
)
from pydantic import BaseModel

from contentflow.agent.context import ExecutionContext
from contentflow.agent.runner import (
    AgentConfig,
    create_agent,
)
from contentflow.agent.streaming import (
    AgentChunk,
    encode_data_stream,
    format_response,
    format_structured_response,
    render_chunk,
    run_streaming,
    stream_chunks,
)
from contentflow.common import AnsiColors
from contentflow.core.errors import GenerationError
from contentflow.core.schema import (
    SpanStatus,
    StructuredRunResult,
    TextRunResult,
    ToolCall,
    ToolResult,
)
from contentflow.tools import (
    Tool,
    ToolContext,
    tool_set,
)


class EchoArgs(BaseModel):
    text: str


async def _echo(args: EchoArgs, context: ToolContext) -> str:
    return args.text


ECHO = Tool(name="echo", description="Echo text", parameters=EchoArgs, execute=_echo)


def _agent(*replies):
    config = AgentConfig(
        name="echoer",
        system_prompt="Echo things.",
        model=ScriptedModel(*replies),
        tools=tool_set([ECHO]),
        max_steps=3,
    )
    return create_agent(config)


async def _collect(chunks):
    return [chunk async for chunk in chunks]


@pytest.mark.asyncio
async def test_chunks_arrive_in_step_order() -> None:
    """Tool activity, step boundaries and text come in order, agent-complete last."""
    agent = _agent(
        call_step(ToolCall(tool_name="echo", args={"text": "ping"})), text_step("pong")
    )

    chunks = await _collect(stream_chunks(agent, user_input="Say ping"))

    assert [c.type for c in chunks] == [
        "tool-start",
        "tool-end",
        "step-complete",
        "text",
        "step-complete",
        "agent-complete",
    ]
    assert chunks[0].content["name"] == "echo"
    assert chunks[1].content["result"] == "ping"
    assert chunks[3].content == "pong"
    complete = chunks[-1].content
    assert complete["reason"] == "stop"
    assert complete["output"]["text"] == "pong"
    assert complete["usage"] == {"promptTokens": 20, "completionTokens": 10}


@pytest.mark.asyncio
async def test_failure_is_reported_as_final_error_chunk() -> None:
    """stream_chunks never raises: a failure becomes the last chunk."""
    agent = _agent(RuntimeError("provider exploded"))

    chunks = await _collect(stream_chunks(agent, user_input="Go"))

    assert [c.type for c in chunks] == ["error"]
    assert "provider exploded" in chunks[0].content["message"]
    assert chunks[0].content["errorType"] == "GenerationError"


@pytest.mark.asyncio
async def test_run_streaming_reports_then_reraises() -> None:
    """The callback sees the error chunk and the caller sees the exception."""
    seen = []
    agent = _agent(RuntimeError("provider exploded"))

    with pytest.raises(GenerationError):
        await run_streaming(agent, user_input="Go", on_chunk=seen.append)

    assert [c.type for c in seen] == ["error"]


@pytest.mark.asyncio
async def test_run_streaming_returns_the_result() -> None:
    """Every chunk reaches the callback and the final result is returned."""
    seen = []
    result = await run_streaming(_agent(text_step("hello")), user_input="Hi", on_chunk=seen.append)

    assert result.text == "hello"
    assert seen[-1].type == "agent-complete"


@pytest.mark.asyncio
async def test_run_streaming_renders_to_console_by_default(capsys) -> None:
    """Without a callback, text chunks are written to the console."""
    await run_streaming(_agent(text_step("printed text")), user_input="Hi")

    assert "printed text" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_ndjson_stream_ends_with_finish_marker() -> None:
    """Each chunk is one JSON line and the stream ends with a finish marker."""
    agent = _agent(text_step("hi"))

    lines = await _collect(encode_data_stream(stream_chunks(agent, user_input="Go")))
    payloads = [json.loads(line) for line in lines]

    assert all(line.endswith("\n") for line in lines)
    assert [p["type"] for p in payloads] == ["text", "step-complete", "agent-complete", "finish"]
    assert payloads[-1]["content"] == {
        "finishReason": "stop",
        "usage": {"promptTokens": 10, "completionTokens": 5},
    }


@pytest.mark.asyncio
async def test_ndjson_finish_marker_after_error() -> None:
    """An errored stream still terminates with a finish marker."""

    async def chunks():
        yield AgentChunk(type="error", content={"message": "boom"})

    payloads = [json.loads(line) for line in await _collect(encode_data_stream(chunks()))]

    assert payloads[-1] == {
        "type": "finish",
        "content": {"finishReason": "error", "usage": {"promptTokens": 0, "completionTokens": 0}},
    }


def test_format_response() -> None:
    """Text comes first, followed by the tool results."""
    result = TextRunResult(
        text="Here you go",
        tool_results=[ToolResult(tool_call_id="1", tool_name="echo", result="ping")],
    )

    formatted = format_response(result)

    assert formatted.startswith("Here you go\nTool Results:")
    assert '"tool_name": "echo"' in formatted
    assert format_response(None) == "No response received"
    assert format_response(TextRunResult()) == "No text content in response"


def test_format_structured_response() -> None:
    """Payloads are pretty-printed JSON; plain strings pass through."""
    result = StructuredRunResult(structured_output={"tone": "casual"})

    assert json.loads(format_structured_response(result)) == {"tone": "casual"}
    assert format_structured_response('{"a": 1}') == '{\n  "a": 1\n}'
    assert format_structured_response("plain text") == "plain text"
    assert format_structured_response(None) == "No response received"


@pytest.mark.asyncio
async def test_abandoned_chunk_stream_closes_the_run(recording_sink) -> None:
    """Closing the chunk stream early closes the underlying run as well."""
    context = ExecutionContext(sink=recording_sink, serverless=False)
    agent = _agent(call_step(ToolCall(tool_name="echo", args={"text": "x"})))
    chunks = stream_chunks(agent, user_input="Go", context=context)

    first = await chunks.__anext__()
    await chunks.aclose()

    assert first.type == "tool-start"
    (span,) = [span for span in recording_sink.spans if span.name == "echoer"]
    assert span.status is SpanStatus.ERROR


def test_render_chunk_colors_tool_activity() -> None:
    """Text is written verbatim; tool results are colored by outcome."""
    out = io.StringIO()

    render_chunk(AgentChunk(type="text", content="Hello"), out)
    render_chunk(
        AgentChunk(type="tool-end", content={"name": "echo", "result": "x", "isError": False}), out
    )
    render_chunk(
        AgentChunk(type="tool-end", content={"name": "echo", "result": "y", "isError": True}), out
    )

    assert out.getvalue().startswith("Hello")
    assert f"{AnsiColors.GREEN.value}[echo] x\033[0m\n" in out.getvalue()
    assert f"{AnsiColors.RED.value}[echo] y\033[0m\n" in out.getvalue()
