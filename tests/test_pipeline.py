"""End-to-end tests of the content pipeline against a scripted model."""

import json

import pytest
from fakes import PipelineModel
from pydantic import BaseModel

from contentflow.agent.context import ExecutionContext
from contentflow.agent.runner import (
    AgentConfig,
    create_agent,
)
from contentflow.core.errors import (
    GenerationError,
    StageError,
)
from contentflow.core.schema import (
    Platform,
    RouteAction,
    SpanStatus,
    ToolResult,
)
from contentflow.orchestrator.agents import build_agents
from contentflow.orchestrator.pipeline import (
    first_tool_result,
    orchestrate,
    parse_route,
)
from contentflow.tools import (
    Tool,
    ToolContext,
    tool_set,
)


def _stages(recorded):
    stages = []
    for stage, _ in recorded:
        if not stages or stages[-1] != stage:
            stages.append(stage)
    return stages


def _strategy_agent_returning(strategy: dict, model):
    class AnyArgs(BaseModel):
        pass

    async def fixed(args: AnyArgs, context: ToolContext) -> dict:
        return strategy

    tool = Tool(
        name="strategy_tool", description="Fixed strategy", parameters=AnyArgs, execute=fixed
    )
    config = AgentConfig(
        name="strategy",
        system_prompt="Create strategies.",
        model=model,
        tools=tool_set([tool]),
        max_steps=3,
    )
    return create_agent(config)


@pytest.mark.asyncio
async def test_linkedin_post_runs_the_full_content_workflow(pipeline_agents) -> None:
    """A LinkedIn request is routed to create_content and passes through every stage."""
    recorded = []

    result = await orchestrate(
        "Create a LinkedIn post about AI trends",
        agents=pipeline_agents,
        on_chunk=lambda stage, chunk: recorded.append((stage, chunk)),
    )

    assert result.action is RouteAction.CREATE_CONTENT
    assert result.platform is Platform.LINKEDIN
    assert result.references["references"][0].startswith("Latest trends in")
    assert result.strategy["tone"] == "professional"
    assert result.formatted_content["formattedContent"] == (
        "[LINKEDIN] Create a LinkedIn post about AI trends (in professional tone)"
    )
    assert result.published_content["status"] == "published"
    assert result.published_content["platform"] == "linkedin"
    assert result.published_content["content"] == result.formatted_content["formattedContent"]
    assert _stages(recorded) == ["router", "research", "strategy", "formatter", "publisher"]


@pytest.mark.asyncio
async def test_stage_prompts_carry_previous_outputs(pipeline_model, pipeline_agents) -> None:
    """Each stage's prompt is built from the request and the previous stage's output."""
    await orchestrate("Create a LinkedIn post about AI trends", agents=pipeline_agents)

    prompts = dict(pipeline_model.prompts)
    assert prompts["research_tool"] == "Research this topic: Create a LinkedIn post about AI trends"
    assert prompts["strategy_tool"] == (
        "Create a strategy for linkedin about: Create a LinkedIn post about AI trends"
    )
    assert json.loads(prompts["formatter_tool"]) == {
        "content": "Create a LinkedIn post about AI trends",
        "platform": "linkedin",
        "tone": "professional",
    }
    publisher_input = json.loads(prompts["publisher_tool"])
    assert publisher_input["platform"] == "linkedin"
    assert publisher_input["metadata"]["type"] == "post"


@pytest.mark.asyncio
async def test_strategy_tone_is_threaded_to_the_formatter(pipeline_model) -> None:
    """The strategy's tone shapes the formatter's output."""
    agents = build_agents(pipeline_model)
    agents["strategy"] = _strategy_agent_returning({"tone": "casual"}, pipeline_model)

    result = await orchestrate("Write a twitter thread on remote work", agents=agents)

    assert result.platform is Platform.TWITTER
    assert result.formatted_content["formattedContent"].endswith("(in casual tone)")


@pytest.mark.asyncio
async def test_missing_tone_defaults_to_professional(pipeline_model) -> None:
    """A strategy without a tone falls back to a professional tone."""
    agents = build_agents(pipeline_model)
    agents["strategy"] = _strategy_agent_returning({"keywords": ["ai"]}, pipeline_model)

    result = await orchestrate("Write a blog article about databases", agents=agents)

    assert result.platform is Platform.BLOG
    assert json.loads(dict(pipeline_model.prompts)["formatter_tool"])["tone"] == "professional"


@pytest.mark.asyncio
async def test_strategy_request_runs_only_the_strategy_stage(pipeline_agents) -> None:
    """create_strategy skips research, formatting and publishing."""
    recorded = []

    result = await orchestrate(
        "Plan a content strategy for my startup",
        agents=pipeline_agents,
        on_chunk=lambda stage, chunk: recorded.append((stage, chunk)),
    )

    assert result.action is RouteAction.CREATE_STRATEGY
    assert result.platform is Platform.TWITTER
    assert result.strategy["structure"]["format"] == "thread"
    assert result.references is None
    assert result.formatted_content is None
    assert result.published_content is None
    assert _stages(recorded) == ["router", "strategy"]


@pytest.mark.asyncio
async def test_manage_content_is_a_placeholder(pipeline_agents) -> None:
    """manage_content runs no further stages and reports the placeholder."""
    result = await orchestrate("Update my last blog post", agents=pipeline_agents)

    assert result.action is RouteAction.MANAGE_CONTENT
    assert result.strategy == {"message": "Content management workflow not implemented yet"}
    assert result.formatted_content is None


@pytest.mark.asyncio
async def test_unusable_router_output_falls_back_to_blog_content() -> None:
    """A router that never calls its tool yields create_content on the blog."""
    agents = build_agents(PipelineModel(silent={"router_tool"}))

    result = await orchestrate("Tell me something nice", agents=agents)

    assert result.action is RouteAction.CREATE_CONTENT
    assert result.platform is Platform.BLOG
    assert result.published_content["platform"] == "blog"


def test_parse_route_handles_malformed_payloads() -> None:
    """Invalid router payloads map to the fallback decision."""
    valid = ToolResult(
        tool_call_id="1",
        tool_name="router_tool",
        result={"action": "create_strategy", "platform": "twitter", "context": {}},
    )
    malformed = ToolResult(tool_call_id="2", tool_name="router_tool", result={"action": "dance"})
    failed = ToolResult(tool_call_id="3", tool_name="router_tool", result={}, is_error=True)

    assert parse_route([valid]).action is RouteAction.CREATE_STRATEGY
    fallback = parse_route([malformed])
    assert (fallback.action, fallback.platform) == (RouteAction.CREATE_CONTENT, Platform.BLOG)
    assert parse_route([failed]).action is RouteAction.CREATE_CONTENT
    assert parse_route([]).platform is Platform.BLOG
    assert first_tool_result([failed, valid]) == valid.result


@pytest.mark.asyncio
async def test_stage_failure_names_the_stage() -> None:
    """A failing stage aborts the pipeline with a StageError for that stage."""
    agents = build_agents(PipelineModel(fail_on={"research_tool"}))

    with pytest.raises(StageError) as excinfo:
        await orchestrate("Create a LinkedIn post about AI trends", agents=agents)

    assert excinfo.value.stage == "research"
    assert isinstance(excinfo.value.cause, GenerationError)
    assert str(excinfo.value).startswith("research stage failed:")


@pytest.mark.asyncio
async def test_orchestration_owns_and_flushes_the_trace_once(
    pipeline_agents, recording_sink
) -> None:
    """Stage runs nest under the orchestration span and only the orchestration flushes."""
    context = ExecutionContext(sink=recording_sink, serverless=False)

    request = "Create a LinkedIn post about AI trends"
    await orchestrate(request, context=context, agents=pipeline_agents)

    assert recording_sink.names("trace") == ["orchestration"]
    assert recording_sink.flushes == 1
    spans = {span.name: span for span in recording_sink.spans}
    orchestration = spans["orchestration"]
    assert orchestration.status is SpanStatus.SUCCESS
    for stage in ("router", "research", "strategy", "formatter", "publisher"):
        assert spans[stage].parent_id == orchestration.id
        assert spans[stage].trace_id == context.trace_id


@pytest.mark.asyncio
async def test_failed_orchestration_marks_its_span(recording_sink) -> None:
    """The orchestration span is closed with ERROR and the trace is still flushed."""
    agents = build_agents(PipelineModel(fail_on={"formatter_tool"}))
    context = ExecutionContext(sink=recording_sink, serverless=False)

    with pytest.raises(StageError):
        await orchestrate("Create a LinkedIn post about AI trends", context=context, agents=agents)

    spans = {span.name: span for span in recording_sink.spans}
    assert spans["orchestration"].status is SpanStatus.ERROR
    assert spans["formatter"].status is SpanStatus.ERROR
    assert recording_sink.flushes == 1


@pytest.mark.asyncio
async def test_broken_tracing_gives_the_same_result(failing_sink) -> None:
    """Running against a failing trace backend changes nothing observable."""
    request = "Create a LinkedIn post about AI trends"

    traced = await orchestrate(
        request, context=ExecutionContext(sink=failing_sink), agents=build_agents(PipelineModel())
    )
    untraced = await orchestrate(request, agents=build_agents(PipelineModel()))

    assert failing_sink.attempts > 0
    assert traced.action == untraced.action
    assert traced.platform == untraced.platform
    assert traced.references == untraced.references
    assert traced.strategy == untraced.strategy
    assert traced.formatted_content == untraced.formatted_content
    assert traced.published_content["status"] == untraced.published_content["status"]


@pytest.mark.asyncio
@pytest.mark.parametrize("fail_on", [set(), {"formatter_tool"}])
async def test_flush_is_the_last_sink_event(recording_sink, fail_on) -> None:
    """The final span end and trace update reach the sink before the flush."""
    agents = build_agents(PipelineModel(fail_on=fail_on))
    context = ExecutionContext(sink=recording_sink, serverless=False)

    try:
        await orchestrate("Create a LinkedIn post about AI trends", context=context, agents=agents)
    except StageError:
        assert fail_on

    assert recording_sink.flushes == 1
    assert recording_sink.events[-1] == ("flush",)
    ended = [event for event in recording_sink.events if event[0] == "span-end"]
    assert ended[-1][1] == "orchestration"
    if not fail_on:
        assert recording_sink.events[-2] == ("trace-update", context.trace_id)


@pytest.mark.asyncio
async def test_failing_backend_leaves_no_open_spans(failing_sink) -> None:
    """Spans the backend rejected are not tracked after an orchestration."""
    context = ExecutionContext(sink=failing_sink, serverless=False)

    await orchestrate(
        "Create a LinkedIn post about AI trends",
        context=context,
        agents=build_agents(PipelineModel()),
    )

    assert failing_sink.attempts > 0
    assert failing_sink._open_spans == {}  # pylint: disable=protected-access
