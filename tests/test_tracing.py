"""Tests for the fault-isolated trace sink."""

import inspect
from unittest.mock import MagicMock

import pytest

from contentflow.agent import tracing
from contentflow.agent.tracing import (
    LangfuseSink,
    NullSink,
    TraceSink,
    fault_isolated,
    load_sink,
)
from contentflow.core.schema import SpanStatus


@pytest.mark.asyncio
async def test_failing_backend_never_raises(failing_sink) -> None:
    """Every public sink operation absorbs backend errors."""
    assert failing_sink.start_trace("t1", "trace") is None
    span_id = failing_sink.start_span("work", trace_id="t1")
    failing_sink.end_span(span_id, output={"ok": True})
    failing_sink.generation("gen", input="in", output="out", trace_id="t1")
    failing_sink.update_trace("t1", {"done": True})
    await failing_sink.flush()

    assert failing_sink.attempts >= 5


@pytest.mark.asyncio
async def test_null_sink_is_inert() -> None:
    """The no-tracing sink accepts every call and returns nothing."""
    sink = NullSink()
    assert sink.start_trace("t1", "trace") is None
    assert sink.start_span("work") is None
    sink.end_span(None)
    sink.generation("gen")
    sink.update_trace("t1", None)
    await sink.flush()


def test_fault_isolated_returns_default_for_sync_functions() -> None:
    """The decorator logs and swallows exceptions."""

    @fault_isolated(default="fallback")
    def broken() -> str:
        raise ValueError("boom")

    assert broken() == "fallback"


@pytest.mark.asyncio
async def test_fault_isolated_returns_default_for_coroutines() -> None:
    """Coroutine functions are isolated too."""

    @fault_isolated(default=0)
    async def broken() -> int:
        raise ValueError("boom")

    assert await broken() == 0


def test_span_bookkeeping(recording_sink) -> None:
    """end_span closes the right span and ignores unknown ids."""
    span_id = recording_sink.start_span("work", parent_id="p", input={"x": 1}, trace_id="t")
    recording_sink.end_span("unknown")
    recording_sink.end_span(span_id, output="done", status=SpanStatus.ERROR)
    recording_sink.end_span(span_id, output="twice")

    (span,) = recording_sink.spans
    assert span.id == span_id
    assert span.parent_id == "p"
    assert span.output == "done"
    assert span.status is SpanStatus.ERROR
    assert span.end_time is not None


def test_rejected_span_is_not_tracked(failing_sink) -> None:
    """A span whose start the backend rejected leaves no bookkeeping behind."""
    assert failing_sink.start_span("work", trace_id="t") is None

    assert failing_sink._open_spans == {}  # pylint: disable=protected-access


def test_flush_stays_a_coroutine_function() -> None:
    """Isolation keeps async sink methods awaitable for callers that introspect them."""
    assert inspect.iscoroutinefunction(TraceSink.flush)
    assert inspect.iscoroutinefunction(fault_isolated()(TraceSink.flush.__wrapped__))
    assert not inspect.iscoroutinefunction(TraceSink.start_span)


def test_load_sink_without_keys_disables_tracing(monkeypatch) -> None:
    """Missing Langfuse credentials yield a NullSink."""
    monkeypatch.setattr(tracing.settings, "LANGFUSE_PUBLIC_KEY", None)
    monkeypatch.setattr(tracing.settings, "LANGFUSE_SECRET_KEY", None)

    assert isinstance(load_sink(), NullSink)


@pytest.mark.asyncio
async def test_langfuse_sink_forwards_observations() -> None:
    """Spans, generations and flushes reach the Langfuse client."""
    client = MagicMock()
    sink = LangfuseSink(client)

    sink.start_trace("t1", "orchestration", input={"q": 1}, user_id="u1")
    span_id = sink.start_span("router", trace_id="t1")
    sink.end_span(span_id, output={"error": "x"}, status=SpanStatus.ERROR)
    sink.generation("router-step-0", output={"text": "hi"}, trace_id="t1", parent_id=span_id)
    await sink.flush()

    client.trace.assert_called_once()
    assert client.trace.call_args.kwargs["user_id"] == "u1"
    assert client.span.call_args.kwargs["name"] == "router"
    observation = client.span.return_value
    assert observation.end.call_args.kwargs["level"] == "ERROR"
    assert client.generation.call_args.kwargs["parent_observation_id"] == span_id
    client.flush.assert_called_once()
