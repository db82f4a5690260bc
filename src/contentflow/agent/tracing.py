"""
Fault-isolated trace sink.

Every public method of :class:`TraceSink` is wrapped by :func:`fault_isolated`: any exception
raised by the trace backend (network failure, bad credentials, serialisation error) is logged and
swallowed, and the method returns a default value.  Instrumentation failures must have no effect
on agent results.

:class:`NullSink` is the "no tracing configured" sink; :class:`LangfuseSink` forwards to Langfuse.
"""

import asyncio
import functools
import inspect
import logging
from typing import (
    Any,
    Callable,
    Dict,
    Mapping,
    Optional,
    TypeVar,
)

from contentflow.config import settings
from contentflow.core.schema import (
    Span,
    SpanStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def fault_isolated(default: Any = None) -> Callable[[F], F]:
    """Decorator: log and swallow any ``Exception`` raised by a sink method."""

    def decorator(fn: F) -> F:
        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                try:
                    return await fn(*args, **kwargs)
                except Exception as exc:  # pylint: disable=broad-except
                    logger.warning("Trace backend error in %s: %s", fn.__name__, exc)
                    return default

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return fn(*args, **kwargs)
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Trace backend error in %s: %s", fn.__name__, exc)
                return default

        return wrapper  # type: ignore[return-value]

    return decorator


class TraceSink:
    """
    Records traces, spans and generations.

    Subclasses implement the ``_emit_*`` hooks; the public methods own span bookkeeping and fault
    isolation, so a hook may raise freely.
    """

    def __init__(self) -> None:
        self._open_spans: Dict[str, Span] = {}

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    @fault_isolated()
    def start_trace(
        self,
        trace_id: str,
        name: str,
        input: Any = None,  # pylint: disable=redefined-builtin
        metadata: Mapping[str, Any] | None = None,
        user_id: str | None = None,
    ) -> Optional[str]:
        """Create a new trace; returns its id, or None if the backend failed."""
        self._emit_trace(trace_id, name, input, dict(metadata or {}), user_id)
        return trace_id

    @fault_isolated()
    def start_span(
        self,
        name: str,
        parent_id: str | None = None,
        input: Any = None,  # pylint: disable=redefined-builtin
        trace_id: str | None = None,
    ) -> Optional[str]:
        """Open a span and return its id."""
        span = Span(name=name, trace_id=trace_id, parent_id=parent_id, input=input)
        self._emit_span_start(span)
        # Only spans the backend accepted can be ended later.
        self._open_spans[span.id] = span
        return span.id

    @fault_isolated()
    def end_span(
        self,
        span_id: str | None,
        output: Any = None,
        status: SpanStatus = SpanStatus.SUCCESS,
    ) -> None:
        """Close a span opened by :meth:`start_span`. Unknown ids are ignored."""
        if span_id is None:
            return
        span = self._open_spans.pop(span_id, None)
        if span is None:
            logger.debug("end_span called for unknown span %s", span_id)
            return
        span.output = output
        span.status = status
        span.end_time = utcnow()
        self._emit_span_end(span)

    @fault_isolated()
    def generation(
        self,
        name: str,
        input: Any = None,  # pylint: disable=redefined-builtin
        output: Any = None,
        trace_id: str | None = None,
        parent_id: str | None = None,
        model: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        """Record a model (or tool) generation."""
        self._emit_generation(name, input, output, trace_id, parent_id, model, dict(metadata or {}))

    @fault_isolated()
    def update_trace(self, trace_id: str, output: Any) -> None:
        """Attach the final output to a trace."""
        self._emit_trace_update(trace_id, output)

    @fault_isolated()
    async def flush(self) -> None:
        """Push buffered events to the backend; await before a short-lived process exits."""
        await self._flush()

    # ------------------------------------------------------------------ #
    # Backend hooks
    # ------------------------------------------------------------------ #
    def _emit_trace(
        self, trace_id: str, name: str, input: Any, metadata: Dict[str, Any], user_id: str | None
    ) -> None:  # pylint: disable=redefined-builtin
        pass

    def _emit_span_start(self, span: Span) -> None:
        pass

    def _emit_span_end(self, span: Span) -> None:
        pass

    def _emit_generation(
        self,
        name: str,
        input: Any,  # pylint: disable=redefined-builtin
        output: Any,
        trace_id: str | None,
        parent_id: str | None,
        model: str | None,
        metadata: Dict[str, Any],
    ) -> None:
        pass

    def _emit_trace_update(self, trace_id: str, output: Any) -> None:
        pass

    async def _flush(self) -> None:
        pass


class NullSink(TraceSink):
    """Sink used when tracing is not configured: every operation is a no-op."""

    def start_trace(self, trace_id: str, name: str, *args: Any, **kwargs: Any) -> Optional[str]:
        return None

    def start_span(self, name: str, *args: Any, **kwargs: Any) -> Optional[str]:
        return None

    def end_span(self, span_id: str | None, *args: Any, **kwargs: Any) -> None:
        return None

    def generation(self, name: str, *args: Any, **kwargs: Any) -> None:
        return None

    def update_trace(self, trace_id: str, output: Any) -> None:
        return None

    async def flush(self) -> None:
        return None


class LangfuseSink(TraceSink):
    """Forwards spans and generations to a Langfuse client (v2 low-level API)."""

    def __init__(self, client: Any):
        super().__init__()
        self._client = client
        self._observations: Dict[str, Any] = {}

    def _emit_trace(
        self, trace_id: str, name: str, input: Any, metadata: Dict[str, Any], user_id: str | None
    ) -> None:  # pylint: disable=redefined-builtin
        self._client.trace(id=trace_id, name=name, input=input, metadata=metadata, user_id=user_id)

    def _emit_span_start(self, span: Span) -> None:
        self._observations[span.id] = self._client.span(
            id=span.id,
            trace_id=span.trace_id,
            parent_observation_id=span.parent_id,
            name=span.name,
            input=span.input,
            start_time=span.start_time,
        )

    def _emit_span_end(self, span: Span) -> None:
        observation = self._observations.pop(span.id, None)
        if observation is None:
            return
        if span.status is SpanStatus.ERROR:
            observation.end(
                output=span.output, end_time=span.end_time, level="ERROR", status_message="Error"
            )
        else:
            observation.end(output=span.output, end_time=span.end_time)

    def _emit_generation(
        self,
        name: str,
        input: Any,  # pylint: disable=redefined-builtin
        output: Any,
        trace_id: str | None,
        parent_id: str | None,
        model: str | None,
        metadata: Dict[str, Any],
    ) -> None:
        self._client.generation(
            trace_id=trace_id,
            parent_observation_id=parent_id,
            name=name,
            model=model,
            input=input,
            output=output,
            metadata=metadata,
        )

    def _emit_trace_update(self, trace_id: str, output: Any) -> None:
        # Langfuse upserts traces by id.
        self._client.trace(id=trace_id, output=output)

    async def _flush(self) -> None:
        # The SDK flush blocks on its background worker.
        await asyncio.to_thread(self._client.flush)


def load_sink() -> TraceSink:
    """
    Build the sink described by the settings.

    Returns a :class:`LangfuseSink` when both Langfuse keys are configured, otherwise (or if the
    client cannot be created) a :class:`NullSink`.
    """
    if not (settings.LANGFUSE_PUBLIC_KEY and settings.LANGFUSE_SECRET_KEY):
        logger.debug("Langfuse keys not configured; tracing disabled")
        return NullSink()

    try:
        from langfuse import Langfuse  # pylint: disable=import-outside-toplevel

        client = Langfuse(
            public_key=settings.LANGFUSE_PUBLIC_KEY,
            secret_key=settings.LANGFUSE_SECRET_KEY,
            host=settings.LANGFUSE_HOST,
        )
    except Exception as exc:  # pylint: disable=broad-except
        logger.warning("Failed to initialise Langfuse, tracing disabled: %s", exc)
        return NullSink()

    logger.info("Langfuse tracing enabled")
    return LangfuseSink(client)
