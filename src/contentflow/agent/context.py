"""Execution context threaded explicitly through runner and pipeline calls."""

import asyncio
import dataclasses
import uuid
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    Dict,
    Optional,
)

from contentflow.agent.tracing import (
    NullSink,
    TraceSink,
)
from contentflow.config import settings
from contentflow.tools import ToolContext


@dataclass
class ExecutionContext:
    """
    Per-request state shared by every agent run of one top-level invocation.

    ``owns_trace`` is True when this invocation created the trace (and must therefore flush it);
    contexts built with :meth:`child` reuse the caller's trace and never own it.
    """

    sink: TraceSink = field(default_factory=NullSink)
    trace_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    owns_trace: bool = True
    serverless: bool = field(default_factory=lambda: settings.SERVERLESS)
    parent_span_id: Optional[str] = None
    parent_trace_id: Optional[str] = None
    abort_signal: Optional[asyncio.Event] = None
    user_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def should_flush(self) -> bool:
        return self.owns_trace or self.serverless

    def child(self, parent_span_id: str | None = None) -> "ExecutionContext":
        """Context for a nested run that records into this context's trace."""
        return dataclasses.replace(
            self,
            owns_trace=False,
            parent_span_id=parent_span_id or self.parent_span_id,
            parent_trace_id=self.trace_id,
            metadata=dict(self.metadata),
        )

    def tool_context(self) -> ToolContext:
        return ToolContext(
            abort_signal=self.abort_signal, user_id=self.user_id, metadata=dict(self.metadata)
        )
