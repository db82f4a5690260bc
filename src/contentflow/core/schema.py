"""
Schema definitions for agent <-> model <-> tool <-> pipeline messages.

These data models serve as the contract between the generation engine, the agent runner, the
pipeline and the HTTP layer.  We keep them separate from runtime logic so they can be imported
anywhere without side-effects.
"""

import uuid
from datetime import (
    datetime,
    timezone,
)
from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    """Timezone-aware current time, used for span timestamps."""
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------
class Message(BaseModel):
    """One entry of a conversation history."""

    role: Literal["user", "assistant", "system"]
    content: str
    id: str = Field(default_factory=_new_id)


# ---------------------------------------------------------------------------
# Tool calls / results
# ---------------------------------------------------------------------------
class ToolCall(BaseModel):
    """A call that the model wants the agent to execute."""

    tool_call_id: str = Field(default_factory=_new_id)
    tool_name: str = Field(..., description="Registered tool name")
    args: Dict[str, Any] = Field(default_factory=dict, description="Arguments for the tool")


class ToolResult(BaseModel):
    """Outcome of one tool call, fed back to the model on the next step."""

    tool_call_id: str
    tool_name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    is_error: bool = False


class FinishReason(str, Enum):
    """Why a generation step (or a whole run) stopped."""

    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content-filter"
    TOOL_CALLS = "tool-calls"
    ERROR = "error"
    OTHER = "other"
    UNKNOWN = "unknown"


class Usage(BaseModel):
    """Token accounting reported by the provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


class StepResult(BaseModel):
    """One model-generates-then-optionally-calls-tools round trip."""

    text: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_results: List[ToolResult] = Field(default_factory=list)
    finish_reason: FinishReason = FinishReason.UNKNOWN
    usage: Usage = Field(default_factory=Usage)


# ---------------------------------------------------------------------------
# Agent run results
# ---------------------------------------------------------------------------
class TextRunResult(BaseModel):
    """Result of a run in free-form mode."""

    kind: Literal["text"] = "text"
    text: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_results: List[ToolResult] = Field(default_factory=list)
    finish_reason: FinishReason = FinishReason.UNKNOWN
    usage: Usage = Field(default_factory=Usage)


class StructuredRunResult(BaseModel):
    """Result of a run whose payload is the arguments of its final tool call."""

    kind: Literal["structured"] = "structured"
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_results: List[ToolResult] = Field(default_factory=list)
    structured_output: Optional[Dict[str, Any]] = None
    finish_reason: FinishReason = FinishReason.UNKNOWN
    usage: Usage = Field(default_factory=Usage)


RunResult = Union[TextRunResult, StructuredRunResult]


# ---------------------------------------------------------------------------
# Tracing
# ---------------------------------------------------------------------------
class SpanStatus(str, Enum):
    """Lifecycle status of a span."""

    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class Span(BaseModel):
    """A named, timed record of one unit of work."""

    id: str = Field(default_factory=_new_id)
    name: str
    trace_id: Optional[str] = None
    parent_id: Optional[str] = None
    input: Any = None
    output: Any = None
    status: SpanStatus = SpanStatus.RUNNING
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------
class Platform(str, Enum):
    """Publishing targets understood by the pipeline."""

    LINKEDIN = "linkedin"
    TWITTER = "twitter"
    BLOG = "blog"


class RouteAction(str, Enum):
    """Workflows the router can select."""

    CREATE_STRATEGY = "create_strategy"
    CREATE_CONTENT = "create_content"
    MANAGE_CONTENT = "manage_content"


class RoutingContext(BaseModel):
    """Extra details the router extracted from the request."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    topic: Optional[str] = None
    existing_strategy_id: Optional[str] = Field(None, alias="existingStrategyId")
    content_id: Optional[str] = Field(None, alias="contentId")
    requirements: Optional[List[str]] = None


class RoutingDecision(BaseModel):
    """Structured classification of a user request into one pipeline workflow."""

    model_config = ConfigDict(frozen=True)

    action: RouteAction
    platform: Platform = Platform.BLOG
    context: RoutingContext = Field(default_factory=RoutingContext)

    @classmethod
    def fallback(cls) -> "RoutingDecision":
        """The most general workflow, used when the router output is unusable."""
        return cls(action=RouteAction.CREATE_CONTENT, platform=Platform.BLOG)


class OrchestrationResult(BaseModel):
    """Accumulator filled stage by stage; every stage writes exactly one field."""

    action: RouteAction
    platform: Platform
    references: Any = None
    strategy: Any = None
    formatted_content: Any = None
    published_content: Any = None
