"""Test doubles: scripted model backends and trace sinks."""

import json
import re
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
)

from contentflow.agent.providers import (
    LanguageModel,
    ModelRef,
    ModelStep,
    ToolSpec,
)
from contentflow.agent.tracing import TraceSink
from contentflow.core.schema import (
    FinishReason,
    Message,
    Span,
    StepResult,
    ToolCall,
    Usage,
)

STEP_USAGE = Usage(prompt_tokens=10, completion_tokens=5)


def text_step(text: str, finish_reason: FinishReason = FinishReason.STOP) -> ModelStep:
    return ModelStep(text=text, finish_reason=finish_reason, usage=STEP_USAGE)


def call_step(*calls: ToolCall, text: str = "") -> ModelStep:
    return ModelStep(
        text=text, tool_calls=list(calls), finish_reason=FinishReason.TOOL_CALLS, usage=STEP_USAGE
    )


class ScriptedModel(LanguageModel):
    """
    Replays a fixed list of replies, one per step.

    A reply may be a :class:`ModelStep`, an exception to raise, or an async callable returning a
    step.  Once the script is exhausted every step answers with empty text.
    """

    def __init__(self, *replies: Any):
        super().__init__(ModelRef(provider="scripted", name="test"))
        self.replies = list(replies)
        self.calls: List[Dict[str, Any]] = []

    async def step(
        self,
        system: str,
        history: Sequence[Message],
        steps: Sequence[StepResult],
        tools: Sequence[ToolSpec],
        temperature: float,
        max_tokens: int,
        tool_choice: str = "auto",
    ) -> ModelStep:
        self.calls.append(
            {
                "system": system,
                "history": list(history),
                "steps": list(steps),
                "tools": [t.name for t in tools],
                "tool_choice": tool_choice,
            }
        )
        if not self.replies:
            return text_step("")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            return await reply()
        return reply


def _strategy_args(prompt: str) -> Dict[str, Any]:
    match = re.match(r"Create a (?:content )?strategy for (\w+)(?: about: (.*))?", prompt)
    if match is None:
        return {"topic": prompt, "platform": "blog"}
    return {"topic": match.group(2) or "content", "platform": match.group(1)}


_ARGS = {
    "router_tool": lambda prompt: {"userInput": prompt},
    "research_tool": lambda prompt: {"topic": prompt.split(": ", 1)[-1]},
    "strategy_tool": _strategy_args,
    "formatter_tool": json.loads,
    "publisher_tool": json.loads,
    "content_calendar_tool": lambda prompt: {"action": "get_strategy"},
}


class PipelineModel(LanguageModel):
    """
    Behaves like a cooperative model for every pipeline agent.

    On the first step it calls the agent's only tool with arguments derived from the prompt; on
    the next step it answers with text.  Tools listed in *fail_on* make the model raise, tools in
    *silent* are never called.
    """

    def __init__(
        self,
        fail_on: Iterable[str] = (),
        silent: Iterable[str] = (),
        overrides: Optional[Dict[str, Dict[str, Any]]] = None,
    ):
        super().__init__(ModelRef(provider="scripted", name="pipeline"))
        self.fail_on = set(fail_on)
        self.silent = set(silent)
        self.overrides = overrides or {}
        self.prompts: List[tuple] = []

    async def step(
        self,
        system: str,
        history: Sequence[Message],
        steps: Sequence[StepResult],
        tools: Sequence[ToolSpec],
        temperature: float,
        max_tokens: int,
        tool_choice: str = "auto",
    ) -> ModelStep:
        tool = tools[0].name if tools else ""
        prompt = history[-1].content if history else ""
        if tool in self.fail_on:
            raise RuntimeError(f"provider unavailable for {tool}")
        if steps or not tools or tool in self.silent:
            return text_step(f"{tool} done")

        self.prompts.append((tool, prompt))
        args = self.overrides.get(tool) or _ARGS[tool](prompt)
        return call_step(ToolCall(tool_name=tool, args=args))


class RecordingSink(TraceSink):
    """Keeps every backend event in memory."""

    def __init__(self) -> None:
        super().__init__()
        self.events: List[tuple] = []
        self.spans: List[Span] = []

    def _emit_trace(self, trace_id, name, input, metadata, user_id):  # pylint: disable=W0622
        self.events.append(("trace", name, metadata))

    def _emit_span_start(self, span: Span) -> None:
        self.events.append(("span-start", span.name))

    def _emit_span_end(self, span: Span) -> None:
        self.spans.append(span)
        self.events.append(("span-end", span.name, span.status))

    def _emit_generation(self, name, input, output, trace_id, parent_id, model, metadata):
        self.events.append(("generation", name, output))

    def _emit_trace_update(self, trace_id: str, output: Any) -> None:
        self.events.append(("trace-update", trace_id))

    async def _flush(self) -> None:
        self.events.append(("flush",))

    def names(self, kind: str) -> List[str]:
        return [event[1] for event in self.events if event[0] == kind]

    @property
    def flushes(self) -> int:
        return sum(1 for event in self.events if event[0] == "flush")


class FailingSink(TraceSink):
    """A trace backend that is always down."""

    def __init__(self) -> None:
        super().__init__()
        self.attempts = 0

    def _fail(self) -> None:
        self.attempts += 1
        raise ConnectionError("trace backend unreachable")

    def _emit_trace(self, *args: Any) -> None:
        self._fail()

    def _emit_span_start(self, span: Span) -> None:
        self._fail()

    def _emit_span_end(self, span: Span) -> None:
        self._fail()

    def _emit_generation(self, *args: Any) -> None:
        self._fail()

    def _emit_trace_update(self, trace_id: str, output: Any) -> None:
        self._fail()

    async def _flush(self) -> None:
        self._fail()
