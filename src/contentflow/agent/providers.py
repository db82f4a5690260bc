"""
Model providers for contentflow.

This module is the only place that *directly* calls an LLM.  Everything else (engine, runner,
tools, pipeline) stays model-agnostic and only handles :class:`ModelRef` values.

We support two back-ends out of the box:

1. **OpenAI** chat completions with function tools.
2. **Anthropic** messages with tool use.

Additional providers can be added by subclassing :class:`LanguageModel` and registering via
:func:`register_provider`.
"""

import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Sequence,
    Type,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

from contentflow.config import settings
from contentflow.core.errors import ProviderNotFoundError
from contentflow.core.schema import (
    FinishReason,
    Message,
    StepResult,
    ToolCall,
    Usage,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Capability reference and wire-level types
# ---------------------------------------------------------------------------
class ModelRef(BaseModel):
    """Identifies a provider and a model variant. Immutable and shared by reference."""

    model_config = ConfigDict(frozen=True)

    provider: str
    name: str

    @property
    def identifier(self) -> str:
        return f"{self.provider}:{self.name}"

    def __str__(self) -> str:
        return self.identifier


class ToolSpec(BaseModel):
    """What the model is told about a tool."""

    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=dict)


class ModelStep(BaseModel):
    """Raw output of one model call: text and/or requested tool calls."""

    text: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    finish_reason: FinishReason = FinishReason.UNKNOWN
    usage: Usage = Field(default_factory=Usage)


def get_model(identifier: str | None = None) -> ModelRef:
    """
    Build a :class:`ModelRef` from ``"provider:model-name"``.

    A bare model name is assumed to be an OpenAI model; ``None`` means ``settings.DEFAULT_MODEL``.
    """
    target = identifier or settings.DEFAULT_MODEL
    provider, sep, name = target.partition(":")
    if not sep:
        provider, name = "openai", target
    return ModelRef(provider=provider.lower(), name=name)


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_PROVIDER_REGISTRY: dict[str, Type["LanguageModel"]] = {}


def register_provider(name: str) -> Callable:
    """Decorator to register a provider class under *name*."""

    def wrapper(cls: Type["LanguageModel"]) -> Type["LanguageModel"]:
        _PROVIDER_REGISTRY[name] = cls
        return cls

    return wrapper


def load_model(model: "ModelRef | LanguageModel") -> "LanguageModel":
    """
    Return a ready-to-call backend for *model*.

    Instances of :class:`LanguageModel` are passed through unchanged.
    """
    if isinstance(model, LanguageModel):
        return model
    cls = _PROVIDER_REGISTRY.get(model.provider)
    if cls is None:
        raise ProviderNotFoundError(f"Provider '{model.provider}' is not registered.")
    return cls(model)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class LanguageModel(ABC):
    """Abstract backend that turns a transcript into one generation step."""

    def __init__(self, ref: ModelRef):
        self.ref = ref

    @property
    def model_id(self) -> str:
        return self.ref.identifier

    @abstractmethod
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
        """
        Generate the next step.

        *history* is the conversation so far (ending with the new user turn); *steps* are the
        steps already taken in this run, each with its tool calls and their results.
        *tool_choice* is ``"required"`` when the step must call a tool, otherwise ``"auto"``.
        """


def _dump(value: Any) -> str:
    return json.dumps(value, default=str)


# ---------------------------------------------------------------------------
# Concrete providers
# ---------------------------------------------------------------------------
_OPENAI_FINISH = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
    "content_filter": FinishReason.CONTENT_FILTER,
}


@register_provider("openai")
class OpenAIModel(LanguageModel):
    """OpenAI chat-completions backend."""

    def __init__(self, ref: ModelRef):
        super().__init__(ref)
        import openai  # pylint: disable=import-outside-toplevel

        self._client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY)

    @staticmethod
    def _messages(
        system: str, history: Sequence[Message], steps: Sequence[StepResult]
    ) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [{"role": "system", "content": system}]
        messages.extend({"role": m.role, "content": m.content} for m in history)

        for step in steps:
            assistant: Dict[str, Any] = {"role": "assistant", "content": step.text or None}
            if step.tool_calls:
                assistant["tool_calls"] = [
                    {
                        "id": call.tool_call_id,
                        "type": "function",
                        "function": {"name": call.tool_name, "arguments": _dump(call.args)},
                    }
                    for call in step.tool_calls
                ]
            messages.append(assistant)
            for result in step.tool_results:
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": result.tool_call_id,
                        "content": _dump(result.result),
                    }
                )
        return messages

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
        kwargs: Dict[str, Any] = {
            "model": self.ref.name,
            "messages": self._messages(system, history, steps),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in tools
            ]
            kwargs["tool_choice"] = tool_choice

        resp = await self._client.chat.completions.create(**kwargs)
        choice = resp.choices[0]

        calls: List[ToolCall] = []
        for call in choice.message.tool_calls or []:
            try:
                args = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning("Unparseable arguments for tool '%s'", call.function.name)
                args = {}
            calls.append(ToolCall(tool_call_id=call.id, tool_name=call.function.name, args=args))

        usage = Usage()
        if resp.usage is not None:
            usage = Usage(
                prompt_tokens=resp.usage.prompt_tokens,
                completion_tokens=resp.usage.completion_tokens,
            )

        logger.debug("OpenAI step: finish=%s tool_calls=%d", choice.finish_reason, len(calls))
        return ModelStep(
            text=choice.message.content or "",
            tool_calls=calls,
            finish_reason=_OPENAI_FINISH.get(choice.finish_reason or "", FinishReason.OTHER),
            usage=usage,
        )


_ANTHROPIC_FINISH = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "tool_use": FinishReason.TOOL_CALLS,
}


@register_provider("anthropic")
class AnthropicModel(LanguageModel):
    """Anthropic Claude backend."""

    def __init__(self, ref: ModelRef):
        super().__init__(ref)
        import anthropic  # pylint: disable=import-outside-toplevel

        self._client = anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)

    @staticmethod
    def _messages(
        history: Sequence[Message], steps: Sequence[StepResult]
    ) -> tuple[List[str], List[Dict[str, Any]]]:
        # Anthropic takes system text separately from the turns.
        extra_system: List[str] = []
        messages: List[Dict[str, Any]] = []
        for m in history:
            if m.role == "system":
                extra_system.append(m.content)
            else:
                messages.append({"role": m.role, "content": m.content})

        for step in steps:
            blocks: List[Dict[str, Any]] = []
            if step.text:
                blocks.append({"type": "text", "text": step.text})
            blocks.extend(
                {"type": "tool_use", "id": c.tool_call_id, "name": c.tool_name, "input": c.args}
                for c in step.tool_calls
            )
            if blocks:
                messages.append({"role": "assistant", "content": blocks})
            if step.tool_results:
                messages.append(
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "tool_result",
                                "tool_use_id": r.tool_call_id,
                                "content": _dump(r.result),
                                "is_error": r.is_error,
                            }
                            for r in step.tool_results
                        ],
                    }
                )
        return extra_system, messages

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
        extra_system, messages = self._messages(history, steps)
        kwargs: Dict[str, Any] = {
            "model": self.ref.name,
            "system": "\n\n".join([system, *extra_system]),
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            kwargs["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameters}
                for t in tools
            ]
            # Anthropic spells "required" as "any".
            kwargs["tool_choice"] = {"type": "any" if tool_choice == "required" else "auto"}

        response = await self._client.messages.create(**kwargs)

        texts: List[str] = []
        calls: List[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                calls.append(
                    ToolCall(tool_call_id=block.id, tool_name=block.name, args=dict(block.input))
                )

        logger.debug("Anthropic step: stop=%s tool_calls=%d", response.stop_reason, len(calls))
        return ModelStep(
            text="".join(texts),
            tool_calls=calls,
            finish_reason=_ANTHROPIC_FINISH.get(response.stop_reason or "", FinishReason.OTHER),
            usage=Usage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
            ),
        )
