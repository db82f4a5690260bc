"""
Exception hierarchy shared by the tool invoker, the generation engine and the pipeline.

Instrumentation failures never appear here: the trace sink absorbs its own errors.
"""


class ContentflowError(RuntimeError):
    """Base class for every error raised by contentflow."""


class AgentConfigError(ContentflowError, ValueError):
    """Raised when an agent or tool descriptor is malformed."""


class ProviderNotFoundError(ContentflowError, ValueError):
    """Raised when a model identifier names an unregistered provider."""


class InvalidArgumentsError(ContentflowError):
    """Raised when tool arguments fail schema validation (before any side effect)."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Invalid arguments for tool '{tool_name}': {message}")
        self.tool_name = tool_name


class ToolExecutionError(ContentflowError):
    """Raised when a tool's own logic fails. Never cached."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' raised an error: {message}")
        self.tool_name = tool_name


class GenerationError(ContentflowError):
    """Raised when the model provider fails during a run."""


class GenerationCancelledError(GenerationError):
    """Raised when a run is aborted through its abort signal."""


class StageError(ContentflowError):
    """A pipeline stage failed; carries the stage name and the underlying cause."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"{stage} stage failed: {cause}")
        self.stage = stage
        self.cause = cause
