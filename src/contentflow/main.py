"""
contentflow entry point.

This file handles startup concerns (arg-parsing, logging) and launches the appropriate interface
(API, interactive CLI, or a single in-process pipeline run).
"""

import argparse
import asyncio
import logging
import sys

from contentflow.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _run_once(prompt: str) -> int:
    """Run one orchestration in-process, streaming every stage to the console."""
    # pylint: disable=import-outside-toplevel
    from contentflow.agent.context import ExecutionContext
    from contentflow.agent.streaming import (
        AgentChunk,
        format_structured_response,
        render_chunk,
    )
    from contentflow.agent.tracing import load_sink
    from contentflow.common import (
        AnsiColors,
        colored_print,
    )
    from contentflow.core.errors import StageError
    from contentflow.orchestrator.pipeline import orchestrate

    current = {"stage": ""}

    def on_chunk(stage: str, chunk: AgentChunk) -> None:
        if stage != current["stage"]:
            current["stage"] = stage
            colored_print(f"\n== {stage} ==", AnsiColors.BLUE)
        render_chunk(chunk)

    context = ExecutionContext(sink=load_sink())
    try:
        result = asyncio.run(orchestrate(prompt, context=context, on_chunk=on_chunk))
    except StageError as exc:
        colored_print(f"\nPipeline failed: {exc}", AnsiColors.RED)
        return 1

    colored_print("\nResult:", AnsiColors.GREEN)
    print(format_structured_response(result))
    return 0


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the contentflow application.

    This function sets up the command-line interface, initializes logging, and starts the
    application in API, CLI, or single-run mode.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Run the contentflow agent pipeline")
    parser.add_argument(
        "--mode",
        choices=["api", "cli", "run"],
        type=str.lower,
        default="api",
        help="Launch the REST API, the interactive CLI, or a single pipeline run (default: api)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    parser.add_argument(
        "--prompt",
        type=str,
        default=None,
        help="Request to run through the pipeline (required with --mode run)",
    )
    parser.add_argument(
        "--agent",
        type=str,
        default="router",
        help="Agent the interactive CLI talks to (default: %(default)s)",
    )
    args = parser.parse_args(argv)

    # Override log level setting with command-line argument
    settings.LOG_LEVEL = args.log_level

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting contentflow [%s mode]", args.mode)
    secrets = {"OPENAI_API_KEY", "ANTHROPIC_API_KEY", "LANGFUSE_SECRET_KEY"}
    logger.debug("Settings: %s", settings.model_dump(exclude=secrets))

    if args.mode == "api":
        from contentflow.api.app import run_api  # pylint: disable=import-outside-toplevel

        run_api(host="0.0.0.0", port=settings.API_PORT, reload=settings.DEBUG)

    elif args.mode == "run":
        if not args.prompt:
            parser.error("--prompt is required with --mode run")
        sys.exit(_run_once(args.prompt))

    else:
        import threading  # pylint: disable=import-outside-toplevel

        from contentflow.api.app import run_api  # pylint: disable=import-outside-toplevel
        from contentflow.client.cli import run_cli  # pylint: disable=import-outside-toplevel

        # Start API server in a separate thread
        api_thread = threading.Thread(
            target=run_api,
            kwargs={
                "host": "0.0.0.0",
                "port": settings.API_PORT,
                "reload": False,  # Reload doesn't work well with threading
                "log_level": "warning",
            },
            daemon=True,
        )
        api_thread.start()

        run_cli(agent=args.agent)


if __name__ == "__main__":
    main()
