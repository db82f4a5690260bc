"""CLI client for the contentflow API."""

from __future__ import annotations

import json
import logging
import time
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Tuple,
)

import httpx

from contentflow.agent.streaming import (
    AgentChunk,
    render_chunk,
)
from contentflow.common import (
    AnsiColors,
    colored_print,
)
from contentflow.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    import signal  # pylint: disable=import-outside-toplevel

    # Ensure SIGINT breaks out of slow system calls such as read()
    signal.siginterrupt(signal.SIGINT, True)

    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def stream_chat(
    messages: List[Dict[str, Any]],
    agent: str = "router",
    max_retries: int = 5,
    base_url: Optional[str] = None,
) -> Optional[str]:
    """
    Stream one ``/chat`` run to the console and return the final assistant text.

    Connection failures are retried with exponential backoff; any other error is printed and
    ``None`` is returned.
    """
    api_url = f"{base_url or f'http://localhost:{settings.API_PORT}'}/chat"
    payload = {"messages": messages, "agent": agent}

    for attempt in range(max_retries):
        try:
            return _consume_stream(api_url, payload)
        except httpx.ConnectError as e:
            if attempt < max_retries - 1:
                retry_delay = 0.5 * (2**attempt)  # exponential backoff: 0.5s, 1s, 2s, 4s...
                logger.info(
                    "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                    retry_delay,
                    attempt + 1,
                    max_retries,
                )
                time.sleep(retry_delay)
                continue
            logger.error("API request error: %s", str(e))
            colored_print(f"Error connecting to API: {e}", AnsiColors.RED)
            return None
        except httpx.HTTPStatusError as e:
            logger.error("API request error: %s", str(e))
            colored_print(f"API error: {e.response.status_code}", AnsiColors.RED)
            return None
        except httpx.HTTPError as e:
            logger.error("API request error: %s", str(e))
            colored_print(f"Error connecting to API: {e}", AnsiColors.RED)
            return None

    colored_print(f"Failed to connect to API after {max_retries} attempts", AnsiColors.RED)
    return None


def _consume_stream(api_url: str, payload: Dict[str, Any]) -> Optional[str]:
    text: Optional[str] = None
    with httpx.Client(timeout=120.0) as client:
        with client.stream("POST", api_url, json=payload) as response:
            response.raise_for_status()
            for line in response.iter_lines():
                if not line.strip():
                    continue
                data = json.loads(line)
                if data["type"] == "finish":
                    logger.debug("Stream finished: %s", data["content"])
                    continue
                chunk = AgentChunk.model_validate(data)
                render_chunk(chunk)
                if chunk.type == "agent-complete":
                    text = chunk.content["output"].get("text")
    return text


def run_cli(agent: str = "router") -> None:
    """Run the CLI client that communicates with the API."""
    history: List[Dict[str, Any]] = []

    colored_print(
        f"\ncontentflow shell [{agent}] - type 'exit' or 'quit' (or Ctrl+C) to exit",
        AnsiColors.GREEN,
    )
    while True:
        colored_print("\nYou: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break
        if user_msg.lower() in {"exit", "quit"}:
            break
        if not user_msg:
            continue

        history.append({"role": "user", "content": user_msg})
        reply = stream_chat(history, agent=agent)
        print()
        if reply:
            history.append({"role": "assistant", "content": reply})
        else:
            colored_print("No text response from the agent", AnsiColors.YELLOW)


if __name__ == "__main__":
    run_cli()
