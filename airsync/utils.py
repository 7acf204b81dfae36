"""Utility functions for the AirSync receiver."""

from __future__ import annotations

import asyncio
import inspect
import socket
import sys
import time
from collections.abc import Coroutine
from typing import TypeVar

_T = TypeVar("_T")

# Check if eager_start is supported (Python 3.12+)
_SUPPORTS_EAGER_START = sys.version_info >= (3, 12) and "eager_start" in inspect.signature(
    asyncio.create_task
).parameters

DEFAULT_RECEIVER_NAME = "AirSync"


def create_task(
    coro: Coroutine[None, None, _T],
    *,
    name: str | None = None,
    eager_start: bool = True,
) -> asyncio.Task[_T]:
    """Create an asyncio task, starting it eagerly when the interpreter allows.

    Eager start lets a scheduled playback begin its wait in the same loop
    iteration as the request that armed it.

    Args:
        coro: The coroutine to run as a task.
        name: Optional name for the task (for debugging).
        eager_start: Whether to start the task eagerly (Python 3.12+ only).

    Returns:
        The created asyncio Task.
    """
    kwargs = {"name": name} if name is not None else {}

    if _SUPPORTS_EAGER_START:
        kwargs["eager_start"] = eager_start

    return asyncio.create_task(coro, **kwargs)


def now_ms() -> int:
    """Wall-clock time in milliseconds since the Unix epoch."""
    return int(time.time() * 1000)


def get_hostname() -> str:
    """Return the host name, falling back to the default receiver name."""
    return socket.gethostname() or DEFAULT_RECEIVER_NAME


def default_receiver_id(hostname: str) -> str:
    """Derive a stable receiver identifier from the host name."""
    return f"airsync-{hostname}"
