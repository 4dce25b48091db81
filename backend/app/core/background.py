"""
Fire-and-forget tasks for work that must stay off the response path (e.g. last-active stamps).

Tasks are held in a module-level set until they finish so the event loop does not drop
them; their outcome is only ever observed by the logger.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)

_tasks: set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _tasks.discard(task)
    if task.cancelled():
        logger.debug("Background task %s cancelled", task.get_name())
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)


def spawn(coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
    """Schedule coro without awaiting it. The caller never sees its result."""
    try:
        task = asyncio.create_task(coro, name=name)
    except Exception:
        # No running loop: the coroutine object must still be closed
        coro.close()
        raise
    _tasks.add(task)
    task.add_done_callback(_on_done)
    return task


def pending() -> int:
    return len(_tasks)


async def drain(timeout: float) -> None:
    """Give in-flight tasks up to `timeout` seconds on shutdown, then cancel the rest."""
    if not _tasks:
        return
    _, still_pending = await asyncio.wait(set(_tasks), timeout=timeout)
    for task in still_pending:
        task.cancel()
    if still_pending:
        logger.warning("Cancelled %d background task(s) at shutdown", len(still_pending))
