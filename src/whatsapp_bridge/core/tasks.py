"""Detached background tasks whose outcome is only observed via logging."""

import asyncio
import logging
from typing import Any, Coroutine, Optional, Set

logger = logging.getLogger(__name__)

# The event loop only keeps weak references to tasks
_background_tasks: Set[asyncio.Task] = set()


def spawn_detached(coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
    """
    Schedule ``coro`` with no join point.

    Exceptions are logged and dropped. Nothing is propagated to whoever
    spawned the task.
    """
    task = asyncio.get_running_loop().create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_on_done)
    return task


def _on_done(task: asyncio.Task):
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc}", exc_info=exc)


def pending_tasks() -> Set[asyncio.Task]:
    """Detached tasks still in flight."""
    return set(_background_tasks)
