"""Helpers for fire-and-forget work started from request handlers."""

import asyncio
import logging
from typing import Any, Coroutine

logger = logging.getLogger(__name__)

# The event loop only keeps weak references to tasks.
_running: set[asyncio.Task] = set()


def create_background_task(coro: Coroutine[Any, Any, Any], task_name: str = "background_task") -> asyncio.Task:
    """Schedule a coroutine whose failure is logged rather than lost."""
    async def _wrapped_task():
        try:
            await coro
        except Exception as e:
            logger.exception(f"Error in background task '{task_name}': {e}")

    task = asyncio.create_task(_wrapped_task(), name=task_name)
    _running.add(task)
    task.add_done_callback(_running.discard)
    return task
