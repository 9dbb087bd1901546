"""Detached background tasks.

A detached task is never awaited by the code that spawned it. Its failure
is logged through a done callback and cannot reach the reply that was
already sent.
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional, Set

from parley.utils.logger import logger

_DETACHED: Set["asyncio.Task[Any]"] = set()


def _on_done(task: "asyncio.Task[Any]") -> None:
    _DETACHED.discard(task)
    if task.cancelled():
        logger.info("Background task %s cancelled", task.get_name())
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Background task %s failed: %s",
            task.get_name(),
            exc,
            exc_info=(type(exc), exc, exc.__traceback__),
        )


def spawn_detached(
    coro: Coroutine[Any, Any, Any], *, name: Optional[str] = None
) -> "asyncio.Task[Any]":
    """Schedule ``coro`` on the running loop and keep it alive until done."""
    task = asyncio.get_running_loop().create_task(coro, name=name)
    _DETACHED.add(task)
    task.add_done_callback(_on_done)
    return task


def pending_detached() -> int:
    return len(_DETACHED)


async def drain_detached(timeout: Optional[float] = None) -> None:
    """Wait for outstanding detached tasks (shutdown and tests)."""
    tasks = [t for t in _DETACHED if not t.done()]
    if not tasks:
        return
    await asyncio.wait(tasks, timeout=timeout)
