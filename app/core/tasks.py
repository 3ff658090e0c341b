# app/core/tasks.py

import asyncio
import logging
from typing import Any, Awaitable, Optional, Set

logger = logging.getLogger(__name__)

# Strong references to running background tasks; the event loop only keeps weak ones.
_background_tasks: Set[asyncio.Task] = set()


async def best_effort(coro: Awaitable[Any], description: str) -> Optional[Any]:
    """
    Awaits a side effect whose failure must never reach the caller.
    Any exception is logged and turned into None.
    """
    try:
        return await coro
    except Exception:
        logger.error(f"Best-effort task '{description}' failed", exc_info=True)
        return None


def fire_and_forget(coro: Awaitable[Any], description: str) -> Optional[asyncio.Task]:
    """
    Schedules a best-effort side effect that may outlive the current request.
    Returns the created task, or None when there is no running event loop.
    """
    wrapped = best_effort(coro, description)
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        wrapped.close()
        if hasattr(coro, "close"):
            coro.close()
        logger.error(f"No running event loop, dropped background task '{description}'")
        return None

    task = loop.create_task(wrapped)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task
