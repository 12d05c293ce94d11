import asyncio
import logging
from typing import Coroutine, Optional, Set

logger = logging.getLogger(__name__)

# The event loop only keeps weak references to tasks.
_background_tasks: Set[asyncio.Task] = set()


def spawn(coro: Coroutine, *, name: Optional[str] = None,
          logger: logging.Logger = logger) -> asyncio.Task:
    """Run *coro* in the background and log its exception if it fails."""
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)

    def _on_done(task: asyncio.Task) -> None:
        _background_tasks.discard(task)
        try:
            exc = task.exception()
        except asyncio.CancelledError:
            return
        if exc:
            logger.error("Unhandled task exception in %s", task.get_name(), exc_info=exc)

    task.add_done_callback(_on_done)
    return task


def pending_tasks() -> Set[asyncio.Task]:
    return set(_background_tasks)


async def cancel_pending() -> None:
    """Cancel every task started through :func:`spawn` and wait for them."""
    tasks = pending_tasks()
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
