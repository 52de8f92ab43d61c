"""Bounded fire-and-forget execution for mention continuations."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class BackgroundTaskRunner:
    """Runs coroutines detached from the caller, at most N at a time.

    Tasks are referenced until they finish so the event loop cannot garbage
    collect them mid-flight; any exception that escapes a task is logged.
    """

    def __init__(self, max_concurrent: int = 10):
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        name: Optional[str] = None,
    ) -> asyncio.Task:
        """Schedule ``func(*args)`` and return immediately."""
        task = asyncio.create_task(self._run(func, *args), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def _run(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        async with self._semaphore:
            return await func(*args)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background task %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task %s failed: %s",
                task.get_name(),
                exc,
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self) -> None:
        """Wait for every scheduled task, including ones submitted while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

