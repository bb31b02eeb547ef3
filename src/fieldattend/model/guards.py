"""Single-slot task guards for operations that must not overlap."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional


logger = logging.getLogger(__name__)


class SingleFlight:
    """Allow at most one outstanding task for a logical operation.

    Callers choose how to behave when the operation is already running:
    run() joins the in-flight task and shares its outcome, try_start() leaves
    the running task alone and returns None.
    """

    name: str
    """Label used for the asyncio task and in log messages."""
    _task: Optional[asyncio.Task]

    def __init__(self, name: str) -> None:
        self.name = name
        self._task = None

    @property
    def busy(self) -> bool:
        """True while a task started by this guard has not finished."""
        return self._task is not None and not self._task.done()

    async def run(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        """Start func, or join the task already running, and return its result.

        Every waiter receives the same result or the same exception. Cancelling
        one waiter does not cancel the shared task.
        """
        task = self._task if self.busy else self._start(func, *args)
        return await asyncio.shield(task)

    def try_start(
        self, func: Callable[..., Awaitable[Any]], *args: Any
    ) -> Optional[asyncio.Task]:
        """Start func unless a task is already running."""
        if self.busy:
            logger.debug("%s already running, request ignored", self.name)
            return None
        return self._start(func, *args)

    async def wait(self) -> None:
        """Wait until the current task, if any, has finished."""
        if self._task is not None:
            await asyncio.wait([self._task])

    def _start(self, func: Callable[..., Awaitable[Any]], *args: Any) -> asyncio.Task:
        task = asyncio.ensure_future(func(*args))
        task.add_done_callback(self._finished)
        self._task = task
        return task

    def _finished(self, task: asyncio.Task) -> None:
        # Mark the exception as retrieved; waiters already re-raised it.
        if not task.cancelled() and task.exception() is not None:
            logger.debug("%s failed: %s", self.name, task.exception())
