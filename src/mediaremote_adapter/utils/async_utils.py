"""Async helpers shared by the supervisor, clock and dispatcher.

This module provides:
- a thread-pool bridge (`run_blocking`) so helper invocations that wait on a
  child process never stall the event loop, and
- `TaskSlot`, a cancel-and-reschedule holder for at most one background task
  (tick loop, seek debounce, scheduled restart).
"""

from __future__ import annotations

import asyncio
import atexit
from collections.abc import Coroutine
from concurrent.futures import ThreadPoolExecutor
from contextlib import suppress
from functools import partial
from typing import Any, Callable, TypeVar

T = TypeVar("T")

_IO_EXECUTOR = ThreadPoolExecutor(
    max_workers=4, thread_name_prefix="mediaremote-adapter-io"
)


@atexit.register
def _shutdown_io_executor() -> None:
    _IO_EXECUTOR.shutdown(wait=False, cancel_futures=True)


async def run_blocking(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """Run blocking callable on dedicated IO executor and await its result."""
    if not callable(func):
        raise TypeError("func must be callable")
    loop = asyncio.get_running_loop()
    if kwargs:
        future = loop.run_in_executor(_IO_EXECUTOR, partial(func, *args, **kwargs))
    else:
        future = loop.run_in_executor(_IO_EXECUTOR, func, *args)
    return await future


class TaskSlot:
    """Holds at most one scheduled task.

    Scheduling a new coroutine cancels whatever the slot held before. A task
    that is running when its own slot is cancelled is not interrupted; it is
    detached instead and is expected to check `owns_current_task()` after
    each suspension point.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        self.cancel()
        task = asyncio.create_task(coro, name=self._name)
        self._task = task
        return task

    def owns_current_task(self) -> bool:
        return self._task is not None and self._task is asyncio.current_task()

    def detach(self) -> None:
        """Release the task held by the slot without cancelling it."""
        self._task = None

    def cancel(self) -> asyncio.Task[None] | None:
        """Cancel the held task, returning it when it still needs awaiting."""
        task, self._task = self._task, None
        if task is None or task.done():
            return None
        if task is asyncio.current_task():
            return None
        task.cancel()
        return task

    async def cancel_and_wait(self) -> None:
        task = self.cancel()
        if task is None:
            return
        with suppress(asyncio.CancelledError):
            await task
