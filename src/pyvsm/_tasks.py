"""Supervised background tasks.

Work the caller must not wait for (almanac delivery) runs here instead
of as a bare ``asyncio.create_task``: references are kept so tasks are
not garbage collected mid-flight, failures are logged, completion is
reported through an optional callback, and everything can be cancelled
or awaited on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

_logger = logging.getLogger(__name__)

OnTaskDone = Callable[[str, BaseException | None], None]


class TaskSupervisor:
    def __init__(self, *, on_done: OnTaskDone | None = None) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self._on_done = on_done

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        """Start *coro* in the background and return its task."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        name = task.get_name()
        error: BaseException | None
        if task.cancelled():
            error = asyncio.CancelledError()
            _logger.debug("Background task %s cancelled", name)
        else:
            error = task.exception()
            if error is not None:
                _logger.warning("Background task %s failed: %s", name, error, exc_info=error)

        if self._on_done is not None:
            try:
                self._on_done(name, error)
            except Exception:
                _logger.debug("on_done callback failed for %s", name, exc_info=True)

    async def join(self) -> None:
        """Wait for every running task to finish."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def cancel_all(self) -> None:
        """Cancel every running task and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
