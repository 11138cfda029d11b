"""Detached background work with a best-effort contract.

The stale-while-revalidate refill writes its result into the store after
the caller already has a response.  :class:`BackgroundTasks` makes that
explicit:

* :meth:`~BackgroundTasks.spawn` starts the coroutine as its own task and
  keeps a strong reference until it finishes, so it runs to completion
  regardless of the request that started it;
* failures are logged at WARNING, passed to registered error hooks, and
  never re-raised;
* :meth:`~BackgroundTasks.drain` waits for everything still running
  (shutdown, tests).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)

ErrorHook = Callable[[str, BaseException], None]
"""Called with the task label and the exception of a failed background task."""


class BackgroundTasks:
    """Registry of fire-and-forget tasks."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self._hooks: list[ErrorHook] = []
        self.failures = 0

    @property
    def pending(self) -> int:
        """Number of tasks that have not finished yet."""
        return len(self._tasks)

    def add_error_hook(self, hook: ErrorHook) -> None:
        self._hooks.append(hook)

    def spawn(self, coro: Coroutine[Any, Any, Any], label: str) -> asyncio.Task:
        """Run *coro* detached from the caller.

        Args:
            coro: The work to run.
            label: Short description used in logs and error hooks.

        Returns:
            The created task.  Awaiting it yields the coroutine's result, or
            ``None`` when the coroutine failed; it never raises.
        """
        task = asyncio.get_running_loop().create_task(self._guard(coro, label), name=label)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until every spawned task, including ones spawned meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _guard(self, coro: Coroutine[Any, Any, Any], label: str) -> Any:
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.failures += 1
            logger.warning("Background task %s failed: %s", label, exc)
            for hook in self._hooks:
                try:
                    hook(label, exc)
                except Exception:
                    logger.debug("Error hook %r raised", hook, exc_info=True)
        return None
