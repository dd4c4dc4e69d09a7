"""Session-scoped background tasks and timers.

Every delayed callback the assistant schedules (status auto-clear, command
feedback, send debounce, login redirect) is an asyncio task owned by a
``SessionTasks`` instance, so ``close()`` cancels all of them and nothing
fires after the session is torn down.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class SessionTasks:
    """Tracks tasks spawned on behalf of one assistant session."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self._keyed: dict[str, asyncio.Task] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def spawn(self, coro: Awaitable, key: str | None = None) -> asyncio.Task | None:
        """
        Run *coro* as a task tied to this session.

        If *key* is given, a previous task with the same key is cancelled
        first, so at most one task per key is pending.
        """
        if self._closed:
            # Never start work after teardown
            if inspect.iscoroutine(coro):
                coro.close()
            return None

        if key is not None:
            self.cancel(key)

        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        if key is not None:
            self._keyed[key] = task
        task.add_done_callback(lambda t: self._on_done(t, key))
        return task

    def call_later(self, delay: float, callback: Callable[[], object], key: str | None = None) -> asyncio.Task | None:
        """Invoke *callback* after *delay* seconds unless cancelled first."""

        async def _delayed():
            await asyncio.sleep(delay)
            result = callback()
            if inspect.isawaitable(result):
                await result

        return self.spawn(_delayed(), key=key)

    def cancel(self, key: str) -> bool:
        """Cancel the pending task registered under *key*. Returns True if one was pending."""
        task = self._keyed.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def pending(self, key: str) -> bool:
        task = self._keyed.get(key)
        return task is not None and not task.done()

    def close(self) -> None:
        """Cancel every outstanding task. Further spawns are ignored."""
        self._closed = True
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
        self._tasks.clear()
        self._keyed.clear()

    def _on_done(self, task: asyncio.Task, key: str | None) -> None:
        self._tasks.discard(task)
        if key is not None and self._keyed.get(key) is task:
            del self._keyed[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Session task failed: %s", exc, exc_info=exc)
