# ventasync/scheduler.py
# Purpose: Timing primitives for the poller and refresher (repeat, defer, detach).
# Why: Keeps asyncio details in one place; tests swap in a manual scheduler.
# Pitfalls: Repeating jobs tick on a short frame, so real cadence is "at least interval".

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, Protocol

log = logging.getLogger("ventasync.scheduler")


class CancelToken:
    """Handle returned by schedule_repeating(); cancel() is idempotent."""

    def __init__(self, task: asyncio.Task | None = None):
        self._task = task
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()


class Scheduler(Protocol):
    def schedule_repeating(
        self, interval_s: float, callback: Callable[[], Any]
    ) -> CancelToken: ...

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None: ...

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task: ...


class AsyncioScheduler:
    def __init__(self, frame_s: float = 0.05):
        self.frame_s = frame_s
        self._tasks: set[asyncio.Task] = set()
        self._tokens: set[CancelToken] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task:
        """Run coro as a detached task; failures are logged, never raised."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("detached task %s failed", task.get_name(), exc_info=exc)

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        asyncio.get_running_loop().call_soon(self._run_callback, callback, args)

    def _run_callback(self, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        try:
            result = callback(*args)
        except Exception:
            log.exception("deferred callback %r failed", callback)
            return
        if inspect.isawaitable(result):
            self.spawn(_await(result))

    def schedule_repeating(self, interval_s: float, callback: Callable[[], Any]) -> CancelToken:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        token = CancelToken()
        task = self.spawn(self._repeat(interval_s, callback, token), name="repeat")
        token._task = task
        self._tokens.add(token)
        return token

    async def _repeat(
        self, interval_s: float, callback: Callable[[], Any], token: CancelToken
    ) -> None:
        loop = asyncio.get_running_loop()
        last = loop.time()
        frame = min(self.frame_s, interval_s)
        try:
            while not token.cancelled:
                await asyncio.sleep(frame)
                now = loop.time()
                if now - last < interval_s:
                    continue
                last = now
                self._run_callback(callback, ())
        finally:
            self._tokens.discard(token)

    async def aclose(self) -> None:
        """Cancel repeating jobs and detached tasks, then wait for them to unwind."""
        for token in list(self._tokens):
            token.cancel()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


async def _await(aw: Awaitable[Any]) -> Any:
    return await aw
