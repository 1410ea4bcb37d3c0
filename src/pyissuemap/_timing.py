"""Debounce and throttle policies on the asyncio event loop.

Both wrap a coroutine function and are triggered synchronously from event
handlers. They are independent and compose: a debouncer's callback can be
a throttler's ``trigger``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any

_logger = logging.getLogger(__name__)

AsyncCallback = Callable[..., Awaitable[Any]]


class _ScheduledCallback:
    """Shared task bookkeeping: keep references, surface failures in logs."""

    def __init__(self, callback: AsyncCallback, *, name: str) -> None:
        self._callback = callback
        self._name = name
        self._tasks: set[asyncio.Task[Any]] = set()
        self.calls = 0

    def _run(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        self.calls += 1
        task = asyncio.ensure_future(self._callback(*args, **kwargs))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.debug("%s callback failed", self._name, exc_info=exc)

    async def drain(self) -> None:
        """Wait for callbacks that are already running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _cancel_tasks(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task


class Debouncer(_ScheduledCallback):
    """Run the callback once input pauses for ``wait`` seconds.

    Every ``trigger`` cancels the pending timer outright; only the last
    call's arguments are used.
    """

    def __init__(self, wait: float, callback: AsyncCallback) -> None:
        super().__init__(callback, name="debounce")
        self._wait = wait
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self, *args: Any, **kwargs: Any) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._wait, self._fire, args, kwargs)

    def _fire(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        self._handle = None
        self._run(args, kwargs)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def aclose(self) -> None:
        self.cancel()
        await self._cancel_tasks()


class Throttler(_ScheduledCallback):
    """Run the callback at most once per ``window`` seconds.

    The first call in a quiet period runs immediately. Calls inside the
    window collapse into a single trailing call, with the latest
    arguments, when the window ends.
    """

    def __init__(self, window: float, callback: AsyncCallback) -> None:
        super().__init__(callback, name="throttle")
        self._window = window
        self._window_ends = float("-inf")
        self._trailing: tuple[tuple[Any, ...], dict[str, Any]] | None = None
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self, *args: Any, **kwargs: Any) -> None:
        loop = asyncio.get_running_loop()
        now = loop.time()
        if self._handle is None and now >= self._window_ends:
            self._window_ends = now + self._window
            self._run(args, kwargs)
            return
        self._trailing = (args, kwargs)
        if self._handle is None:
            self._handle = loop.call_at(self._window_ends, self._fire_trailing)

    def _fire_trailing(self) -> None:
        self._handle = None
        trailing, self._trailing = self._trailing, None
        if trailing is None:
            return
        self._window_ends = asyncio.get_running_loop().time() + self._window
        self._run(*trailing)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._trailing = None

    async def aclose(self) -> None:
        self.cancel()
        await self._cancel_tasks()
