"""
deepshield.utils.scheduler – one-shot timers for the live sampling loop.

The live scheduler never sleeps inline: every cycle ends by arming exactly one
timer for the next cycle, and ``stop()`` cancels that timer synchronously.
Anything implementing :class:`Timer` can drive it, which lets tests step
through cycles without waiting on the wall clock.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timer(Protocol):
    """Arms a coroutine callback to run once after *delay* seconds."""

    def call_later(self, delay: float, callback: Callback) -> TimerHandle: ...


class AsyncioTimer:
    """
    Event-loop backed :class:`Timer`.

    The returned handle is the loop's own ``TimerHandle``: cancelling it
    prevents the callback from starting but never interrupts a callback that
    is already running.

    Usage::

        timer = AsyncioTimer()
        handle = timer.call_later(2.0, sample_once)
        # … later …
        handle.cancel()
    """

    def __init__(self) -> None:
        self._running: set[asyncio.Task] = set()

    def call_later(self, delay: float, callback: Callback) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay), self._spawn, callback)

    def _spawn(self, callback: Callback) -> None:
        task = asyncio.ensure_future(callback())
        self._running.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Timer callback raised", exc_info=exc)

