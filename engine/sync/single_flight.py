"""
Single-flight execution.

At most one call of the wrapped coroutine function runs at a time. Requests
made while it runs collapse into one queued call that starts as soon as the
running one finishes; every such request receives the queued call's result.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    def __init__(self, fn: Callable[[], Awaitable[T]]) -> None:
        self._fn = fn
        self._running = False
        self._queued: asyncio.Future[T] | None = None
        self._task: asyncio.Task | None = None
        self._current: asyncio.Future[T] | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def queued(self) -> bool:
        return self._queued is not None

    def request(self) -> asyncio.Future[T]:
        """Start a call, or join the queued one if a call is running."""
        loop = asyncio.get_running_loop()
        if self._running:
            if self._queued is None:
                self._queued = loop.create_future()
            return self._queued
        return self._start(loop.create_future())

    async def run(self) -> T:
        return await self.request()

    async def drain(self) -> None:
        """Wait until nothing is running or queued."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    def cancel(self) -> None:
        """Drop the queued call and cancel the running one."""
        queued, self._queued = self._queued, None
        if queued is not None:
            queued.cancel()
        if self._current is not None:
            self._current.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _start(self, future: asyncio.Future[T]) -> asyncio.Future[T]:
        self._running = True
        self._current = future
        self._task = asyncio.ensure_future(self._execute(future))
        return future

    async def _execute(self, future: asyncio.Future[T]) -> None:
        try:
            result = await self._fn()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self._running = False
            queued, self._queued = self._queued, None
            if queued is not None:
                self._start(queued)
