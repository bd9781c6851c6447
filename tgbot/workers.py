"""Concurrent execution of dispatches.

WorkerGroup pulls updates off the bounded queue and hands them to the
Dispatcher in one of three statically chosen modes:

- "workers": a fixed number of loops, each awaiting one dispatch at a time.
- "pool": loops submit each dispatch to an external TaskPool and move on.
  A rejected submission is reported and the update is dropped; nothing is
  buffered beyond the queue and the pool's own capacity. Pooled dispatches
  run in the pool's nursery, so each one gets its own cancel scope that
  cancel_pooled() cancels on shutdown.
- "unlimited": a single loop starts an independent task per update.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Set

import trio

from tgbot.dispatcher import Dispatcher
from tgbot.errors import PoolClosedError, PoolOverloadError
from tgbot.models import Update

logger = logging.getLogger(__name__)


class TaskPool:
    """
    Nursery-backed pool running at most `capacity` tasks at once.

    In blocking mode submit() waits for a free slot; in nonblocking mode it
    raises PoolOverloadError instead.
    """

    def __init__(
        self,
        nursery: trio.Nursery,
        capacity: int,
        *,
        nonblocking: bool = False,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"pool capacity must be positive, got {capacity}")
        self._nursery = nursery
        self._limiter = trio.CapacityLimiter(capacity)
        self._nonblocking = nonblocking
        self._closed = False

    @classmethod
    @asynccontextmanager
    async def open(
        cls, capacity: int, *, nonblocking: bool = False
    ) -> AsyncIterator["TaskPool"]:
        """Open a pool; leaving the block closes it and waits for its tasks."""
        async with trio.open_nursery() as nursery:
            pool = cls(nursery, capacity, nonblocking=nonblocking)
            try:
                yield pool
            finally:
                pool.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def running(self) -> int:
        return self._limiter.borrowed_tokens

    def close(self) -> None:
        """Reject further submissions; running tasks are left to finish."""
        self._closed = True

    async def submit(self, async_fn: Callable[..., Awaitable[Any]], *args: Any) -> None:
        """Start async_fn(*args) in the pool.

        Raises:
            PoolClosedError: The pool was closed
            PoolOverloadError: No free slot in nonblocking mode
        """
        if self._closed:
            raise PoolClosedError("task pool is closed")
        token = object()
        if self._nonblocking:
            try:
                self._limiter.acquire_on_behalf_of_nowait(token)
            except trio.WouldBlock:
                raise PoolOverloadError(
                    f"task pool is saturated ({self._limiter.total_tokens} running)"
                ) from None
        else:
            await self._limiter.acquire_on_behalf_of(token)
        self._nursery.start_soon(self._run, token, async_fn, args)

    async def _run(self, token: object, async_fn: Callable[..., Awaitable[Any]], args: tuple) -> None:
        try:
            await async_fn(*args)
        finally:
            self._limiter.release_on_behalf_of(token)


class WorkerGroup:
    """Runs the configured number of consumer loops over the queue."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        receive_channel: trio.MemoryReceiveChannel,
    ) -> None:
        self.dispatcher = dispatcher
        self.receive_channel = receive_channel
        self.options = dispatcher.options
        self._pooled: Set[trio.CancelScope] = set()
        self._pooled_cancelled = False

    def start(self, nursery: trio.Nursery) -> None:
        """Start the loops in nursery; they run until cancelled."""
        mode = self.options.concurrency_mode
        if mode == "unlimited":
            nursery.start_soon(self._spawn_loop, nursery, name="tgbot-spawner")
            count = 1
        else:
            count = self.options.workers_num
            for i in range(count):
                nursery.start_soon(self._worker_loop, name=f"tgbot-worker-{i}")
        logger.info("Started %d update loop(s) in %s mode", count, mode)

    async def _worker_loop(self) -> None:
        async for update in self.receive_channel:
            await self.handle(update)

    async def _spawn_loop(self, nursery: trio.Nursery) -> None:
        async for update in self.receive_channel:
            nursery.start_soon(self.dispatcher.dispatch, update)

    async def handle(self, update: Update) -> None:
        """Dispatch inline, or submit to the task pool in pool mode."""
        pool = self.options.task_pool
        if pool is None:
            await self.dispatcher.dispatch(update)
            return
        try:
            await pool.submit(self._dispatch_pooled, update)
        except (PoolClosedError, PoolOverloadError) as e:
            logger.debug("Dropping update %s: %s", update.update_id, e)
            self.dispatcher.report(e)

    def cancel_pooled(self) -> None:
        """Cancel dispatches running in the task pool, and any submitted later."""
        self._pooled_cancelled = True
        for scope in self._pooled:
            scope.cancel()

    async def _dispatch_pooled(self, update: Update) -> None:
        with trio.CancelScope() as scope:
            if self._pooled_cancelled:
                scope.cancel()
            self._pooled.add(scope)
            try:
                await self.dispatcher.dispatch(update)
            finally:
                self._pooled.discard(scope)
