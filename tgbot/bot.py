"""Bot lifecycle: command setup, polling, workers and graceful shutdown.

run() publishes the command menu, then starts the worker loops and the
poller, all inside the root cancel scope, and waits for them. stop() cancels
that scope along with every dispatch running in an external task pool;
run() then drains (or discards) whatever is still queued before it returns
and the event handed out by stop() is set.
"""
import logging
from typing import Dict, List, Optional

import trio

from tgbot.client import BotClient
from tgbot.commands import Command, CommandScope, CommandTable
from tgbot.context import ContextPool
from tgbot.dispatcher import Dispatcher
from tgbot.errors import CommandRegistrationError
from tgbot.options import BotOptions
from tgbot.poller import Poller
from tgbot.workers import WorkerGroup

logger = logging.getLogger(__name__)


class Bot:
    """Process-wide bot state.

    Build once, add commands, then await run() from a trio task. Commands
    must not be added once run() has started.
    """

    def __init__(
        self,
        api: BotClient,
        options: Optional[BotOptions] = None,
    ) -> None:
        if api is None:
            raise ValueError("bot api client must be non-nil")
        self.api = api
        self.options = options or BotOptions()
        self.table = CommandTable()
        self.contexts = ContextPool(api, self, enabled=self.options.pool_contexts)
        self.dispatcher = Dispatcher(self.options, self.table, self.contexts)

        self._root_scope = self.options.cancel_scope or trio.CancelScope()
        self._send_channel, self._receive_channel = trio.open_memory_channel(
            self.options.queue_size
        )
        self.poller = Poller(
            api,
            self._send_channel,
            self.options,
            self.dispatcher.report,
        )
        self.workers = WorkerGroup(self.dispatcher, self._receive_channel)

        self._started = False
        self._done = trio.Event()

    @property
    def offset(self) -> int:
        return self.poller.offset

    @property
    def queued(self) -> int:
        """Number of updates accepted but not yet taken by a worker."""
        return self._receive_channel.statistics().current_buffer_used

    def add_commands(self, *commands: Command) -> None:
        """Register commands; raises CommandConfigError on invalid input."""
        if self._started:
            raise RuntimeError("commands must be added before run()")
        self.table.add(*commands)

    def commands(self) -> Dict[CommandScope, List[Command]]:
        return self.table.commands()

    async def setup_commands(self) -> None:
        """Publish the command menu, one call per scope."""
        try:
            await self.table.register(self.api)
        except Exception as e:
            raise CommandRegistrationError(
                f"failed to setup commands, error: {e}"
            ) from e

    async def run(self) -> None:
        """Run until stop() and return once shutdown is complete.

        Raises:
            CommandRegistrationError: Publishing the command menu failed;
                no worker has been started
            RuntimeError: run() was already called
        """
        if self._started:
            raise RuntimeError("bot is already running")
        self._started = True
        logger.info("Starting bot %s", self.options.describe())
        try:
            with self._root_scope:
                # stop() during registration skips polling altogether
                if self.options.auto_setup_commands:
                    await self.setup_commands()
                async with trio.open_nursery() as nursery:
                    self.workers.start(nursery)
                    nursery.start_soon(self.poller.run, name="tgbot-poller")
            # also covers cancellation through options.cancel_scope
            self.workers.cancel_pooled()
            logger.info("Polling stopped at offset=%s", self.poller.offset)

            if self.options.drain_on_stop:
                await self._drain()
            else:
                self._discard()
        finally:
            self._done.set()
        logger.info("Bot stopped")

    def stop(self) -> trio.Event:
        """Request shutdown.

        Returns:
            Event set once workers have exited and the queue was drained
        """
        logger.info("Stopping bot")
        self._root_scope.cancel()
        self.workers.cancel_pooled()
        if not self._started:
            self._done.set()
        return self._done

    async def _drain(self) -> None:
        pending = self._take_queued()
        if not pending:
            return
        logger.info("Draining %d queued update(s)", len(pending))
        async with trio.open_nursery() as nursery:
            for update in pending:
                nursery.start_soon(self.dispatcher.dispatch, update)

    def _discard(self) -> None:
        dropped = self._take_queued()
        if dropped:
            logger.warning(
                "Discarded %d queued update(s) (first id=%s)",
                len(dropped),
                dropped[0].update_id,
            )

    def _take_queued(self) -> list:
        self._send_channel.close()
        taken = []
        while True:
            try:
                taken.append(self._receive_channel.receive_nowait())
            except (trio.WouldBlock, trio.EndOfChannel):
                return taken
