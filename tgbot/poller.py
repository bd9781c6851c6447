"""Long-polling loop feeding the update queue.

Delivery guarantee: an update is acknowledged (the offset moves past it) as
soon as it has been accepted into the queue, before any handler sees it. The
next getUpdates call confirms it to the server, so an update lost by a crash
between enqueue and processing is not redelivered. The offset lives only in
memory.
"""
import logging
from typing import Awaitable, Callable, Optional

import trio

from tgbot.client import UpdateSource
from tgbot.errors import PollError, UpdateParseError
from tgbot.options import BotOptions, ErrorHandler

logger = logging.getLogger(__name__)


class Poller:
    """Single producer of the update queue.

    Attributes:
        offset: Smallest update id not yet acknowledged. Written only by run().
    """

    def __init__(
        self,
        source: UpdateSource,
        send_channel: trio.MemorySendChannel,
        options: BotOptions,
        report: ErrorHandler,
        *,
        sleep: Callable[[float], Awaitable[None]] = trio.sleep,
    ) -> None:
        self.source = source
        self.send_channel = send_channel
        self.options = options
        self.offset = options.offset
        self._report = report
        self._sleep = sleep

    async def run(self) -> None:
        """Poll until cancelled.

        Retrieval failures are reported, followed by a fixed pause before the
        next attempt. Cancellation propagates as trio.Cancelled and ends the
        loop without a report.
        """
        logger.info("Polling for updates from offset=%s", self.offset)
        while True:
            try:
                updates = await self.source.get_updates(
                    offset=self.offset,
                    limit=self.options.limit,
                    timeout=self.options.poll_timeout,
                    allowed_updates=self.options.allowed_updates or None,
                )
            except Exception as e:  # pylint: disable=broad-exception-caught
                # Keep polling through transient API and network failures
                await self._on_error(e)
                continue

            for update in updates:
                if update.update_id < self.offset:
                    logger.debug("Skipping acknowledged update %s", update.update_id)
                    continue
                if update.parse_error is not None:
                    self._report(UpdateParseError(update.update_id, update.parse_error))
                    self.offset = update.update_id + 1
                    continue
                await self.send_channel.send(update)
                self.offset = update.update_id + 1

    async def _on_error(self, exc: Exception) -> None:
        err = PollError(f"failed to get updates, error: {exc}")
        err.__cause__ = exc
        handler: Optional[ErrorHandler] = self.options.poll_error_handler
        if handler is not None:
            try:
                handler(err)
            except Exception:  # pylint: disable=broad-exception-caught
                logger.exception("Poll error handler failed")
        else:
            self._report(err)
        logger.debug("Retrying getUpdates in %ss", self.options.poll_retry_delay)
        await self._sleep(self.options.poll_retry_delay)
