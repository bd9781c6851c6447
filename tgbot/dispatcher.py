"""Update dispatching: route one update to its handler.

Commands go to the handler registered in the CommandTable, unknown commands
to the undefined-command handler, everything else to the generic updates
handler. Each handler call runs behind a fault barrier inside its own cancel
scope, so one failing or hanging update never affects the others.
"""
import logging
import math
import traceback
from typing import Optional

import trio

from tgbot.client import ReplyTransport
from tgbot.commands import CommandTable
from tgbot.context import Context, ContextPool
from tgbot.errors import BotError, HandlerPanic, HandlerTimeout
from tgbot.models import Update
from tgbot.options import BotOptions, CommandHandler

logger = logging.getLogger(__name__)

UNRECOGNIZED_COMMAND_TEXT = "Unrecognized command!!!"


class Dispatcher:
    """Resolves and runs the handler for each update.

    Maintains no state besides the context pool; safe to call from many
    tasks at once as long as the command table is not mutated.
    """

    def __init__(
        self,
        options: BotOptions,
        table: CommandTable,
        pool: ContextPool,
    ) -> None:
        self.options = options
        self.table = table
        self.pool = pool

    @classmethod
    def create(
        cls,
        api: ReplyTransport,
        options: Optional[BotOptions] = None,
        table: Optional[CommandTable] = None,
    ) -> "Dispatcher":
        """Build a standalone dispatcher, mostly useful outside a Bot."""
        options = options or BotOptions()
        return cls(
            options,
            table or CommandTable(),
            ContextPool(api, enabled=options.pool_contexts),
        )

    def report(self, err: Exception) -> None:
        """Forward an error to the configured error handler."""
        try:
            self.options.error_handler(err)
        except Exception:  # pylint: disable=broad-exception-caught
            # A broken error handler must not take the worker down
            logger.exception("Error handler failed while reporting %r", err)

    async def dispatch(self, update: Update) -> None:
        """Run the handler for one update and recycle its context.

        Args:
            update: Update taken off the queue
        """
        ctx = self.pool.acquire(update)
        timeout = self.options.timeout
        deadline = trio.current_time() + timeout if timeout else math.inf
        try:
            with trio.CancelScope(deadline=deadline) as scope:
                ctx.cancel_scope = scope
                await self._execute(ctx)
            if scope.cancelled_caught:
                logger.debug("Update %s hit its deadline", update.update_id)
                self.report(HandlerTimeout(update.update_id, timeout or 0.0))
        finally:
            self.pool.release(ctx)

    def resolve(self, ctx: Context) -> Optional[CommandHandler]:
        """Pick the handler for the update bound to ctx, None for a no-op."""
        if ctx.is_command():
            cmd = self.table.lookup(ctx.command())
            if cmd is not None:
                return cmd.handler
            return self.options.undefined_command_handler or self._unrecognized_command
        return self.options.updates_handler

    async def _execute(self, ctx: Context) -> None:
        handler = self.resolve(ctx)
        if handler is None:
            return
        try:
            await handler(ctx)
        except BotError as e:
            self.report(e)
        except Exception as e:  # pylint: disable=broad-exception-caught
            # Fault barrier: contain anything a handler did not anticipate
            await self._on_panic(ctx, e)

    async def _on_panic(self, ctx: Context, exc: Exception) -> None:
        handler = self.options.panic_handler or self._default_panic_handler
        try:
            await handler(ctx, exc)
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception(
                "Panic handler failed for update %s", ctx.update.update_id
            )

    async def _default_panic_handler(self, ctx: Context, exc: BaseException) -> None:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        logger.error("Handler crashed on update %s", ctx.update.update_id)
        self.report(HandlerPanic(exc, stack))

    @staticmethod
    async def _unrecognized_command(ctx: Context) -> None:
        await ctx.reply_text(UNRECOGNIZED_COMMAND_TEXT)
