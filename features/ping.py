"""Built-in commands for the Telegram bot.

Provides /ping for liveness checks and /help, which lists every command that
is not hidden from the menu, whatever scopes it is published under.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from tgbot.commands import Command, CommandScope, CommandTable, new_command
from tgbot.context import Context, with_reply_to

logger = logging.getLogger(__name__)


@dataclass
class PingFeature:
    """Liveness and help commands.

    Attributes:
        table: Command table used to render /help
        settings: The "ping" feature section from the config
    """
    table: CommandTable
    settings: Dict[str, Any]

    def commands(self) -> List[Command]:
        """Build the commands this feature contributes."""
        if not self.settings.get("enabled", True):
            return []
        hidden = bool(self.settings.get("hidden", False))
        return [
            new_command(
                "ping",
                "check that the bot is alive",
                self.ping,
                hidden=hidden,
                scopes=[CommandScope.default(), CommandScope.all_group_chats()],
            ),
            new_command("help", "list available commands", self.help),
        ]

    async def ping(self, ctx: Context) -> None:
        msg = ctx.message()
        opts = [with_reply_to(msg.message_id)] if msg is not None else []
        await ctx.reply_markdown("*pong*", *opts)

    async def help(self, ctx: Context) -> None:
        lines = [str(cmd) for cmd in self.table.visible()]
        if not lines:
            await ctx.reply_text("No commands available.")
            return
        logger.debug("Listing %d commands for chat %s", len(lines), ctx.from_chat())
        await ctx.reply_text("\n".join(lines))
