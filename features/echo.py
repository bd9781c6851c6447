"""Echo feature for the Telegram bot.

Handles every update that is not a command: text messages are sent back to
the chat they came from, callback queries are acknowledged so the client
stops showing a spinner.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict

from tgbot.context import Context, with_reply_to

logger = logging.getLogger(__name__)


@dataclass
class EchoFeature:
    """Echo text messages back to the sender.

    Attributes:
        settings: The "echo" feature section from the config
    """
    settings: Dict[str, Any]

    @property
    def enabled(self) -> bool:
        return bool(self.settings.get("enabled", True))

    async def handle(self, ctx: Context) -> None:
        update = ctx.update
        if update.callback_query is not None:
            await ctx.send_reply(
                "answerCallbackQuery",
                {"callback_query_id": update.callback_query.id},
            )
            return

        msg = ctx.message()
        if msg is None or not msg.text:
            logger.debug("Ignoring update %s without text", update.update_id)
            return

        await ctx.reply_text(msg.text, with_reply_to(msg.message_id))
