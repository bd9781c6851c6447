"""Main entry point for the Telegram bot.

This module initializes and runs the bot with:
- /ping and /help commands
- Echo of plain text messages
- Graceful shutdown on SIGINT/SIGTERM, draining queued updates
"""
import logging
import os
import signal

import trio

from config import ConfigManager
from features.echo import EchoFeature
from features.ping import PingFeature
from tgbot.bot import Bot
from tgbot.client import TelegramTrioClient


logger = logging.getLogger(__name__)


async def wait_for_signal(bot: Bot) -> None:
    """Stop the bot on the first SIGINT or SIGTERM and wait for the drain."""
    with trio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
        async for signum in signals:
            logger.info("Received signal %s, shutting down", signum)
            await bot.stop().wait()
            return


async def main() -> None:
    """Initialize and run the bot with all configured features."""
    # Load config
    config_path = os.environ.get("TGBOT_CONFIG", "config.yaml")
    config_mgr = ConfigManager(config_path)
    config_mgr.load()

    logging.basicConfig(
        level=config_mgr.log_level(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting tgbot")

    # Create Bot API client (trio wrapper)
    client = TelegramTrioClient.from_env()

    # Log bot identity
    me = await client.get_me()
    if me:
        logger.info(
            "Bot authenticated as: %s (username: @%s, user_id: %s)",
            me.get("first_name"),
            me.get("username"),
            me.get("id"),
        )
    else:
        logger.warning("Could not retrieve bot user information")

    echo = EchoFeature(config_mgr.feature("echo"))
    bot = Bot(
        client,
        config_mgr.bot_options(
            updates_handler=echo.handle if echo.enabled else None,
        ),
    )
    ping = PingFeature(bot.table, config_mgr.feature("ping"))
    bot.add_commands(*ping.commands())

    try:
        async with trio.open_nursery() as nursery:
            nursery.start_soon(wait_for_signal, bot)
            await bot.run()
            nursery.cancel_scope.cancel()
    finally:
        client.close()


if __name__ == "__main__":
    trio.run(main)
