"""Twitch chat client setup and the process runner."""

from __future__ import annotations

import asyncio
import logging

import uvicorn
from twitchio.ext import commands

from stream_points.bot.services.commands import CommandInterpreter
from stream_points.bot.services.context import AppContext
from stream_points.bot.services.context import create_context
from stream_points.bot.services.models import ChatEvent
from stream_points.shared.config import Settings
from stream_points.shared.config import get_settings
from stream_points.shared.logging_config import configure_logging

logger = logging.getLogger(__name__)

ONLINE_MESSAGE = "🤖 Points bot is online! Chat and watch to collect points, !points shows your balance."


class ChannelSender:
    """Sends plain chat messages through the bot's IRC connection."""

    def __init__(self, bot: commands.Bot, channel: str):
        self.bot = bot
        self.channel = channel

    async def send(self, message: str) -> None:
        channel = self.bot.get_channel(self.channel)
        if channel is None:
            raise ConnectionError(f"Not connected to #{self.channel}")
        await channel.send(message)


class StreamPointsBot(commands.Bot):
    """Chat transport: turns incoming messages into ``ChatEvent``s."""

    def __init__(self, context: AppContext):
        settings = context.settings
        super().__init__(
            token=settings.bot_token,
            prefix="!",
            initial_channels=[settings.channel],
        )
        self.context = context
        self.interpreter = CommandInterpreter(context)
        self.chat_sender = ChannelSender(self, settings.channel)
        context.announcer.attach_fallback(self.chat_sender)

    async def event_ready(self):
        """Called once when the bot goes online."""
        logger.info(f"Connected to chat as {self.nick}, joined #{self.context.settings.channel}")
        self.context.announcer.announce(ONLINE_MESSAGE)

    async def event_message(self, message):
        """Handle incoming chat messages."""
        if message.echo or message.author is None:
            return

        author = message.author
        event = ChatEvent(
            username=author.name,
            text=message.content or "",
            display_name=author.display_name,
            is_moderator=bool(author.is_mod),
            is_broadcaster=bool(author.is_broadcaster),
            channel=message.channel.name if message.channel else None,
        )

        outcome = await self.context.activity.process_message(event)
        if outcome.awarded:
            logger.debug(f"Chat points: {event.login} total {outcome.award.new_total}")

        reply = await self.interpreter.handle(event)
        if reply:
            await self.reply(reply)

    async def reply(self, text: str) -> None:
        try:
            await self.chat_sender.send(text)
        except Exception as e:
            logger.warning(f"Failed to send chat reply: {e}")

    async def event_error(self, error: Exception, data: str | None = None):
        logger.error(f"Chat connection error: {error}")


async def run_bot(settings: Settings | None = None) -> None:
    """Run chat bot, background loops and HTTP API in one event loop.

    Shutdown is driven by the HTTP server: when it exits (on SIGINT or
    SIGTERM) the loops are told to stop and allowed to finish their current
    writes before connections close.
    """
    from stream_points.web.api.app import create_api

    settings = settings or get_settings()
    configure_logging(settings.log_level)

    missing = settings.missing_chat_settings()
    if missing:
        logger.critical(f"Missing required configuration: {', '.join(missing)}")
        raise SystemExit(1)

    context = await create_context(settings)
    bot = StreamPointsBot(context)
    server = uvicorn.Server(
        uvicorn.Config(
            create_api(context),
            host=settings.api_host,
            port=settings.api_port,
            log_config=None,
        )
    )

    stop = asyncio.Event()
    loops = [
        asyncio.create_task(context.sweeper.run(stop)),
        asyncio.create_task(context.monthly.run(stop)),
    ]
    bot_task = asyncio.create_task(bot.start())
    logger.info(f"Starting bot for #{settings.channel}, API on {settings.api_host}:{settings.api_port}")

    try:
        await server.serve()
    finally:
        logger.info("Shutting down")
        stop.set()
        await asyncio.gather(*loops, return_exceptions=True)
        await bot.close()
        bot_task.cancel()
        await asyncio.gather(bot_task, return_exceptions=True)
        await context.close()
