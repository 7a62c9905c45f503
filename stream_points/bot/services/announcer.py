"""Best-effort chat announcements.

Announcements run as background tasks and never raise into the award path.
The privileged chat API is tried first; the chat connection is the fallback.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from stream_points.bot.services.base import ChatSender

logger = logging.getLogger(__name__)


class PrivilegedChatSender(Protocol):
    async def send_chat_message(self, message: str) -> bool:
        ...


class Announcer:
    """Fire-and-forget message delivery with a fallback chain."""

    def __init__(
        self,
        privileged: PrivilegedChatSender | None = None,
        fallback: ChatSender | None = None,
    ):
        self.privileged = privileged
        self.fallback = fallback
        self._tasks: set[asyncio.Task] = set()

    def attach_fallback(self, sender: ChatSender | None) -> None:
        """Set the chat connection once it is up."""
        self.fallback = sender

    async def deliver(self, message: str) -> bool:
        """Send ``message`` now. Returns False if every channel failed."""
        if self.privileged is not None:
            try:
                if await self.privileged.send_chat_message(message):
                    return True
            except Exception as e:
                logger.warning(f"Privileged announcement failed: {e}")

        if self.fallback is not None:
            try:
                await self.fallback.send(message)
                return True
            except Exception as e:
                logger.warning(f"Chat announcement failed: {e}")

        logger.error(f"Announcement dropped: {message}")
        return False

    def announce(self, message: str) -> asyncio.Task:
        """Schedule delivery without waiting for it."""
        task = asyncio.create_task(self.deliver(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for pending announcements, used on shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
