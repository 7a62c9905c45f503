"""Bot blacklist service.

A user counts as a bot only when a blacklist row exists for the normalized
name and that row's stored username is non-empty after trimming. Malformed
rows never match anyone and are removed by ``cleanup``.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from stream_points.bot.services.base import BaseService
from stream_points.bot.services.exceptions import ValidationError
from stream_points.web.crud import BotBlacklistOperations
from stream_points.web.crud import normalize_username
from stream_points.web.models import BotBlacklistEntry

logger = logging.getLogger(__name__)


def _is_valid_entry(entry: BotBlacklistEntry | None) -> bool:
    return entry is not None and bool((entry.username or "").strip())


class BotClassifier(BaseService):
    """Maintains and answers queries against the bot blacklist."""

    async def is_bot(self, username: str, session: AsyncSession | None = None) -> bool:
        """Check whether ``username`` is a known non-human account.

        Args:
            username: Chat login, any case
            session: Optional session to run inside; a new one is opened otherwise

        Returns:
            True only for a blacklist row with a non-empty username
        """
        key = normalize_username(username or "")
        if not key:
            return False

        if session is not None:
            entry = await BotBlacklistOperations(session).get_entry(key)
        else:
            async with self.database.session() as own_session:
                entry = await BotBlacklistOperations(own_session).get_entry(key)

        return _is_valid_entry(entry)

    async def add(
        self,
        username: str,
        reason: str | None = None,
        added_by: str | None = None,
    ) -> BotBlacklistEntry:
        """Insert or replace the blacklist row for ``username``.

        Raises:
            ValidationError: If the username is empty
        """
        key = normalize_username(username or "")
        if not key:
            raise ValidationError("username", "Username must not be empty")

        async with self.database.session() as session:
            entry = await BotBlacklistOperations(session).add_entry(
                key, reason, added_by, self.now()
            )
            await session.commit()

        logger.info(f"Added {key} to bot blacklist (by {added_by}: {reason})")
        return entry

    async def remove(self, username: str) -> bool:
        key = normalize_username(username or "")
        if not key:
            raise ValidationError("username", "Username must not be empty")

        async with self.database.session() as session:
            removed = await BotBlacklistOperations(session).remove_entry(key)
            await session.commit()

        if removed:
            logger.info(f"Removed {key} from bot blacklist")
        return removed > 0

    async def cleanup(self) -> int:
        """Delete rows with a null, empty or whitespace-only username."""
        async with self.database.session() as session:
            deleted = await BotBlacklistOperations(session).delete_invalid()
            await session.commit()

        if deleted:
            logger.warning(f"Removed {deleted} malformed bot blacklist entries")
        return deleted

    async def list_entries(self, limit: int | None = None) -> list[BotBlacklistEntry]:
        async with self.database.session() as session:
            return await BotBlacklistOperations(session).list_entries(limit)

    async def diagnostics(self) -> dict[str, Any]:
        async with self.database.session() as session:
            ops = BotBlacklistOperations(session)
            counts = await ops.get_counts()
            entries = await ops.list_entries()

        malformed = [
            {"id": entry.id, "username": entry.username}
            for entry in entries
            if not _is_valid_entry(entry)
        ]
        return {**counts, "malformed_entries": malformed}
