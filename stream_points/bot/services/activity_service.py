"""Chat activity: presence tracking, chat-message points, drops and stats."""

from __future__ import annotations

import logging
import random
from datetime import timedelta
from typing import Any

from stream_points.bot.services.base import BaseService
from stream_points.bot.services.base import Clock
from stream_points.bot.services.bot_classifier import BotClassifier
from stream_points.bot.services.exceptions import ServiceError
from stream_points.bot.services.exceptions import ValidationError
from stream_points.bot.services.locks import UserLocks
from stream_points.bot.services.models import ChatAwardOutcome
from stream_points.bot.services.models import ChatEvent
from stream_points.bot.services.models import DropResult
from stream_points.bot.services.models import LeaderboardEntry
from stream_points.bot.services.points_service import PointsLedger
from stream_points.bot.services.spam_gate import AntiSpamGate
from stream_points.bot.services.twitch_api import StreamStatus
from stream_points.shared.config import Settings
from stream_points.shared.database import Database
from stream_points.web.crud import DatabaseOperationError
from stream_points.web.crud import UserOperations
from stream_points.web.crud import normalize_username
from stream_points.web.models import UserRecord

logger = logging.getLogger(__name__)


class ActivityService(BaseService):
    """Entry point for every chat message on the points path."""

    def __init__(
        self,
        database: Database,
        settings: Settings,
        ledger: PointsLedger,
        gate: AntiSpamGate,
        classifier: BotClassifier,
        stream_status: StreamStatus,
        locks: UserLocks,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ):
        super().__init__(database, settings, clock or ledger.clock, "ActivityService")
        self.ledger = ledger
        self.gate = gate
        self.classifier = classifier
        self.stream_status = stream_status
        self.locks = locks
        self.rng = rng or random.Random()

    async def process_message(self, event: ChatEvent) -> ChatAwardOutcome:
        """Record presence for a chat message and award chat points if eligible.

        Presence is always recorded. The award path checks, in order: feature
        flag, message length, bot blacklist, stream live status, anti-spam
        gate. Gate evaluation, award and tracking update run under the
        user's lock in one transaction.

        Args:
            event: Incoming chat message

        Returns:
            ChatAwardOutcome: Whether points were awarded, and why not otherwise
        """
        key = event.login
        if not key:
            return ChatAwardOutcome(False, "no_username")

        try:
            async with self.locks.hold(key):
                async with self.database.session() as session:
                    await UserOperations(session).record_presence(
                        key, event.display_name, self.now()
                    )
                    await session.commit()

            if not self.settings.enable_chat_points:
                return ChatAwardOutcome(False, "disabled")

            if len(event.text.strip()) < self.settings.min_message_length:
                return ChatAwardOutcome(False, "too_short")

            if await self.classifier.is_bot(key):
                logger.debug(f"Bot detected, no chat points for {key}")
                return ChatAwardOutcome(False, "bot")

            if not await self.stream_status.is_live():
                logger.debug(f"Stream offline, no chat points for {key}")
                return ChatAwardOutcome(False, "offline")

            async with self.locks.hold(key):
                async with self.database.session() as session:
                    now = self.now()
                    decision = await self.gate.evaluate(session, key, now)
                    if not decision.allowed:
                        logger.debug(f"Anti-spam blocked chat points for {key}: {decision.reason}")
                        return ChatAwardOutcome(False, decision.reason)

                    award = await self.ledger.award_in_session(
                        session, key, self.settings.points_per_message, "chat-message"
                    )
                    await self.gate.record_accepted(session, key, len(event.text), now)
                    await session.commit()

            return ChatAwardOutcome(True, award=award)

        except (DatabaseOperationError, ServiceError) as e:
            logger.error(f"Chat points failed for {key}: {e}")
            return ChatAwardOutcome(False, "error")

    async def get_user(self, username: str) -> UserRecord | None:
        async with self.database.session() as session:
            return await UserOperations(session).get_user(username)

    async def leaderboard(self, limit: int = 10) -> list[LeaderboardEntry]:
        async with self.database.session() as session:
            users = await UserOperations(session).get_top_users(limit)
        return [
            LeaderboardEntry(
                rank=rank,
                username=user.username,
                display_name=user.display_name,
                points=user.points,
            )
            for rank, user in enumerate(users, start=1)
        ]

    async def all_users(self, limit: int = 100) -> list[UserRecord]:
        async with self.database.session() as session:
            return await UserOperations(session).get_top_users(limit)

    async def active_usernames(self) -> list[str]:
        """Users seen in chat within the presence timeout."""
        since = self.now() - timedelta(seconds=self.settings.presence_timeout_seconds)
        async with self.database.session() as session:
            return await UserOperations(session).get_active_usernames(since)

    async def user_stats(self, username: str) -> dict[str, Any] | None:
        user = await self.get_user(username)
        if user is None:
            return None
        return {
            "username": user.username,
            "display_name": user.display_name,
            "points": user.points,
            "view_seconds": user.view_seconds,
            "message_count": user.message_count,
            "last_seen_at": user.last_seen_at,
        }

    async def drop(self, usernames: list[str], amount: int, reason: str) -> DropResult:
        """Award ``amount`` to each user independently.

        A failure for one user is logged and does not stop the others.
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("amount", "Amount must be a positive integer")

        result = DropResult(amount=amount, created_at=self.now())
        for username in usernames:
            try:
                await self.ledger.award(username, amount, reason)
                result.recipients.append(normalize_username(username))
            except (DatabaseOperationError, ServiceError) as e:
                logger.error(f"Drop to {username} failed: {e}")
                result.failed.append(normalize_username(username))
        return result

    async def drop_all(self, amount: int, dropped_by: str) -> DropResult:
        users = await self.active_usernames()
        return await self.drop(users, amount, f"admin-dropall by {dropped_by}")

    async def drop_random(self, amount: int, count: int, dropped_by: str) -> DropResult:
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise ValidationError("count", "Count must be a positive integer")

        users = await self.active_usernames()
        chosen = self.rng.sample(users, min(count, len(users)))
        return await self.drop(chosen, amount, f"admin-droprandom by {dropped_by}")
