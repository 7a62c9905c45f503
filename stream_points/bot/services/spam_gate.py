"""Anti-spam gate for chat-message points.

The gate itself is read-only. After an award has been granted the caller
records the message with ``record_accepted`` so a message is never counted
against the user without also having paid out.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from stream_points.bot.services.base import BaseService
from stream_points.bot.services.models import GateDecision
from stream_points.bot.services.models import SpamStatus
from stream_points.web.crud import SpamTrackingOperations
from stream_points.web.crud import UserOperations
from stream_points.web.crud import normalize_username
from stream_points.web.models import UserRecord

logger = logging.getLogger(__name__)

HOUR_SECONDS = 3600

REASON_COOLDOWN = "cooldown"
REASON_HOURLY_CAP = "hourly_cap"
REASON_RATE_LIMIT = "rate_limit"


def to_epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class AntiSpamGate(BaseService):
    """Cooldown, hourly cap and sliding-window rate check."""

    def hourly_count(self, user: UserRecord, now: datetime) -> int:
        """Awards in the current hourly window, 0 once the window has elapsed."""
        window_start = user.chat_points_hour_reset_at
        if window_start is None:
            return 0
        if (now - window_start).total_seconds() >= HOUR_SECONDS:
            return 0
        return user.chat_points_last_hour or 0

    def cooldown_remaining(self, user: UserRecord, now: datetime) -> int:
        if user.last_message_at is None:
            return 0
        elapsed = (now - user.last_message_at).total_seconds()
        return max(0, math.ceil(self.settings.chat_points_cooldown_seconds - elapsed))

    async def evaluate(
        self,
        session: AsyncSession,
        username: str,
        now: datetime | None = None,
    ) -> GateDecision:
        """Run the checks in order and stop at the first failure.

        Args:
            session: Session to read user and tracking state from
            username: Chat login
            now: Evaluation time, defaults to the service clock

        Returns:
            GateDecision: ``allowed`` plus the failing check's reason
        """
        now = now or self.now()
        user = await UserOperations(session).get_user(username)
        if user is None:
            return GateDecision(True)

        if user.last_message_at is not None:
            elapsed = (now - user.last_message_at).total_seconds()
            if elapsed < self.settings.chat_points_cooldown_seconds:
                return GateDecision(False, REASON_COOLDOWN)

        if self.hourly_count(user, now) >= self.settings.max_chat_points_per_hour:
            return GateDecision(False, REASON_HOURLY_CAP)

        window_ms = self.settings.spam_detection_window_seconds * 1000
        recent = await SpamTrackingOperations(session).count_since(
            user.username, to_epoch_ms(now) - window_ms
        )
        if recent >= self.settings.max_messages_per_window:
            return GateDecision(False, REASON_RATE_LIMIT)

        return GateDecision(True)

    async def can_award(self, username: str) -> bool:
        async with self.database.session() as session:
            decision = await self.evaluate(session, username)
        return decision.allowed

    async def record_accepted(
        self,
        session: AsyncSession,
        username: str,
        message_length: int,
        now: datetime | None = None,
    ) -> None:
        """Record an awarded message and advance the tracking fields.

        Inserts the tracking row, prunes rows older than the retention
        period, and moves the cooldown anchor and hourly counter forward.
        """
        now = now or self.now()
        now_ms = to_epoch_ms(now)
        key = normalize_username(username)

        tracking = SpamTrackingOperations(session)
        await tracking.record_message(key, now_ms, message_length)
        pruned = await tracking.prune_before(
            now_ms - self.settings.spam_tracking_retention_seconds * 1000
        )
        if pruned:
            logger.debug(f"Pruned {pruned} spam tracking rows")

        await UserOperations(session).record_chat_award(key, now)

    async def status(self, username: str) -> SpamStatus:
        now = self.now()
        key = normalize_username(username)
        async with self.database.session() as session:
            decision = await self.evaluate(session, key, now)
            user = await UserOperations(session).get_user(key)
            recent = await SpamTrackingOperations(session).count_since(
                key, to_epoch_ms(now) - self.settings.spam_detection_window_seconds * 1000
            )

        return SpamStatus(
            username=key,
            decision=decision,
            cooldown_remaining=self.cooldown_remaining(user, now) if user else 0,
            hourly_count=self.hourly_count(user, now) if user else 0,
            recent_messages=recent,
        )

    async def reset(self, username: str) -> bool:
        """Clear cooldown and hourly counter for one user."""
        async with self.database.session() as session:
            found = await UserOperations(session).reset_spam_state(username, self.now())
            await session.commit()

        if found:
            logger.info(f"Anti-spam state reset for {normalize_username(username)}")
        return found

    def thresholds(self) -> dict[str, Any]:
        s = self.settings
        return {
            "min_message_length": s.min_message_length,
            "cooldown_seconds": s.chat_points_cooldown_seconds,
            "max_points_per_hour": s.max_chat_points_per_hour,
            "max_messages_per_window": s.max_messages_per_window,
            "window_seconds": s.spam_detection_window_seconds,
            "points_per_message": s.points_per_message,
        }
