"""Viewtime sweeper.

Every heartbeat, presence seconds are credited to users who have chatted at
least once, were seen recently, and appear in the platform's viewer list.
Whole multiples of ``viewtime_seconds_per_point`` become points; the
remainder is carried to the next sweep.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from stream_points.bot.services.base import BaseService
from stream_points.bot.services.base import Clock
from stream_points.bot.services.base import ViewerListOracle
from stream_points.bot.services.bot_classifier import BotClassifier
from stream_points.bot.services.exceptions import ServiceError
from stream_points.bot.services.locks import UserLocks
from stream_points.bot.services.models import SweepResult
from stream_points.bot.services.points_service import PointsLedger
from stream_points.bot.services.twitch_api import StreamStatus
from stream_points.shared.config import Settings
from stream_points.shared.database import Database
from stream_points.web.crud import DatabaseOperationError
from stream_points.web.crud import UserOperations

logger = logging.getLogger(__name__)


class ViewtimeSweeper(BaseService):
    """Converts platform-attested presence into points."""

    def __init__(
        self,
        database: Database,
        settings: Settings,
        ledger: PointsLedger,
        classifier: BotClassifier,
        stream_status: StreamStatus,
        locks: UserLocks,
        viewer_oracle: ViewerListOracle | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(database, settings, clock or ledger.clock, "ViewtimeSweeper")
        self.ledger = ledger
        self.classifier = classifier
        self.stream_status = stream_status
        self.locks = locks
        self.viewer_oracle = viewer_oracle

    async def sweep(self) -> SweepResult:
        """Run one sweep.

        Skips entirely when viewtime is disabled, the stream is offline, or
        the viewer list is empty or unavailable. Each user is credited in
        its own transaction; a failure is logged and the sweep moves on.

        Returns:
            SweepResult: Counts, or the reason the sweep was skipped
        """
        if not self.settings.enable_viewtime_points:
            return SweepResult(skipped_reason="disabled")

        if not await self.stream_status.is_live():
            logger.info("Stream offline, skipping viewtime sweep")
            return SweepResult(skipped_reason="offline")

        viewers: set[str] = set()
        if self.viewer_oracle is not None:
            viewers = {v.lower() for v in await self.viewer_oracle.list_current_viewers()}
        if not viewers:
            logger.info("No viewer list available, skipping viewtime sweep")
            return SweepResult(skipped_reason="no_viewers")

        since = self.now() - timedelta(seconds=self.settings.presence_timeout_seconds)
        async with self.database.session() as session:
            chat_active = await UserOperations(session).get_chat_active_users(since)

        eligible = [user.username for user in chat_active if user.username in viewers]
        result = SweepResult(eligible=len(eligible))
        logger.info(
            f"Viewtime sweep: {len(eligible)} eligible "
            f"({len(viewers)} viewers, {len(chat_active)} chat-active)"
        )

        for username in eligible:
            try:
                if await self.classifier.is_bot(username):
                    logger.debug(f"Bot detected, skipping viewtime: {username}")
                    continue

                points = await self.credit(username)
                result.awarded_users += 1 if points else 0
                result.points_awarded += points

            except (DatabaseOperationError, ServiceError) as e:
                logger.error(f"Viewtime credit failed for {username}: {e}")
                result.failed_users.append(username)

        return result

    async def credit(self, username: str) -> int:
        """Add one heartbeat to a user's presence and pay out whole points.

        Returns:
            int: Base points awarded
        """
        per_point = self.settings.viewtime_seconds_per_point

        async with self.locks.hold(username):
            async with self.database.session() as session:
                users = UserOperations(session)
                user = await users.require_user(username)
                points, remainder = divmod(
                    (user.view_seconds or 0) + self.settings.heartbeat_seconds, per_point
                )

                if points > 0:
                    await self.ledger.award_in_session(session, username, points, "viewtime")
                await users.set_view_seconds(username, remainder)
                await session.commit()

        return points

    async def run(self, stop: asyncio.Event) -> None:
        """Sweep every heartbeat until ``stop`` is set.

        The stop event is only checked between sweeps, so an in-flight
        sweep finishes its current writes.
        """
        logger.info(f"Viewtime sweeper started ({self.settings.heartbeat_seconds}s interval)")
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.settings.heartbeat_seconds)
                break
            except asyncio.TimeoutError:
                pass

            try:
                result = await self.sweep()
                if not result.skipped:
                    logger.info(
                        f"Viewtime sweep done: {result.points_awarded} points to "
                        f"{result.awarded_users} users, {len(result.failed_users)} failed"
                    )
            except Exception as e:
                logger.error(f"Error running viewtime sweep: {e}")

        logger.info("Viewtime sweeper stopped")
