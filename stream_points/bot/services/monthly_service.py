"""Monthly winner snapshot and ledger reset."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from stream_points.bot.services.announcer import Announcer
from stream_points.bot.services.base import BaseService
from stream_points.bot.services.base import Clock
from stream_points.bot.services.exceptions import ValidationError
from stream_points.bot.services.locks import UserLocks
from stream_points.bot.services.models import LeaderboardEntry
from stream_points.bot.services.models import MonthlyResult
from stream_points.shared.config import Settings
from stream_points.shared.database import Database
from stream_points.web.crud import UserOperations
from stream_points.web.crud import WinnerOperations
from stream_points.web.crud import normalize_username

logger = logging.getLogger(__name__)

# Upper bound on a single scheduler sleep so clock changes are picked up
MAX_SCHEDULER_SLEEP = 3600


class MonthlyResetService(BaseService):
    """Writes winner records and zeroes every balance in one transaction.

    Both entry points take exclusive ledger access, so no award can
    interleave with the snapshot and reset.
    """

    def __init__(
        self,
        database: Database,
        settings: Settings,
        locks: UserLocks,
        announcer: Announcer | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(database, settings, clock, "MonthlyResetService")
        self.locks = locks
        self.announcer = announcer
        self.tz = ZoneInfo(settings.timezone)

    def month_key(self, moment: datetime) -> str:
        return moment.astimezone(self.tz).strftime("%Y-%m")

    def previous_month_key(self, moment: datetime) -> str:
        local = moment.astimezone(self.tz)
        if local.month == 1:
            return f"{local.year - 1}-12"
        return f"{local.year}-{local.month - 1:02d}"

    def next_run_after(self, moment: datetime) -> datetime:
        """Midnight starting the next month, in the configured timezone."""
        local = moment.astimezone(self.tz)
        if local.month == 12:
            return datetime(local.year + 1, 1, 1, tzinfo=self.tz)
        return datetime(local.year, local.month + 1, 1, tzinfo=self.tz)

    async def end_month(self, winners: list[dict[str, Any]]) -> MonthlyResult:
        """Admin end-of-period action with an explicit winner list.

        Args:
            winners: Ordered entries with ``username``, ``points`` and an
                optional ``display_name``; rank follows list order

        Returns:
            MonthlyResult: Winners recorded under the current month key

        Raises:
            ValidationError: If the list is empty or an entry is malformed
        """
        if not winners:
            raise ValidationError("winners", "At least one winner is required")

        cleaned = []
        for winner in winners:
            username = normalize_username(str(winner.get("username") or ""))
            points = winner.get("points")
            if not username:
                raise ValidationError("winners", "Winner username must not be empty")
            if isinstance(points, bool) or not isinstance(points, int) or points < 0:
                raise ValidationError("winners", f"Invalid points for {username}")
            cleaned.append(
                {
                    "username": username,
                    "display_name": winner.get("display_name"),
                    "points": points,
                }
            )

        return await self._snapshot_and_reset(self.month_key(self.now()), cleaned)

    async def run_scheduled(self) -> MonthlyResult:
        """Snapshot the current top users as winners of the month that just ended."""
        month = self.previous_month_key(self.now())
        return await self._snapshot_and_reset(month, None)

    async def _snapshot_and_reset(
        self,
        month: str,
        winners: list[dict[str, Any]] | None,
    ) -> MonthlyResult:
        async with self.locks.hold_all():
            async with self.database.session() as session:
                if winners is None:
                    top = await UserOperations(session).get_ranked_winners(
                        self.settings.monthly_winner_count
                    )
                    winners = [
                        {
                            "username": user.username,
                            "display_name": user.display_name,
                            "points": user.points,
                        }
                        for user in top
                    ]

                records = await WinnerOperations(session).record_winners(
                    month, winners, self.now()
                )
                reset_count = await UserOperations(session).reset_all_balances()
                await session.commit()

        entries = [
            LeaderboardEntry(
                rank=record.rank,
                username=record.username,
                display_name=record.display_name,
                points=record.points,
            )
            for record in records
        ]
        logger.info(f"Month {month} closed: {len(entries)} winners, {reset_count} balances reset")

        if self.announcer is not None:
            self.announcer.announce(self._announcement(month, entries))

        return MonthlyResult(month=month, winners=entries, reset_count=reset_count)

    @staticmethod
    def _announcement(month: str, entries: list[LeaderboardEntry]) -> str:
        if not entries:
            return f"🏆 Month {month} is over! No winners this time. Points have been reset."
        podium = " | ".join(
            f"{entry.rank}. {entry.display_name or entry.username} ({entry.points})"
            for entry in entries
        )
        return f"🏆 Winners of {month}: {podium}. Points have been reset, good luck next month!"

    async def run(self, stop: asyncio.Event) -> None:
        """Run the monthly job at each month boundary until ``stop`` is set."""
        next_run = self.next_run_after(self.now())
        logger.info(f"Monthly reset scheduled for {next_run.isoformat()}")

        while not stop.is_set():
            remaining = (next_run - self.now()).total_seconds()
            if remaining > 0:
                try:
                    await asyncio.wait_for(
                        stop.wait(), timeout=min(remaining, MAX_SCHEDULER_SLEEP)
                    )
                    break
                except asyncio.TimeoutError:
                    continue

            try:
                await self.run_scheduled()
            except Exception as e:
                logger.error(f"Error running monthly job: {e}")
            next_run = self.next_run_after(self.now())
            logger.info(f"Next monthly reset scheduled for {next_run.isoformat()}")

        logger.info("Monthly scheduler stopped")
