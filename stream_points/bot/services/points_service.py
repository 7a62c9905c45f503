"""Points ledger: the single place where balances change.

Every award path (chat message, clip approval, viewtime, admin grant, drops)
ends in ``PointsLedger.award_in_session``. Callers that are not already
holding the user's lock go through ``award``, which takes it.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from stream_points.bot.services.base import BaseService
from stream_points.bot.services.base import Clock
from stream_points.bot.services.exceptions import UserNotFoundError
from stream_points.bot.services.exceptions import ValidationError
from stream_points.bot.services.locks import UserLocks
from stream_points.bot.services.models import AwardResult
from stream_points.shared.config import Settings
from stream_points.shared.database import Database
from stream_points.shared.logging_config import log_suspicious_activity
from stream_points.web.crud import DOUBLE_POINTS_KEY
from stream_points.web.crud import ConflictError
from stream_points.web.crud import NotFoundError
from stream_points.web.crud import PointsOperations
from stream_points.web.crud import SettingsOperations
from stream_points.web.crud import normalize_username

logger = logging.getLogger(__name__)


class PointsLedger(BaseService):
    """Applies modifiers, persists deltas and raises the large-award signal."""

    def __init__(
        self,
        database: Database,
        settings: Settings,
        locks: UserLocks,
        clock: Clock | None = None,
    ):
        super().__init__(database, settings, clock, "PointsLedger")
        self.locks = locks

    async def award_in_session(
        self,
        session: AsyncSession,
        username: str,
        base_points: int,
        reason: str,
    ) -> AwardResult:
        """Apply an award inside the caller's transaction.

        The caller must hold ``locks.hold(username)`` and commit afterwards.
        The double-points setting is read from the same session, so a toggle
        takes effect on the very next award.

        Args:
            session: Open session; not committed here
            username: Award target
            base_points: Amount before modifiers
            reason: Short cause label for logs and audit

        Returns:
            AwardResult: Old and new balance plus the applied amount

        Raises:
            UserNotFoundError: If there is no record for the user
            ValidationError: If the delta would make the balance negative
        """
        if isinstance(base_points, bool) or not isinstance(base_points, int):
            raise ValidationError("points", "Points must be an integer")

        key = normalize_username(username)
        double_points = await SettingsOperations(session).get_bool(DOUBLE_POINTS_KEY)
        final_points = base_points * 2 if double_points and base_points > 0 else base_points

        try:
            old_total, new_total = await PointsOperations(session).add_points(key, final_points)
        except NotFoundError as e:
            raise UserNotFoundError(key) from e
        except ConflictError as e:
            raise ValidationError("points", str(e)) from e

        if final_points > self.settings.large_award_threshold:
            log_suspicious_activity(
                f"Large award of {final_points} points to {key}",
                username=key,
                points=final_points,
                reason=reason,
                new_total=new_total,
            )

        logger.info(
            f"Awarded {final_points} points to {key} for {reason}"
            f"{' (double points)' if double_points and base_points > 0 else ''}"
            f", total {new_total}"
        )

        return AwardResult(
            username=key,
            base_points=base_points,
            final_points=final_points,
            old_total=old_total,
            new_total=new_total,
            reason=reason,
            double_points=double_points and base_points > 0,
        )

    async def award(self, username: str, base_points: int, reason: str) -> AwardResult:
        """Serialize on the user's lock and commit a single award."""
        async with self.locks.hold(username):
            async with self.database.session() as session:
                result = await self.award_in_session(session, username, base_points, reason)
                await session.commit()
        return result

    async def grant(self, username: str, amount: int, granted_by: str) -> AwardResult:
        """Admin grant. Only positive amounts are accepted."""
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("amount", "Amount must be a positive integer")
        return await self.award(username, amount, f"admin-give by {granted_by}")

    async def is_double_points(self) -> bool:
        async with self.database.session() as session:
            return await SettingsOperations(session).get_bool(DOUBLE_POINTS_KEY)

    async def set_double_points(self, enabled: bool) -> bool:
        async with self.database.session() as session:
            await SettingsOperations(session).set_value(
                DOUBLE_POINTS_KEY, "true" if enabled else "false", self.now()
            )
            await session.commit()

        logger.info(f"Double points {'enabled' if enabled else 'disabled'}")
        return enabled

    async def toggle_double_points(self) -> bool:
        return await self.set_double_points(not await self.is_double_points())
