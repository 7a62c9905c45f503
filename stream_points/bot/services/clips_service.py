"""Clip submission workflow.

A submission moves ``pending -> approved`` or ``pending -> rejected`` exactly
once. Both transitions are a conditional UPDATE on ``status = 'pending'`` so
two reviewers racing on the same clip cannot both win, and the approval
award is committed in the same transaction as the status change.
"""

from __future__ import annotations

import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from stream_points.bot.services.announcer import Announcer
from stream_points.bot.services.base import BaseService
from stream_points.bot.services.base import ClipOwnerOracle
from stream_points.bot.services.base import Clock
from stream_points.bot.services.exceptions import ClipNotFoundError
from stream_points.bot.services.exceptions import ValidationError
from stream_points.bot.services.locks import UserLocks
from stream_points.bot.services.models import ReviewResult
from stream_points.bot.services.models import SubmissionResult
from stream_points.bot.services.points_service import PointsLedger
from stream_points.bot.services.twitch_api import channel_from_clip_url
from stream_points.bot.services.twitch_api import extract_clip_id
from stream_points.bot.services.twitch_api import is_valid_clip_url
from stream_points.shared.config import Settings
from stream_points.shared.database import Database
from stream_points.web.crud import ClipOperations
from stream_points.web.crud import ConflictError
from stream_points.web.crud import normalize_username
from stream_points.web.models import ClipStatus
from stream_points.web.models import ClipSubmission

logger = logging.getLogger(__name__)

REASON_INVALID_URL = "invalid_url"
REASON_NOT_OWNER = "not_owner"
REASON_DAILY_LIMIT = "daily_limit"
REASON_DUPLICATE_OWN = "duplicate_own"
REASON_DUPLICATE_OTHER = "duplicate_other"


class ClipWorkflow(BaseService):
    """Submission, review and listing of viewer clips."""

    def __init__(
        self,
        database: Database,
        settings: Settings,
        ledger: PointsLedger,
        locks: UserLocks,
        announcer: Announcer | None = None,
        owner_oracle: ClipOwnerOracle | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(database, settings, clock or ledger.clock, "ClipWorkflow")
        self.ledger = ledger
        self.locks = locks
        self.announcer = announcer
        self.owner_oracle = owner_oracle

        if settings.clip_ownership_mode == "permissive":
            logger.warning(
                "Clip ownership mode is PERMISSIVE: any viewer may submit any clip. "
                "Use only for testing."
            )

    def day_start(self, now: datetime) -> datetime:
        """Midnight of ``now``'s calendar day in the configured timezone."""
        local = now.astimezone(ZoneInfo(self.settings.timezone))
        return local.replace(hour=0, minute=0, second=0, microsecond=0)

    async def check_ownership(self, clip_url: str, submitter: str) -> bool:
        """Whether ``submitter`` created the clip.

        Strict mode asks the owner oracle when one is configured, otherwise
        compares the channel embedded in the URL. An unknown owner is a
        refusal.
        """
        if self.settings.clip_ownership_mode == "permissive":
            logger.warning(f"Skipping ownership check for {submitter}: {clip_url}")
            return True

        if self.owner_oracle is not None:
            owner = await self.owner_oracle.resolve_clip_owner(clip_url)
        else:
            owner = channel_from_clip_url(clip_url)

        if owner is None:
            logger.info(f"Clip owner unknown, refusing submission by {submitter}: {clip_url}")
            return False
        return owner.lower() == submitter

    async def submit(
        self,
        submitter: str,
        clip_url: str,
        display_name: str | None = None,
    ) -> SubmissionResult:
        """Submit a clip for review.

        Checks run in order: URL shape, ownership, daily quota, duplicate.
        The first failing check decides the refusal.

        Args:
            submitter: Chat login of the viewer
            clip_url: Clip link as typed in chat
            display_name: Cosmetic name stored with the submission

        Returns:
            SubmissionResult: Accepted with the new id, or refused with a reason
        """
        key = normalize_username(submitter)
        clip_url = (clip_url or "").strip()

        if not is_valid_clip_url(clip_url):
            return SubmissionResult(False, "Please provide a valid Twitch clip URL", REASON_INVALID_URL)

        if not await self.check_ownership(clip_url, key):
            return SubmissionResult(False, "You can only submit your own clips", REASON_NOT_OWNER)

        async with self.locks.hold(key):
            async with self.database.session() as session:
                clips = ClipOperations(session)
                now = self.now()

                submitted_today = await clips.count_submissions_since(key, self.day_start(now))
                if submitted_today >= self.settings.max_clips_per_day:
                    return SubmissionResult(
                        False,
                        f"Daily limit reached ({self.settings.max_clips_per_day} clips per day)",
                        REASON_DAILY_LIMIT,
                    )

                existing = await clips.find_by_url(clip_url)
                if existing is not None:
                    return self._duplicate(existing.submitter, key)

                try:
                    clip = await clips.create_submission(
                        key, display_name, clip_url, extract_clip_id(clip_url), now
                    )
                    await session.commit()
                except ConflictError:
                    await session.rollback()
                    existing = await clips.find_by_url(clip_url)
                    return self._duplicate(existing.submitter if existing else None, key)

        logger.info(f"Clip {clip.id} submitted by {key}: {clip_url}")
        return SubmissionResult(
            True,
            f"Clip submitted (ID {clip.id}), waiting for review",
            clip_pk=clip.id,
            clip_id=clip.clip_id,
        )

    @staticmethod
    def _duplicate(owner: str | None, submitter: str) -> SubmissionResult:
        if owner == submitter:
            return SubmissionResult(False, "You already submitted this clip", REASON_DUPLICATE_OWN)
        return SubmissionResult(
            False, "This clip was already submitted by someone else", REASON_DUPLICATE_OTHER
        )

    async def _load_pending(self, clip_pk: int) -> ClipSubmission:
        async with self.database.session() as session:
            clip = await ClipOperations(session).get_clip(clip_pk)
        if clip is None or clip.status != ClipStatus.PENDING.value:
            raise ClipNotFoundError(clip_pk)
        return clip

    async def approve(
        self,
        clip_pk: int,
        reviewer: str,
        points: int,
        note: str | None = None,
    ) -> ReviewResult:
        """Approve a pending clip and award its submitter.

        Status change and award share one transaction: if the award fails the
        clip stays pending. The announcement is scheduled after commit.

        Raises:
            ValidationError: If ``points`` is negative or not an integer
            ClipNotFoundError: If the clip is unknown or already reviewed
            UserNotFoundError: If the submitter has no user record
        """
        if isinstance(points, bool) or not isinstance(points, int) or points < 0:
            raise ValidationError("points", "Points must be a non-negative integer")

        clip = await self._load_pending(clip_pk)
        new_total = None

        async with self.locks.hold(clip.submitter):
            async with self.database.session() as session:
                clips = ClipOperations(session)
                if not await clips.mark_approved(clip_pk, reviewer, points, note, self.now()):
                    raise ClipNotFoundError(clip_pk)

                award = None
                if points > 0:
                    award = await self.ledger.award_in_session(
                        session, clip.submitter, points, f"clip-approval #{clip_pk}"
                    )
                    new_total = award.new_total
                await session.commit()

        logger.info(f"Clip {clip_pk} approved by {reviewer} with {points} points")

        if award is not None and self.announcer is not None:
            name = clip.display_name or clip.submitter
            self.announcer.announce(
                f"🎬 Clip by @{name} approved! +{award.final_points} points "
                f"(total: {award.new_total})"
            )

        return ReviewResult(
            clip_pk=clip_pk,
            status=ClipStatus.APPROVED.value,
            submitter=clip.submitter,
            display_name=clip.display_name,
            points_awarded=points,
            new_total=new_total,
            note=note,
        )

    async def reject(self, clip_pk: int, reviewer: str, note: str | None) -> ReviewResult:
        """Reject a pending clip.

        Raises:
            ClipNotFoundError: If the clip is unknown or already reviewed
        """
        async with self.database.session() as session:
            clips = ClipOperations(session)
            if not await clips.mark_rejected(clip_pk, reviewer, note, self.now()):
                raise ClipNotFoundError(clip_pk)
            clip = await clips.get_clip(clip_pk)
            await session.commit()

        logger.info(f"Clip {clip_pk} rejected by {reviewer}: {note}")
        return ReviewResult(
            clip_pk=clip_pk,
            status=ClipStatus.REJECTED.value,
            submitter=clip.submitter,
            display_name=clip.display_name,
            points_awarded=0,
            note=note,
        )

    async def pending(self, limit: int | None = None) -> list[ClipSubmission]:
        async with self.database.session() as session:
            return await ClipOperations(session).get_pending(limit)

    async def public(
        self,
        limit: int = 20,
        offset: int = 0,
        search: str | None = None,
    ) -> tuple[list[ClipSubmission], int]:
        async with self.database.session() as session:
            return await ClipOperations(session).get_public(limit, offset, search)
