"""Database operations for the stream points bot.

Each ``*Operations`` class wraps one aggregate and works inside the session
it is given. Transaction boundaries belong to the caller: operations flush
but never commit, so a service can group several of them into one unit of
work and roll everything back on failure.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, update, delete, func, desc, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from stream_points.web.models import (
    BotBlacklistEntry,
    ClipStatus,
    ClipSubmission,
    GlobalSetting,
    SpamTrackingEntry,
    UserRecord,
    WinnerRecord,
)

logger = logging.getLogger(__name__)

DOUBLE_POINTS_KEY = "double_points_enabled"


class DatabaseOperationError(Exception):
    """Base exception for database operations."""
    pass


class NotFoundError(DatabaseOperationError):
    """Raised when a requested resource is not found."""
    pass


class ConflictError(DatabaseOperationError):
    """Raised when a database constraint is violated."""
    pass


def normalize_username(username: str) -> str:
    """Lowercase login used as the identity key."""
    return username.strip().lstrip("@").lower()


class UserOperations:
    """Database operations for viewer records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user(self, username: str) -> Optional[UserRecord]:
        try:
            stmt = select(UserRecord).where(
                UserRecord.username == normalize_username(username)
            )
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        except Exception as e:
            raise DatabaseOperationError(f"Failed to get user: {e}") from e

    async def require_user(self, username: str) -> UserRecord:
        """Get a user record or fail.

        Raises:
            NotFoundError: If the user has never chatted
            DatabaseOperationError: If the query fails
        """
        user = await self.get_user(username)
        if user is None:
            raise NotFoundError(f"User not found: {normalize_username(username)}")
        return user

    async def record_presence(
        self,
        username: str,
        display_name: Optional[str],
        now: datetime,
    ) -> Tuple[UserRecord, bool]:
        """Register a chat message for presence purposes.

        Creates the record on first sight, then bumps ``last_seen_at`` and
        ``message_count`` and refreshes the display name.

        Args:
            username: Chat login
            display_name: Display name from the chat metadata
            now: Message time

        Returns:
            Tuple[UserRecord, bool]: The record and whether it was just created

        Raises:
            DatabaseOperationError: If the write fails
        """
        try:
            key = normalize_username(username)
            user = await self.get_user(key)
            created = user is None

            if created:
                user = UserRecord(username=key, display_name=display_name or key)
                self.session.add(user)

            user.last_seen_at = now
            user.message_count = (user.message_count or 0) + 1
            if display_name:
                user.display_name = display_name

            await self.session.flush()
            return user, created

        except DatabaseOperationError:
            raise
        except Exception as e:
            raise DatabaseOperationError(f"Failed to record presence: {e}") from e

    async def record_chat_award(self, username: str, now: datetime) -> UserRecord:
        """Advance the anti-spam tracking fields after a chat award.

        Starts a new hourly window when the previous one has elapsed,
        otherwise increments the counter inside it.
        """
        try:
            user = await self.require_user(username)

            window_start = user.chat_points_hour_reset_at
            if window_start is None or now - window_start >= timedelta(hours=1):
                user.chat_points_last_hour = 1
                user.chat_points_hour_reset_at = now
            else:
                user.chat_points_last_hour = (user.chat_points_last_hour or 0) + 1

            user.last_message_at = now
            await self.session.flush()
            return user

        except NotFoundError:
            raise
        except Exception as e:
            raise DatabaseOperationError(f"Failed to update chat tracking: {e}") from e

    async def reset_spam_state(self, username: str, now: datetime) -> bool:
        """Clear cooldown and hourly counter. Returns False for unknown users."""
        try:
            result = await self.session.execute(
                update(UserRecord)
                .where(UserRecord.username == normalize_username(username))
                .values(
                    last_message_at=None,
                    chat_points_last_hour=0,
                    chat_points_hour_reset_at=now,
                )
            )
            return result.rowcount > 0
        except Exception as e:
            raise DatabaseOperationError(f"Failed to reset spam state: {e}") from e

    async def set_view_seconds(self, username: str, view_seconds: int) -> None:
        try:
            result = await self.session.execute(
                update(UserRecord)
                .where(UserRecord.username == normalize_username(username))
                .values(view_seconds=view_seconds)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"User not found: {username}")
        except NotFoundError:
            raise
        except Exception as e:
            raise DatabaseOperationError(f"Failed to update view seconds: {e}") from e

    async def get_top_users(self, limit: int = 10) -> List[UserRecord]:
        """Get users ordered by points descending.

        Ties are broken by username so ranks are stable between calls.
        """
        try:
            stmt = (
                select(UserRecord)
                .order_by(desc(UserRecord.points), UserRecord.username)
                .limit(limit)
            )
            result = await self.session.execute(stmt)
            return list(result.scalars().all())
        except Exception as e:
            raise DatabaseOperationError(f"Failed to get leaderboard: {e}") from e

    async def get_ranked_winners(self, limit: int) -> List[UserRecord]:
        """Top users with a positive balance."""
        try:
            stmt = (
                select(UserRecord)
                .where(UserRecord.points > 0)
                .order_by(desc(UserRecord.points), UserRecord.username)
                .limit(limit)
            )
            result = await self.session.execute(stmt)
            return list(result.scalars().all())
        except Exception as e:
            raise DatabaseOperationError(f"Failed to get winners: {e}") from e

    async def get_active_usernames(self, seen_since: datetime) -> List[str]:
        try:
            stmt = (
                select(UserRecord.username)
                .where(UserRecord.last_seen_at > seen_since)
                .order_by(UserRecord.username)
            )
            result = await self.session.execute(stmt)
            return list(result.scalars().all())
        except Exception as e:
            raise DatabaseOperationError(f"Failed to get active users: {e}") from e

    async def get_chat_active_users(self, seen_since: datetime) -> List[UserRecord]:
        """Users who chatted at least once and were seen after ``seen_since``."""
        try:
            stmt = (
                select(UserRecord)
                .where(
                    UserRecord.message_count > 0,
                    UserRecord.last_seen_at > seen_since,
                )
                .order_by(UserRecord.username)
            )
            result = await self.session.execute(stmt)
            return list(result.scalars().all())
        except Exception as e:
            raise DatabaseOperationError(f"Failed to get chat-active users: {e}") from e

    async def reset_all_balances(self) -> int:
        """Zero every balance and viewtime remainder. Returns affected rows."""
        try:
            result = await self.session.execute(
                update(UserRecord).values(points=0, view_seconds=0)
            )
            return result.rowcount
        except Exception as e:
            raise DatabaseOperationError(f"Failed to reset balances: {e}") from e


class PointsOperations:
    """Balance mutations.

    The balance is changed with a single ``UPDATE ... SET points = points + n``
    so the storage engine serializes concurrent writers; the guard in the
    WHERE clause keeps the balance from dropping below zero.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_points(self, username: str, amount: int) -> Tuple[int, int]:
        """Apply a balance delta.

        Args:
            username: Chat login
            amount: Final delta after modifiers

        Returns:
            Tuple[int, int]: (old_total, new_total)

        Raises:
            NotFoundError: If the user does not exist
            ConflictError: If the delta would make the balance negative
            DatabaseOperationError: If the update fails
        """
        key = normalize_username(username)
        try:
            result = await self.session.execute(
                update(UserRecord)
                .where(
                    UserRecord.username == key,
                    UserRecord.points + amount >= 0,
                )
                .values(points=UserRecord.points + amount)
            )

            if result.rowcount == 0:
                exists = await self.session.execute(
                    select(UserRecord.username).where(UserRecord.username == key)
                )
                if exists.scalar_one_or_none() is None:
                    raise NotFoundError(f"User not found: {key}")
                raise ConflictError(f"Balance of {key} cannot go below zero")

            totals = await self.session.execute(
                select(UserRecord.points).where(UserRecord.username == key)
            )
            new_total = totals.scalar_one()
            return new_total - amount, new_total

        except (NotFoundError, ConflictError):
            raise
        except Exception as e:
            raise DatabaseOperationError(f"Failed to add points: {e}") from e


class SpamTrackingOperations:
    """Sliding-window message log used by the rate check."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record_message(self, username: str, timestamp_ms: int, length: int) -> None:
        try:
            self.session.add(
                SpamTrackingEntry(
                    username=normalize_username(username),
                    message_timestamp_ms=timestamp_ms,
                    message_length=length,
                )
            )
            await self.session.flush()
        except Exception as e:
            raise DatabaseOperationError(f"Failed to record message: {e}") from e

    async def count_since(self, username: str, since_ms: int) -> int:
        try:
            result = await self.session.execute(
                select(func.count(SpamTrackingEntry.id)).where(
                    SpamTrackingEntry.username == normalize_username(username),
                    SpamTrackingEntry.message_timestamp_ms > since_ms,
                )
            )
            return result.scalar() or 0
        except Exception as e:
            raise DatabaseOperationError(f"Failed to count messages: {e}") from e

    async def prune_before(self, cutoff_ms: int) -> int:
        try:
            result = await self.session.execute(
                delete(SpamTrackingEntry).where(
                    SpamTrackingEntry.message_timestamp_ms < cutoff_ms
                )
            )
            return result.rowcount
        except Exception as e:
            raise DatabaseOperationError(f"Failed to prune spam tracking: {e}") from e


def _valid_username_clause():
    return (
        BotBlacklistEntry.username.is_not(None)
        & (func.trim(BotBlacklistEntry.username) != "")
    )


def _invalid_username_clause():
    return or_(
        BotBlacklistEntry.username.is_(None),
        func.trim(BotBlacklistEntry.username) == "",
    )


class BotBlacklistOperations:
    """Database operations for the bot blacklist."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_entry(self, username: str) -> Optional[BotBlacklistEntry]:
        try:
            result = await self.session.execute(
                select(BotBlacklistEntry).where(
                    BotBlacklistEntry.username == normalize_username(username)
                )
            )
            return result.scalar_one_or_none()
        except Exception as e:
            raise DatabaseOperationError(f"Failed to get blacklist entry: {e}") from e

    async def add_entry(
        self,
        username: str,
        reason: Optional[str],
        added_by: Optional[str],
        now: datetime,
    ) -> BotBlacklistEntry:
        """Insert or replace the entry for ``username``."""
        try:
            entry = await self.get_entry(username)
            if entry is None:
                entry = BotBlacklistEntry(username=normalize_username(username))
                self.session.add(entry)

            entry.reason = reason
            entry.added_by = added_by
            entry.added_at = now
            await self.session.flush()
            return entry

        except IntegrityError as e:
            raise ConflictError(f"Blacklist entry conflict for {username}") from e
        except DatabaseOperationError:
            raise
        except Exception as e:
            raise DatabaseOperationError(f"Failed to add blacklist entry: {e}") from e

    async def remove_entry(self, username: str) -> int:
        try:
            result = await self.session.execute(
                delete(BotBlacklistEntry).where(
                    BotBlacklistEntry.username == normalize_username(username)
                )
            )
            return result.rowcount
        except Exception as e:
            raise DatabaseOperationError(f"Failed to remove blacklist entry: {e}") from e

    async def delete_invalid(self) -> int:
        """Delete rows whose username is null, empty or whitespace."""
        try:
            result = await self.session.execute(
                delete(BotBlacklistEntry).where(_invalid_username_clause())
            )
            return result.rowcount
        except Exception as e:
            raise DatabaseOperationError(f"Failed to clean blacklist: {e}") from e

    async def list_entries(self, limit: Optional[int] = None) -> List[BotBlacklistEntry]:
        try:
            stmt = select(BotBlacklistEntry).order_by(
                desc(BotBlacklistEntry.added_at), desc(BotBlacklistEntry.id)
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            result = await self.session.execute(stmt)
            return list(result.scalars().all())
        except Exception as e:
            raise DatabaseOperationError(f"Failed to list blacklist: {e}") from e

    async def get_counts(self) -> Dict[str, int]:
        """Row counts split into valid and malformed entries."""
        try:
            total = await self.session.execute(select(func.count(BotBlacklistEntry.id)))
            valid = await self.session.execute(
                select(func.count(BotBlacklistEntry.id)).where(_valid_username_clause())
            )
            total_count = total.scalar() or 0
            valid_count = valid.scalar() or 0
            return {
                "total": total_count,
                "valid": valid_count,
                "invalid": total_count - valid_count,
            }
        except Exception as e:
            raise DatabaseOperationError(f"Failed to count blacklist: {e}") from e


class SettingsOperations:
    """Key/value global settings."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_value(self, key: str) -> Optional[str]:
        try:
            result = await self.session.execute(
                select(GlobalSetting.setting_value).where(GlobalSetting.setting_key == key)
            )
            return result.scalar_one_or_none()
        except Exception as e:
            raise DatabaseOperationError(f"Failed to read setting {key}: {e}") from e

    async def get_bool(self, key: str, default: bool = False) -> bool:
        value = await self.get_value(key)
        if value is None:
            return default
        return value.strip().lower() == "true"

    async def set_value(self, key: str, value: str, now: datetime) -> GlobalSetting:
        try:
            setting = await self.session.get(GlobalSetting, key)
            if setting is None:
                setting = GlobalSetting(setting_key=key, setting_value=value, updated_at=now)
                self.session.add(setting)
            else:
                setting.setting_value = value
                setting.updated_at = now
            await self.session.flush()
            return setting
        except Exception as e:
            raise DatabaseOperationError(f"Failed to write setting {key}: {e}") from e


class ClipOperations:
    """Database operations for clip submissions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_clip(self, clip_pk: int) -> Optional[ClipSubmission]:
        try:
            return await self.session.get(ClipSubmission, clip_pk, populate_existing=True)
        except Exception as e:
            raise DatabaseOperationError(f"Failed to get clip: {e}") from e

    async def find_by_url(self, clip_url: str) -> Optional[ClipSubmission]:
        try:
            result = await self.session.execute(
                select(ClipSubmission).where(ClipSubmission.clip_url == clip_url)
            )
            return result.scalar_one_or_none()
        except Exception as e:
            raise DatabaseOperationError(f"Failed to look up clip URL: {e}") from e

    async def count_submissions_since(self, submitter: str, since: datetime) -> int:
        """Count submissions of any status made at or after ``since``."""
        try:
            result = await self.session.execute(
                select(func.count(ClipSubmission.id)).where(
                    ClipSubmission.submitter == normalize_username(submitter),
                    ClipSubmission.submitted_at >= since,
                )
            )
            return result.scalar() or 0
        except Exception as e:
            raise DatabaseOperationError(f"Failed to count submissions: {e}") from e

    async def create_submission(
        self,
        submitter: str,
        display_name: Optional[str],
        clip_url: str,
        clip_id: Optional[str],
        now: datetime,
    ) -> ClipSubmission:
        """Insert a pending submission.

        Raises:
            ConflictError: If the URL was already submitted
            DatabaseOperationError: If the insert fails
        """
        try:
            clip = ClipSubmission(
                submitter=normalize_username(submitter),
                display_name=display_name,
                clip_url=clip_url,
                clip_id=clip_id,
                submitted_at=now,
                status=ClipStatus.PENDING.value,
            )
            self.session.add(clip)
            await self.session.flush()
            return clip

        except IntegrityError as e:
            raise ConflictError(f"Clip already submitted: {clip_url}") from e
        except Exception as e:
            raise DatabaseOperationError(f"Failed to create submission: {e}") from e

    async def mark_approved(
        self,
        clip_pk: int,
        reviewer: str,
        points: int,
        note: Optional[str],
        now: datetime,
    ) -> bool:
        """Move a pending clip to approved.

        The status check is part of the UPDATE itself, so of two concurrent
        approvals only one can match the row.

        Returns:
            True if the clip was pending and is now approved
        """
        try:
            result = await self.session.execute(
                update(ClipSubmission)
                .where(
                    ClipSubmission.id == clip_pk,
                    ClipSubmission.status == ClipStatus.PENDING.value,
                )
                .values(
                    status=ClipStatus.APPROVED.value,
                    reviewer=reviewer,
                    points_awarded=points,
                    reviewed_at=now,
                    note=note,
                )
            )
            return result.rowcount > 0
        except Exception as e:
            raise DatabaseOperationError(f"Failed to approve clip: {e}") from e

    async def mark_rejected(
        self,
        clip_pk: int,
        reviewer: str,
        note: Optional[str],
        now: datetime,
    ) -> bool:
        try:
            result = await self.session.execute(
                update(ClipSubmission)
                .where(
                    ClipSubmission.id == clip_pk,
                    ClipSubmission.status == ClipStatus.PENDING.value,
                )
                .values(
                    status=ClipStatus.REJECTED.value,
                    reviewer=reviewer,
                    points_awarded=0,
                    reviewed_at=now,
                    note=note,
                )
            )
            return result.rowcount > 0
        except Exception as e:
            raise DatabaseOperationError(f"Failed to reject clip: {e}") from e

    async def get_pending(self, limit: Optional[int] = None) -> List[ClipSubmission]:
        try:
            stmt = (
                select(ClipSubmission)
                .where(ClipSubmission.status == ClipStatus.PENDING.value)
                .order_by(desc(ClipSubmission.submitted_at), desc(ClipSubmission.id))
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            result = await self.session.execute(stmt)
            return list(result.scalars().all())
        except Exception as e:
            raise DatabaseOperationError(f"Failed to get pending clips: {e}") from e

    async def get_public(
        self,
        limit: int = 20,
        offset: int = 0,
        search: Optional[str] = None,
    ) -> Tuple[List[ClipSubmission], int]:
        """Approved clips, newest first, with the unpaged total.

        Args:
            limit: Page size
            offset: Rows to skip
            search: Case-insensitive filter on submitter, display name and note

        Returns:
            Tuple[List[ClipSubmission], int]: Page of clips and total matches
        """
        try:
            conditions = [ClipSubmission.status == ClipStatus.APPROVED.value]
            if search:
                term = f"%{search}%"
                conditions.append(
                    or_(
                        ClipSubmission.submitter.ilike(term),
                        ClipSubmission.display_name.ilike(term),
                        ClipSubmission.note.ilike(term),
                    )
                )

            page = await self.session.execute(
                select(ClipSubmission)
                .where(*conditions)
                .order_by(desc(ClipSubmission.submitted_at), desc(ClipSubmission.id))
                .limit(limit)
                .offset(offset)
            )
            total = await self.session.execute(
                select(func.count(ClipSubmission.id)).where(*conditions)
            )
            return list(page.scalars().all()), total.scalar() or 0

        except Exception as e:
            raise DatabaseOperationError(f"Failed to get public clips: {e}") from e


class WinnerOperations:
    """Append-only winner history."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record_winners(
        self,
        month: str,
        winners: Sequence[Dict[str, Any]],
        now: datetime,
    ) -> List[WinnerRecord]:
        """Write one row per winner; rank follows list order starting at 1."""
        try:
            records = [
                WinnerRecord(
                    month=month,
                    rank=rank,
                    username=normalize_username(winner["username"]),
                    display_name=winner.get("display_name"),
                    points=int(winner["points"]),
                    awarded_at=now,
                )
                for rank, winner in enumerate(winners, start=1)
            ]
            self.session.add_all(records)
            await self.session.flush()
            return records
        except Exception as e:
            raise DatabaseOperationError(f"Failed to record winners: {e}") from e

    async def list_winners(self, month: Optional[str] = None) -> List[WinnerRecord]:
        try:
            stmt = select(WinnerRecord).order_by(desc(WinnerRecord.month), WinnerRecord.rank)
            if month is not None:
                stmt = stmt.where(WinnerRecord.month == month)
            result = await self.session.execute(stmt)
            return list(result.scalars().all())
        except Exception as e:
            raise DatabaseOperationError(f"Failed to list winners: {e}") from e
