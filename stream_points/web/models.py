"""Database models for the stream points bot."""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger
from sqlalchemy import CheckConstraint, Index, UniqueConstraint
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy.orm import Mapped
from sqlalchemy.orm import mapped_column

from stream_points.shared.database import Base, UTCDateTime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClipStatus(str, enum.Enum):
    """Review state of a clip submission."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UserRecord(Base):
    """Per-viewer points and activity state.

    Keyed by the lowercase login name. Created lazily on the first chat
    message and never deleted; only the monthly reset zeroes the balance.
    """

    __tablename__ = "viewer_points"

    username: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        doc="Normalized (lowercase) chat login"
    )
    display_name: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        doc="Cosmetic display name, refreshed on every message"
    )

    # Balance
    points: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        doc="Current points balance"
    )
    view_seconds: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Presence seconds not yet converted into points"
    )

    # Activity
    message_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Total chat messages seen"
    )
    last_seen_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="Last time the user was seen in chat"
    )

    # Anti-spam tracking
    last_message_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="Last time a chat message earned points (cooldown anchor)"
    )
    chat_points_last_hour: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Chat awards in the current hourly window"
    )
    chat_points_hour_reset_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="Start of the current hourly window"
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_viewer_points_points_non_negative"),
        Index("ix_viewer_points_points", "points"),
        Index("ix_viewer_points_last_seen_at", "last_seen_at"),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("points", 0)
        kwargs.setdefault("view_seconds", 0)
        kwargs.setdefault("message_count", 0)
        kwargs.setdefault("chat_points_last_hour", 0)
        kwargs.setdefault("created_at", utcnow())
        super().__init__(**kwargs)


class SpamTrackingEntry(Base):
    """One accepted chat message inside the spam detection window."""

    __tablename__ = "spam_tracking"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    message_timestamp_ms: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        doc="Epoch milliseconds of the message"
    )
    message_length: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_spam_tracking_user_ts", "username", "message_timestamp_ms"),
        Index("ix_spam_tracking_ts", "message_timestamp_ms"),
    )


class BotBlacklistEntry(Base):
    """Known non-human account.

    ``username`` is nullable on purpose: rows written by older code paths may
    carry an empty or missing name, and such rows must never match anyone.
    """

    __tablename__ = "bot_blacklist"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    added_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    added_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        UniqueConstraint("username", name="uq_bot_blacklist_username"),
        Index("ix_bot_blacklist_added_at", "added_at"),
    )


class ClipSubmission(Base):
    """Viewer clip submitted for moderator review."""

    __tablename__ = "clips"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submitter: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        doc="Normalized login of the submitting viewer"
    )
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    clip_url: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        doc="Submitted URL, unique across all statuses"
    )
    clip_id: Mapped[Optional[str]] = mapped_column(
        String(200),
        nullable=True,
        doc="Platform clip slug parsed from the URL"
    )
    submitted_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
    )
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=ClipStatus.PENDING.value,
    )

    # Review outcome
    reviewer: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    points_awarded: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("clip_url", name="uq_clips_clip_url"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_clips_status",
        ),
        Index("ix_clips_submitter_submitted_at", "submitter", "submitted_at"),
        Index("ix_clips_status_submitted_at", "status", "submitted_at"),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("status", ClipStatus.PENDING.value)
        kwargs.setdefault("submitted_at", utcnow())
        super().__init__(**kwargs)


class GlobalSetting(Base):
    """Key/value toggle read at award time."""

    __tablename__ = "settings"

    setting_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    setting_value: Mapped[str] = mapped_column(String(500), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
    )


class WinnerRecord(Base):
    """Append-only snapshot of a period's top users."""

    __tablename__ = "winners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    month: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        doc="Period key, YYYY-MM"
    )
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    points: Mapped[int] = mapped_column(BigInteger, nullable=False)
    awarded_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        Index("ix_winners_month_rank", "month", "rank"),
    )
