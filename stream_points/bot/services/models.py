"""Data models returned by bot services.

These are plain dataclasses so command handlers and the HTTP layer can
consume results without touching ORM objects.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class ChatEvent:
    """A single chat message as delivered by the transport."""

    username: str
    text: str
    display_name: str | None = None
    is_moderator: bool = False
    is_broadcaster: bool = False
    channel: str | None = None

    @property
    def is_privileged(self) -> bool:
        return self.is_moderator or self.is_broadcaster

    @property
    def login(self) -> str:
        return self.username.strip().lower()


@dataclass(frozen=True)
class GateDecision:
    """Verdict of the anti-spam gate."""

    allowed: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


@dataclass(frozen=True)
class AwardResult:
    """Outcome of a ledger award."""

    username: str
    base_points: int
    final_points: int
    old_total: int
    new_total: int
    reason: str
    double_points: bool = False


@dataclass(frozen=True)
class ChatAwardOutcome:
    """What happened to a chat message on the points path."""

    awarded: bool
    reason: str | None = None
    award: AwardResult | None = None


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of a clip submission; ``reason`` is set when refused."""

    accepted: bool
    message: str
    reason: str | None = None
    clip_pk: int | None = None
    clip_id: str | None = None


@dataclass(frozen=True)
class ReviewResult:
    """Outcome of approving or rejecting a clip."""

    clip_pk: int
    status: str
    submitter: str
    display_name: str | None
    points_awarded: int
    new_total: int | None = None
    note: str | None = None


@dataclass
class SweepResult:
    """Summary of one viewtime sweep."""

    skipped_reason: str | None = None
    eligible: int = 0
    awarded_users: int = 0
    points_awarded: int = 0
    failed_users: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    username: str
    display_name: str | None
    points: int


@dataclass(frozen=True)
class MonthlyResult:
    month: str
    winners: list[LeaderboardEntry]
    reset_count: int


@dataclass(frozen=True)
class SpamStatus:
    """Diagnostic view of a user's anti-spam state."""

    username: str
    decision: GateDecision
    cooldown_remaining: int
    hourly_count: int
    recent_messages: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "username": self.username,
            "allowed": self.decision.allowed,
            "reason": self.decision.reason,
            "cooldown_remaining": self.cooldown_remaining,
            "hourly_count": self.hourly_count,
            "recent_messages": self.recent_messages,
        }


@dataclass
class DropResult:
    amount: int
    recipients: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    created_at: datetime | None = None
