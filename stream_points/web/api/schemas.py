"""Pydantic schemas for the HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ErrorDetail(BaseModel):
    """Single validation problem."""

    code: str
    message: str
    field: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error body for every non-2xx response."""

    detail: str
    type: str
    timestamp: datetime
    request_id: Optional[str] = None


class ValidationErrorResponse(ErrorResponse):
    type: str = "validation_error"
    errors: List[ErrorDetail] = Field(default_factory=list)


class LeaderboardEntrySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rank: int
    username: str
    display_name: Optional[str] = None
    points: int


class LeaderboardResponse(BaseModel):
    generated_at: datetime
    top: List[LeaderboardEntrySchema]


class WinnerSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    month: str
    rank: int
    username: str
    display_name: Optional[str] = None
    points: int
    awarded_at: datetime


class UserStatsResponse(BaseModel):
    username: str
    display_name: Optional[str] = None
    points: int
    view_seconds: int
    message_count: int
    last_seen_at: Optional[datetime] = None


class UserSchema(BaseModel):
    """Full counters for the admin user list."""

    model_config = ConfigDict(from_attributes=True)

    username: str
    display_name: Optional[str] = None
    points: int
    view_seconds: int
    message_count: int
    last_seen_at: Optional[datetime] = None
    last_message_at: Optional[datetime] = None
    chat_points_last_hour: int
    chat_points_hour_reset_at: Optional[datetime] = None


class ClipSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    submitter: str
    display_name: Optional[str] = None
    clip_url: str
    clip_id: Optional[str] = None
    submitted_at: datetime
    status: str
    reviewer: Optional[str] = None
    points_awarded: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    note: Optional[str] = None


class PublicClipsResponse(BaseModel):
    clips: List[ClipSchema]
    total: int
    limit: int
    offset: int


class ApproveClipRequest(BaseModel):
    points: int = Field(ge=0, description="Base points for the submitter")
    note: Optional[str] = None
    reviewer: str = Field(default="admin", min_length=1, max_length=64)


class RejectClipRequest(BaseModel):
    note: str = Field(description="Reason shown to moderators; required")
    reviewer: str = Field(default="admin", min_length=1, max_length=64)

    @field_validator("note")
    @classmethod
    def _note_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("A rejection note is required")
        return value


class ReviewResponse(BaseModel):
    clip_id: int
    status: str
    submitter: str
    points_awarded: int
    new_total: Optional[int] = None


class GivePointsRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    amount: int = Field(gt=0)
    granted_by: str = Field(default="admin", min_length=1, max_length=64)


class AwardResponse(BaseModel):
    username: str
    base_points: int
    final_points: int
    new_total: int
    double_points: bool


class WinnerInput(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    points: int = Field(ge=0)
    display_name: Optional[str] = None


class EndMonthRequest(BaseModel):
    winners: List[WinnerInput] = Field(min_length=1)


class EndMonthResponse(BaseModel):
    month: str
    winners: List[LeaderboardEntrySchema]
    reset_count: int


class DoublePointsRequest(BaseModel):
    enabled: bool


class DoublePointsResponse(BaseModel):
    enabled: bool


class BotEntrySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: Optional[str] = None
    reason: Optional[str] = None
    added_by: Optional[str] = None
    added_at: datetime


class BotAddRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    reason: Optional[str] = Field(default=None, max_length=200)
    added_by: str = Field(default="admin", min_length=1, max_length=64)
