"""Public read-only endpoints: leaderboards, winners and user stats."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from stream_points.bot.services.context import AppContext
from stream_points.web.api.dependencies import get_context
from stream_points.web.api.schemas import (
    LeaderboardEntrySchema,
    LeaderboardResponse,
    UserStatsResponse,
    WinnerSchema,
)
from stream_points.web.crud import WinnerOperations

logger = logging.getLogger(__name__)

router = APIRouter()


async def _leaderboard(context: AppContext, limit: int) -> LeaderboardResponse:
    entries = await context.activity.leaderboard(limit)
    return LeaderboardResponse(
        generated_at=datetime.now(timezone.utc),
        top=[LeaderboardEntrySchema.model_validate(entry) for entry in entries],
    )


@router.get("/top10", response_model=LeaderboardResponse)
async def get_top10(context: AppContext = Depends(get_context)) -> LeaderboardResponse:
    """Top ten users by points, used by the stream overlay."""
    return await _leaderboard(context, 10)


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    limit: int = Query(default=10, ge=1, le=100, description="Number of entries"),
    context: AppContext = Depends(get_context),
) -> LeaderboardResponse:
    """Top users by points.

    Args:
        limit: Number of ranks to return (1-100)

    Returns:
        LeaderboardResponse: Ranked entries and generation time
    """
    return await _leaderboard(context, limit)


@router.get("/winners", response_model=List[WinnerSchema])
async def get_winners(context: AppContext = Depends(get_context)) -> List[WinnerSchema]:
    """Winner history, newest month first."""
    async with context.database.session() as session:
        winners = await WinnerOperations(session).list_winners()
    return [WinnerSchema.model_validate(winner) for winner in winners]


@router.get("/users/{username}/stats", response_model=UserStatsResponse)
async def get_user_stats(
    username: str,
    context: AppContext = Depends(get_context),
) -> UserStatsResponse:
    stats = await context.activity.user_stats(username)
    if stats is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return UserStatsResponse(**stats)
