"""Admin endpoints: users, grants, end of month and the double-points toggle."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from stream_points.bot.services.context import AppContext
from stream_points.web.api.dependencies import get_context, verify_admin_key
from stream_points.web.api.schemas import (
    AwardResponse,
    DoublePointsRequest,
    DoublePointsResponse,
    EndMonthRequest,
    EndMonthResponse,
    GivePointsRequest,
    LeaderboardEntrySchema,
    UserSchema,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", dependencies=[Depends(verify_admin_key)])


@router.get("/users", response_model=List[UserSchema])
async def list_users(context: AppContext = Depends(get_context)) -> List[UserSchema]:
    """Top 100 users with all counters."""
    users = await context.activity.all_users(100)
    return [UserSchema.model_validate(user) for user in users]


@router.get("/active-users")
async def list_active_users(
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    usernames = await context.activity.active_usernames()
    return {
        "users": usernames,
        "count": len(usernames),
        "presence_timeout_seconds": context.settings.presence_timeout_seconds,
    }


@router.post("/give-points", response_model=AwardResponse)
async def give_points(
    request: GivePointsRequest,
    context: AppContext = Depends(get_context),
) -> AwardResponse:
    """Grant points to an existing user.

    Unknown users yield 404; the ledger never creates records.
    """
    award = await context.ledger.grant(request.username, request.amount, request.granted_by)
    return AwardResponse(
        username=award.username,
        base_points=award.base_points,
        final_points=award.final_points,
        new_total=award.new_total,
        double_points=award.double_points,
    )


@router.post("/end-month", response_model=EndMonthResponse)
async def end_month(
    request: EndMonthRequest,
    context: AppContext = Depends(get_context),
) -> EndMonthResponse:
    """Record the given winners for the current month and reset all balances.

    Args:
        request: Ordered winner list; rank follows list order

    Returns:
        EndMonthResponse: Month key, recorded winners and reset row count
    """
    result = await context.monthly.end_month(
        [winner.model_dump() for winner in request.winners]
    )
    logger.info(f"End of month {result.month} triggered via API")
    return EndMonthResponse(
        month=result.month,
        winners=[LeaderboardEntrySchema.model_validate(entry) for entry in result.winners],
        reset_count=result.reset_count,
    )


@router.get("/settings/double-points", response_model=DoublePointsResponse)
async def get_double_points(
    context: AppContext = Depends(get_context),
) -> DoublePointsResponse:
    return DoublePointsResponse(enabled=await context.ledger.is_double_points())


@router.put("/settings/double-points", response_model=DoublePointsResponse)
async def set_double_points(
    request: DoublePointsRequest,
    context: AppContext = Depends(get_context),
) -> DoublePointsResponse:
    enabled = await context.ledger.set_double_points(request.enabled)
    return DoublePointsResponse(enabled=enabled)
