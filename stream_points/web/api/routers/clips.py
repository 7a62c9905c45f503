"""Clip gallery and moderator review endpoints."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from stream_points.bot.services.context import AppContext
from stream_points.web.api.dependencies import get_context, verify_admin_key
from stream_points.web.api.schemas import (
    ApproveClipRequest,
    ClipSchema,
    PublicClipsResponse,
    RejectClipRequest,
    ReviewResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/clips")


@router.get("/public", response_model=PublicClipsResponse)
async def get_public_clips(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    search: Optional[str] = Query(default=None, max_length=100),
    context: AppContext = Depends(get_context),
) -> PublicClipsResponse:
    """Approved clips, newest first.

    Args:
        limit: Page size
        offset: Number of clips to skip
        search: Case-insensitive filter on submitter, display name and note

    Returns:
        PublicClipsResponse: Page of clips with the total match count
    """
    clips, total = await context.clips.public(limit, offset, search or None)
    return PublicClipsResponse(
        clips=[ClipSchema.model_validate(clip) for clip in clips],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/pending", response_model=List[ClipSchema])
async def get_pending_clips(
    context: AppContext = Depends(get_context),
    admin_key: str = Depends(verify_admin_key),
) -> List[ClipSchema]:
    clips = await context.clips.pending()
    return [ClipSchema.model_validate(clip) for clip in clips]


@router.post("/{clip_id}/approve", response_model=ReviewResponse)
async def approve_clip(
    clip_id: int,
    request: ApproveClipRequest,
    context: AppContext = Depends(get_context),
    admin_key: str = Depends(verify_admin_key),
) -> ReviewResponse:
    """Approve a pending clip and award the submitter.

    A clip that is unknown or already reviewed yields 404.
    """
    result = await context.clips.approve(clip_id, request.reviewer, request.points, request.note)
    logger.info(f"Clip {clip_id} approved via API by {request.reviewer}")
    return ReviewResponse(
        clip_id=result.clip_pk,
        status=result.status,
        submitter=result.submitter,
        points_awarded=result.points_awarded,
        new_total=result.new_total,
    )


@router.post("/{clip_id}/reject", response_model=ReviewResponse)
async def reject_clip(
    clip_id: int,
    request: RejectClipRequest,
    context: AppContext = Depends(get_context),
    admin_key: str = Depends(verify_admin_key),
) -> ReviewResponse:
    result = await context.clips.reject(clip_id, request.reviewer, request.note)
    logger.info(f"Clip {clip_id} rejected via API by {request.reviewer}")
    return ReviewResponse(
        clip_id=result.clip_pk,
        status=result.status,
        submitter=result.submitter,
        points_awarded=0,
    )
