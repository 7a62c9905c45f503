"""Bot blacklist administration endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status

from stream_points.bot.services.context import AppContext
from stream_points.web.api.dependencies import get_context, verify_admin_key
from stream_points.web.api.schemas import BotAddRequest, BotEntrySchema
from stream_points.web.crud import normalize_username

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/bots", dependencies=[Depends(verify_admin_key)])


@router.get("", response_model=List[BotEntrySchema])
async def list_bots(context: AppContext = Depends(get_context)) -> List[BotEntrySchema]:
    entries = await context.classifier.list_entries()
    return [BotEntrySchema.model_validate(entry) for entry in entries]


@router.post("", response_model=BotEntrySchema, status_code=status.HTTP_201_CREATED)
async def add_bot(
    request: BotAddRequest,
    context: AppContext = Depends(get_context),
) -> BotEntrySchema:
    """Insert or replace a blacklist entry."""
    entry = await context.classifier.add(request.username, request.reason, request.added_by)
    return BotEntrySchema.model_validate(entry)


@router.delete("/{username}")
async def remove_bot(
    username: str,
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    if not await context.classifier.remove(username):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Blacklist entry not found"
        )
    return {"removed": normalize_username(username)}


@router.post("/cleanup")
async def cleanup_bots(context: AppContext = Depends(get_context)) -> Dict[str, int]:
    """Delete entries with a missing or blank username."""
    deleted = await context.classifier.cleanup()
    return {"deleted": deleted}


@router.get("/diagnostics")
async def bot_diagnostics(context: AppContext = Depends(get_context)) -> Dict[str, Any]:
    return await context.classifier.diagnostics()
