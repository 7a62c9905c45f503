"""FastAPI dependencies: application context and admin authentication."""

from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import Header, HTTPException, Query, Request, status

from stream_points.bot.services.context import AppContext

logger = logging.getLogger(__name__)


def get_context(request: Request) -> AppContext:
    """Application context stored on the app during lifespan startup."""
    return request.app.state.context


async def verify_admin_key(
    request: Request,
    x_admin_key: Optional[str] = Header(default=None),
    admin_key: Optional[str] = Query(default=None),
) -> str:
    """Check the admin key from the ``x-admin-key`` header or ``admin_key`` query.

    Returns:
        str: The accepted key

    Raises:
        HTTPException: 401 if the key is missing or wrong, or no key is configured
    """
    expected = get_context(request).settings.admin_key
    provided = x_admin_key or admin_key

    if not expected or not provided or not secrets.compare_digest(provided, expected):
        logger.warning(
            "Rejected admin request",
            extra={
                "request_id": getattr(request.state, "request_id", None),
                "url": str(request.url.path),
            },
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    return provided
