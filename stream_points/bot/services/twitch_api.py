"""Twitch Helix client backing the live-status, viewer-list and clip-owner oracles.

Every public call reports failure through its return value (``None`` or an
empty set) instead of raising, so each call site can apply its own
fail-open or fail-closed policy.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from stream_points.bot.services.base import LiveStatusOracle
from stream_points.bot.services.exceptions import OracleUnavailableError
from stream_points.shared.config import Settings

logger = logging.getLogger(__name__)

CLIP_URL_PATTERN = re.compile(
    r"^https?://(clips\.twitch\.tv/[^/\s]+|www\.twitch\.tv/[^/\s]+/clip/[^/\s]+)",
    re.IGNORECASE,
)
_CHANNEL_CLIP_PATTERN = re.compile(
    r"^https?://www\.twitch\.tv/([^/\s]+)/clip/", re.IGNORECASE
)
CHATTERS_PAGE_SIZE = 1000


def is_valid_clip_url(url: str) -> bool:
    return bool(url) and CLIP_URL_PATTERN.match(url.strip()) is not None


def extract_clip_id(url: str) -> str | None:
    """Platform clip slug: the segment after ``/clip/``, else the last path segment."""
    path = url.strip().split("?", 1)[0].split("#", 1)[0].rstrip("/")
    if "/clip/" in path:
        slug = path.split("/clip/", 1)[1].split("/", 1)[0]
    else:
        slug = path.rsplit("/", 1)[-1]
    return slug or None


def channel_from_clip_url(url: str) -> str | None:
    """Channel login embedded in ``www.twitch.tv/<channel>/clip/<id>`` URLs."""
    match = _CHANNEL_CLIP_PATTERN.match(url.strip())
    return match.group(1).lower() if match else None


class HelixClient:
    """Thin async wrapper over the Helix endpoints the bot needs."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.twitch_api_base_url.rstrip("/"),
            timeout=settings.twitch_api_timeout,
            transport=transport,
        )
        self._user_ids: dict[str, str] = {}

    async def close(self) -> None:
        await self._client.aclose()

    def _read_headers(self) -> dict[str, str]:
        return {
            "Client-Id": self.settings.twitch_client_id,
            "Authorization": f"Bearer {self.settings.twitch_bot_access_token}",
        }

    def _chat_headers(self) -> dict[str, str]:
        return {
            "Client-Id": self.settings.twitch_bot_app_client_id,
            "Authorization": f"Bearer {self.settings.twitch_bot_app_access_token}",
        }

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        if not self.settings.helix_configured:
            raise OracleUnavailableError("helix", "credentials not configured")
        try:
            response = await self._client.get(path, params=params, headers=self._read_headers())
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise OracleUnavailableError(
                "helix", f"GET {path} returned {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise OracleUnavailableError("helix", f"GET {path} failed: {e}") from e

    async def get_user_id(self, login: str) -> str | None:
        """Resolve a login to its numeric user id, cached for the process lifetime."""
        key = login.strip().lower()
        if key in self._user_ids:
            return self._user_ids[key]

        payload = await self._get("/users", {"login": key})
        data = payload.get("data") or []
        if not data:
            return None

        self._user_ids[key] = data[0]["id"]
        return self._user_ids[key]

    async def is_channel_live(self) -> bool | None:
        try:
            payload = await self._get("/streams", {"user_login": self.settings.channel})
        except OracleUnavailableError as e:
            logger.warning(f"Live status unavailable: {e}")
            return None
        return bool(payload.get("data"))

    async def list_current_viewers(self) -> set[str]:
        """Logins currently connected to chat, following pagination.

        Requires the bot token to carry ``moderator:read:chatters`` for the
        channel. Returns an empty set on any failure.
        """
        try:
            broadcaster_id = await self.get_user_id(self.settings.channel)
            moderator_id = await self.get_user_id(self.settings.bot_username)
            if not broadcaster_id or not moderator_id:
                logger.warning("Cannot list viewers: channel or bot user id unknown")
                return set()

            viewers: set[str] = set()
            cursor: str | None = None
            while True:
                params: dict[str, Any] = {
                    "broadcaster_id": broadcaster_id,
                    "moderator_id": moderator_id,
                    "first": CHATTERS_PAGE_SIZE,
                }
                if cursor:
                    params["after"] = cursor

                payload = await self._get("/chat/chatters", params)
                viewers.update(
                    chatter["user_login"].lower()
                    for chatter in payload.get("data") or []
                    if chatter.get("user_login")
                )
                cursor = (payload.get("pagination") or {}).get("cursor")
                if not cursor:
                    break

            logger.debug(f"Helix reported {len(viewers)} current viewers")
            return viewers

        except (OracleUnavailableError, KeyError) as e:
            logger.warning(f"Viewer list unavailable: {e}")
            return set()

    async def resolve_clip_owner(self, clip_url: str) -> str | None:
        """Login of the clip's creator, or None when it cannot be determined."""
        clip_id = extract_clip_id(clip_url)
        if not clip_id:
            return None
        try:
            payload = await self._get("/clips", {"id": clip_id})
        except OracleUnavailableError as e:
            logger.warning(f"Clip owner lookup failed for {clip_id}: {e}")
            return None

        data = payload.get("data") or []
        if not data or not data[0].get("creator_name"):
            return None
        return data[0]["creator_name"].lower()

    async def send_chat_message(self, message: str) -> bool:
        """Post through the chat API so the message carries the bot badge.

        Returns:
            True if Twitch reports the message as sent
        """
        if not self.settings.chat_api_configured:
            return False
        try:
            broadcaster_id = await self.get_user_id(self.settings.channel)
            sender_id = await self.get_user_id(self.settings.bot_username)
            if not broadcaster_id or not sender_id:
                return False

            response = await self._client.post(
                "/chat/messages",
                headers=self._chat_headers(),
                json={
                    "broadcaster_id": broadcaster_id,
                    "sender_id": sender_id,
                    "message": message,
                },
            )
            response.raise_for_status()
            data = response.json().get("data") or []
            return bool(data and data[0].get("is_sent"))

        except (OracleUnavailableError, httpx.HTTPError, ValueError) as e:
            logger.warning(f"Chat API send failed: {e}")
            return False


class StreamStatus:
    """Live-status policy shared by chat points and the sweeper.

    Fails open: with the offline check disabled, no oracle, or an oracle
    that cannot answer, the stream is treated as live.
    """

    def __init__(self, settings: Settings, oracle: LiveStatusOracle | None = None):
        self.settings = settings
        self.oracle = oracle

    @property
    def check_enabled(self) -> bool:
        return self.settings.stream_offline_check and self.oracle is not None

    async def is_live(self) -> bool:
        if not self.check_enabled:
            return True

        live = await self.oracle.is_channel_live()
        if live is None:
            logger.info("Live status unknown, assuming stream is live")
            return True
        return live
