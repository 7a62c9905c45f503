"""Base class and shared protocols for bot services."""

from __future__ import annotations

from datetime import UTC
from datetime import datetime
from typing import Callable
from typing import Protocol

from stream_points.shared.config import Settings
from stream_points.shared.database import Database

Clock = Callable[[], datetime]


def utc_clock() -> datetime:
    return datetime.now(UTC)


class LiveStatusOracle(Protocol):
    async def is_channel_live(self) -> bool | None:
        """True/False when known, None when the source is unavailable."""
        ...


class ViewerListOracle(Protocol):
    async def list_current_viewers(self) -> set[str]:
        """Lowercase logins currently in the channel; empty on failure."""
        ...


class ClipOwnerOracle(Protocol):
    async def resolve_clip_owner(self, clip_url: str) -> str | None:
        ...


class ChatSender(Protocol):
    async def send(self, message: str) -> None:
        ...


class BaseService:
    """Common plumbing for services backed by the database.

    Services receive their collaborators explicitly; none of them read
    module-level state.
    """

    def __init__(
        self,
        database: Database,
        settings: Settings,
        clock: Clock | None = None,
        service_name: str | None = None,
    ):
        self.database = database
        self.settings = settings
        self.clock: Clock = clock or utc_clock
        self.service_name = service_name or self.__class__.__name__

    def now(self) -> datetime:
        return self.clock()
