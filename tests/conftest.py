"""Shared fixtures: temporary SQLite database, fake oracles and a controllable clock."""

from __future__ import annotations

import random
from datetime import UTC
from datetime import datetime
from datetime import timedelta

import httpx
import pytest

from stream_points.bot.services.announcer import Announcer
from stream_points.bot.services.context import AppContext
from stream_points.bot.services.models import ChatEvent
from stream_points.shared.config import Settings
from stream_points.shared.database import init_database
from stream_points.web.api.app import create_api
from stream_points.web.models import UserRecord

START = datetime(2026, 3, 15, 12, 0, 0, tzinfo=UTC)
ADMIN_KEY = "test-admin-key"


class FakeClock:
    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)

    def set(self, moment: datetime) -> None:
        self.current = moment


class FakeLiveOracle:
    def __init__(self, live: bool | None = True):
        self.live = live
        self.calls = 0

    async def is_channel_live(self) -> bool | None:
        self.calls += 1
        return self.live


class FakeViewerOracle:
    def __init__(self, viewers: set[str] | None = None):
        self.viewers = set(viewers or ())

    async def list_current_viewers(self) -> set[str]:
        return set(self.viewers)


class FakeOwnerOracle:
    """Owner per URL, falling back to ``default``."""

    def __init__(self, default: str | None = None):
        self.default = default
        self.owners: dict[str, str | None] = {}

    async def resolve_clip_owner(self, clip_url: str) -> str | None:
        return self.owners.get(clip_url, self.default)


class FakeSender:
    def __init__(self, fail: bool = False):
        self.messages: list[str] = []
        self.fail = fail

    async def send(self, message: str) -> None:
        if self.fail:
            raise ConnectionError("chat down")
        self.messages.append(message)


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "environment": "testing",
        "database_url": f"sqlite+aiosqlite:///{tmp_path / 'points.db'}",
        "admin_key": ADMIN_KEY,
        "channel": "teststream",
        "bot_username": "pointsbot",
        "bot_oauth": "oauth:token",
        "timezone": "Europe/Berlin",
        "twitch_client_id": "",
        "twitch_bot_access_token": "",
        "twitch_bot_app_client_id": "",
        "twitch_bot_app_access_token": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def chat(username: str, text: str, **flags) -> ChatEvent:
    return ChatEvent(username=username, text=text, display_name=flags.pop("display_name", username), **flags)


def mod(username: str, text: str) -> ChatEvent:
    return ChatEvent(username=username, text=text, display_name=username, is_moderator=True)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
async def database(settings):
    db = await init_database(settings.database_url)
    yield db
    await db.close()


@pytest.fixture
def live_oracle() -> FakeLiveOracle:
    return FakeLiveOracle(True)


@pytest.fixture
def viewer_oracle() -> FakeViewerOracle:
    return FakeViewerOracle()


@pytest.fixture
def owner_oracle() -> FakeOwnerOracle:
    return FakeOwnerOracle()


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def context(settings, database, clock, live_oracle, viewer_oracle, owner_oracle, sender) -> AppContext:
    return AppContext.build(
        settings,
        database,
        live_oracle=live_oracle,
        viewer_oracle=viewer_oracle,
        owner_oracle=owner_oracle,
        announcer=Announcer(fallback=sender),
        clock=clock,
        rng=random.Random(7),
    )


@pytest.fixture
def build_context(database, clock, live_oracle, viewer_oracle, owner_oracle, sender):
    """Build a context with different settings or oracles on the same database."""

    def _build(settings: Settings, **overrides) -> AppContext:
        kwargs = {
            "live_oracle": live_oracle,
            "viewer_oracle": viewer_oracle,
            "owner_oracle": owner_oracle,
            "announcer": Announcer(fallback=sender),
            "clock": clock,
            "rng": random.Random(7),
        }
        kwargs.update(overrides)
        return AppContext.build(settings, database, **kwargs)

    return _build


@pytest.fixture
async def client(context):
    api = create_api(context)
    transport = httpx.ASGITransport(app=api)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"x-admin-key": ADMIN_KEY}


async def create_user(database, username: str, points: int = 0, **fields) -> None:
    fields.setdefault("display_name", username.capitalize())
    async with database.session() as session:
        session.add(UserRecord(username=username, points=points, **fields))
        await session.commit()


async def get_user(database, username: str) -> UserRecord | None:
    async with database.session() as session:
        return await session.get(UserRecord, username)
