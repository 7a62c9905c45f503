"""Monthly winners snapshot and reset."""

from __future__ import annotations

import asyncio
from datetime import UTC
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from stream_points.bot.services.exceptions import ValidationError
from stream_points.web.crud import WinnerOperations
from tests.conftest import create_user, get_user

BERLIN = ZoneInfo("Europe/Berlin")


async def list_winners(database, month=None):
    async with database.session() as session:
        return await WinnerOperations(session).list_winners(month)


async def test_end_month_records_winners_and_resets(context, database, sender):
    await create_user(database, "bob", points=100, view_seconds=30)
    await create_user(database, "alice", points=50)

    result = await context.monthly.end_month(
        [
            {"username": "bob", "display_name": "Bob", "points": 100},
            {"username": "alice", "display_name": "Alice", "points": 50},
        ]
    )

    assert result.month == "2026-03"
    assert [(w.rank, w.username) for w in result.winners] == [(1, "bob"), (2, "alice")]
    assert result.reset_count == 2

    rows = await list_winners(database, "2026-03")
    assert [(row.rank, row.username, row.points) for row in rows] == [(1, "bob", 100), (2, "alice", 50)]

    bob = await get_user(database, "bob")
    assert (bob.points, bob.view_seconds) == (0, 0)
    assert (await get_user(database, "alice")).points == 0

    await context.announcer.drain()
    assert any("2026-03" in message and "Bob" in message for message in sender.messages)


async def test_end_month_requires_winners(context, database):
    await create_user(database, "bob", points=100)

    with pytest.raises(ValidationError):
        await context.monthly.end_month([])
    with pytest.raises(ValidationError):
        await context.monthly.end_month([{"username": "", "points": 5}])
    with pytest.raises(ValidationError):
        await context.monthly.end_month([{"username": "bob", "points": -1}])

    assert (await get_user(database, "bob")).points == 100
    assert await list_winners(database) == []


async def test_scheduled_run_closes_previous_month(context, database, clock):
    await create_user(database, "bob", points=100)
    await create_user(database, "alice", points=50)
    await create_user(database, "carol", points=20)
    await create_user(database, "idle", points=0)
    # 2026-04-01 00:00 in Berlin (CEST)
    clock.set(datetime(2026, 3, 31, 22, 0, tzinfo=UTC))

    result = await context.monthly.run_scheduled()

    assert result.month == "2026-03"
    assert [w.username for w in result.winners] == ["bob", "alice"]
    assert (await get_user(database, "carol")).points == 0


async def test_scheduled_run_without_points_records_nothing(context, database, clock):
    await create_user(database, "idle", points=0)
    clock.set(datetime(2026, 3, 31, 22, 0, tzinfo=UTC))

    result = await context.monthly.run_scheduled()

    assert result.winners == []
    assert await list_winners(database) == []


async def test_month_boundaries(context):
    monthly = context.monthly

    assert monthly.next_run_after(datetime(2026, 12, 15, 12, tzinfo=UTC)) == datetime(2027, 1, 1, tzinfo=BERLIN)
    assert monthly.next_run_after(datetime(2026, 3, 15, 12, tzinfo=UTC)) == datetime(2026, 4, 1, tzinfo=BERLIN)
    assert monthly.previous_month_key(datetime(2027, 1, 10, tzinfo=UTC)) == "2026-12"
    # 23:30 UTC on Jan 31 is already February in Berlin
    assert monthly.month_key(datetime(2027, 1, 31, 23, 30, tzinfo=UTC)) == "2027-02"


async def test_reset_waits_for_in_flight_award(context, database):
    await create_user(database, "bob", points=10)

    async with context.locks.hold("bob"):
        task = asyncio.create_task(
            context.monthly.end_month([{"username": "bob", "points": 10}])
        )
        for _ in range(5):
            await asyncio.sleep(0)
        assert not task.done()

    result = await task
    assert result.reset_count == 1
    assert (await get_user(database, "bob")).points == 0


async def test_award_waits_for_reset(context, database):
    await create_user(database, "bob", points=10)

    async with context.locks.hold_all():
        task = asyncio.create_task(context.ledger.award("bob", 5, "test"))
        for _ in range(5):
            await asyncio.sleep(0)
        assert not task.done()

    result = await task
    assert result.new_total == 15
