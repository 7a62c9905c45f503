"""Anti-spam gate and the chat-message points path."""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func, select

from stream_points.bot.services.spam_gate import REASON_COOLDOWN
from stream_points.bot.services.spam_gate import REASON_HOURLY_CAP
from stream_points.bot.services.spam_gate import REASON_RATE_LIMIT
from stream_points.bot.services.spam_gate import to_epoch_ms
from stream_points.web.models import SpamTrackingEntry
from tests.conftest import chat, create_user, get_user, make_settings


async def test_alice_cooldown_scenario(context, database, clock):
    first = await context.activity.process_message(chat("alice", "hello"))
    assert first.awarded
    assert first.award.new_total == 1

    clock.advance(5)
    second = await context.activity.process_message(chat("alice", "again"))
    assert not second.awarded
    assert second.reason == REASON_COOLDOWN
    assert (await get_user(database, "alice")).points == 1

    clock.advance(6)
    third = await context.activity.process_message(chat("alice", "third"))
    assert third.awarded
    assert (await get_user(database, "alice")).points == 2


async def test_new_user_passes_gate(context, database):
    async with database.session() as session:
        decision = await context.gate.evaluate(session, "nobody")
    assert decision.allowed
    assert await context.gate.can_award("nobody")


async def test_hourly_cap_and_window_reset(context, database, clock):
    await create_user(
        database,
        "carol",
        last_message_at=clock() - timedelta(seconds=60),
        chat_points_last_hour=context.settings.max_chat_points_per_hour,
        chat_points_hour_reset_at=clock() - timedelta(minutes=30),
    )

    async with database.session() as session:
        decision = await context.gate.evaluate(session, "carol")
    assert decision.reason == REASON_HOURLY_CAP

    clock.advance(30 * 60)
    async with database.session() as session:
        decision = await context.gate.evaluate(session, "carol")
    assert decision.allowed


async def test_hourly_counter_starts_new_window(context, database, clock):
    await context.activity.process_message(chat("kate", "first message"))
    clock.advance(20)
    await context.activity.process_message(chat("kate", "second message"))
    user = await get_user(database, "kate")
    assert user.chat_points_last_hour == 2

    clock.advance(3600)
    outcome = await context.activity.process_message(chat("kate", "third message"))

    assert outcome.awarded
    user = await get_user(database, "kate")
    assert user.chat_points_last_hour == 1
    assert user.chat_points_hour_reset_at == clock()
    assert user.points == 3


async def test_rate_limit_counts_only_recent_messages(context, database, clock):
    await create_user(database, "dave")
    now_ms = to_epoch_ms(clock())
    window = context.settings.max_messages_per_window

    async with database.session() as session:
        for i in range(window - 1):
            session.add(SpamTrackingEntry(username="dave", message_timestamp_ms=now_ms - 1000 * (i + 1), message_length=5))
        session.add(SpamTrackingEntry(username="dave", message_timestamp_ms=now_ms - 120_000, message_length=5))
        await session.commit()

    async with database.session() as session:
        assert (await context.gate.evaluate(session, "dave")).allowed

    async with database.session() as session:
        session.add(SpamTrackingEntry(username="dave", message_timestamp_ms=now_ms - 500, message_length=5))
        await session.commit()

    async with database.session() as session:
        decision = await context.gate.evaluate(session, "dave")
    assert decision.reason == REASON_RATE_LIMIT


async def test_accepted_message_prunes_old_tracking_rows(context, database, clock):
    await create_user(database, "erin")
    async with database.session() as session:
        session.add(
            SpamTrackingEntry(
                username="erin",
                message_timestamp_ms=to_epoch_ms(clock()) - 2 * 3600 * 1000,
                message_length=5,
            )
        )
        await session.commit()

    outcome = await context.activity.process_message(chat("erin", "hello there"))
    assert outcome.awarded

    async with database.session() as session:
        rows = (await session.execute(select(SpamTrackingEntry))).scalars().all()
    assert len(rows) == 1
    assert rows[0].message_timestamp_ms == to_epoch_ms(clock())


async def test_tracking_fields_update_once_per_award(context, database, clock):
    await context.activity.process_message(chat("frank", "first message"))
    user = await get_user(database, "frank")
    assert user.chat_points_last_hour == 1
    assert user.last_message_at == clock()
    assert user.message_count == 1

    clock.advance(1)
    await context.activity.process_message(chat("frank", "too soon"))
    user = await get_user(database, "frank")
    assert user.chat_points_last_hour == 1
    assert user.message_count == 2

    async with database.session() as session:
        count = (await session.execute(select(func.count(SpamTrackingEntry.id)))).scalar()
    assert count == 1


async def test_short_message_records_presence_without_points(context, database):
    outcome = await context.activity.process_message(chat("gina", "hi"))
    assert not outcome.awarded
    assert outcome.reason == "too_short"

    user = await get_user(database, "gina")
    assert user.points == 0
    assert user.message_count == 1
    assert user.display_name == "gina"


async def test_offline_stream_blocks_chat_points(context, live_oracle, database):
    live_oracle.live = False
    outcome = await context.activity.process_message(chat("hank", "hello world"))
    assert outcome.reason == "offline"
    assert (await get_user(database, "hank")).points == 0


async def test_unknown_live_status_fails_open(context, live_oracle):
    live_oracle.live = None
    outcome = await context.activity.process_message(chat("hank", "hello world"))
    assert outcome.awarded


async def test_chat_points_disabled(tmp_path, build_context, database):
    context = build_context(make_settings(tmp_path, enable_chat_points=False))
    outcome = await context.activity.process_message(chat("ivy", "hello world"))
    assert outcome.reason == "disabled"
    assert (await get_user(database, "ivy")).message_count == 1


async def test_spam_status_and_reset(context, clock):
    await context.activity.process_message(chat("jack", "hello world"))
    clock.advance(3)

    status = await context.gate.status("jack")
    assert not status.decision.allowed
    assert status.cooldown_remaining == 7
    assert status.hourly_count == 1
    assert status.recent_messages == 1

    assert await context.gate.reset("jack")
    status = await context.gate.status("jack")
    assert status.cooldown_remaining == 0
    assert status.hourly_count == 0
    assert not await context.gate.reset("nobody")
