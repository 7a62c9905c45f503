"""Bot blacklist classification and maintenance."""

from __future__ import annotations

import pytest

from stream_points.bot.services.exceptions import ValidationError
from stream_points.web.models import BotBlacklistEntry
from tests.conftest import chat, get_user


async def insert_raw_entries(database, *usernames):
    async with database.session() as session:
        for username in usernames:
            session.add(BotBlacklistEntry(username=username, reason="legacy row"))
        await session.commit()


async def test_add_check_remove(context):
    await context.classifier.add("StreamElements", "known bot", "mod1")

    assert await context.classifier.is_bot("streamelements")
    assert await context.classifier.is_bot("STREAMELEMENTS")
    assert not await context.classifier.is_bot("alice")

    assert await context.classifier.remove("StreamElements")
    assert not await context.classifier.is_bot("streamelements")
    assert not await context.classifier.remove("streamelements")


async def test_add_replaces_existing_entry(context):
    await context.classifier.add("nightbot", "first", "mod1")
    await context.classifier.add("nightbot", "second", "mod2")

    entries = await context.classifier.list_entries()
    assert len(entries) == 1
    assert entries[0].reason == "second"
    assert entries[0].added_by == "mod2"


async def test_add_rejects_empty_username(context):
    with pytest.raises(ValidationError):
        await context.classifier.add("   ")


async def test_malformed_rows_never_match(context, database):
    await insert_raw_entries(database, "", "   ", None)

    assert not await context.classifier.is_bot("alice")
    assert not await context.classifier.is_bot("")
    assert not await context.classifier.is_bot("   ")


async def test_cleanup_removes_only_malformed_rows(context, database):
    await insert_raw_entries(database, "", "   ", None)
    await context.classifier.add("moobot")

    diagnostics = await context.classifier.diagnostics()
    assert diagnostics["total"] == 4
    assert diagnostics["valid"] == 1
    assert diagnostics["invalid"] == 3
    assert len(diagnostics["malformed_entries"]) == 3

    assert await context.classifier.cleanup() == 3
    assert await context.classifier.is_bot("moobot")
    assert (await context.classifier.diagnostics())["total"] == 1


async def test_bots_earn_no_chat_points(context, database):
    await context.classifier.add("spambot")

    outcome = await context.activity.process_message(chat("spambot", "buy followers now"))

    assert not outcome.awarded
    assert outcome.reason == "bot"
    user = await get_user(database, "spambot")
    assert user.points == 0
    assert user.message_count == 1
