"""Chat command interpreter."""

from __future__ import annotations

import pytest

from stream_points.bot.services.commands import CommandInterpreter
from stream_points.bot.services.models import ChatEvent
from tests.conftest import chat, create_user, get_user, mod

CLIP = "https://clips.twitch.tv/FunnyCleverClipSlug-abc123"


@pytest.fixture
def interpreter(context) -> CommandInterpreter:
    return CommandInterpreter(context)


async def test_plain_messages_and_unknown_commands_are_ignored(interpreter):
    assert await interpreter.handle(chat("alice", "hello everyone")) is None
    assert await interpreter.handle(chat("alice", "!dance")) is None
    assert await interpreter.handle(mod("mod1", "!nosuchcommand")) is None


async def test_points_and_alias(interpreter, database):
    await create_user(database, "alice", points=42, display_name="Alice")

    assert await interpreter.handle(chat("alice", "!points", display_name="Alice")) == "@Alice has 42 points! 🎯"
    assert await interpreter.handle(chat("alice", "!PUNKTE", display_name="Alice")) == "@Alice has 42 points! 🎯"
    assert await interpreter.handle(chat("newbie", "!points")) == "@newbie has 0 points! 🎯"


async def test_top(interpreter, database):
    assert await interpreter.handle(chat("alice", "!top")) == "🏆 No points collected yet."

    await create_user(database, "bob", points=100, display_name="Bob")
    await create_user(database, "alice", points=50, display_name="Alice")

    reply = await interpreter.handle(chat("alice", "!leaderboard"))
    assert reply == "🏆 Top 5: 1. Bob: 100 | 2. Alice: 50"


async def test_moderator_commands_are_ignored_for_viewers(interpreter, database):
    await create_user(database, "bob")

    assert await interpreter.handle(chat("alice", "!give bob 100")) is None
    assert await interpreter.handle(chat("alice", "!doublepoints")) is None
    assert (await get_user(database, "bob")).points == 0


async def test_broadcaster_is_privileged(interpreter, database):
    await create_user(database, "bob")
    event = ChatEvent(username="teststream", text="!give bob 5", is_broadcaster=True)

    assert await interpreter.handle(event) == "🎁 @bob +5 points! Total: 5"


async def test_give(interpreter, database):
    await create_user(database, "bob")

    assert await interpreter.handle(mod("mod1", "!give @Bob 25")) == "🎁 @bob +25 points! Total: 25"
    assert await interpreter.handle(mod("mod1", "!give bob")) == "@mod1 Usage: !give <user> <amount>"
    assert await interpreter.handle(mod("mod1", "!give bob -5")) == "@mod1 Invalid amount!"
    assert await interpreter.handle(mod("mod1", "!give ghost 5")) == "@mod1 User not found: ghost"
    assert (await get_user(database, "bob")).points == 25


async def test_give_respects_double_points(interpreter, database):
    await create_user(database, "bob")

    assert "ACTIVE" in await interpreter.handle(mod("mod1", "!doublepoints"))
    assert await interpreter.handle(mod("mod1", "!give bob 10")) == "🎁 @bob +20 points! Total: 20"
    assert await interpreter.handle(mod("mod1", "!doublepoints")) == "Double points are now disabled."


async def test_dropall_uses_amount_argument(interpreter, context, database):
    assert await interpreter.handle(mod("mod1", "!dropall 10")) == "@mod1 No active users found!"

    await context.activity.process_message(chat("alice", "hello world"))
    await context.activity.process_message(chat("bob", "hello world"))

    reply = await interpreter.handle(mod("mod1", "!dropall 10"))

    assert reply == "🎊 All 2 active users received +10 points!"
    assert (await get_user(database, "alice")).points == 11
    assert (await get_user(database, "bob")).points == 11
    assert await interpreter.handle(mod("mod1", "!dropall")) == "@mod1 Usage: !dropall <amount>"
    assert await interpreter.handle(mod("mod1", "!dropall 0")) == "@mod1 Invalid amount!"


async def test_droprandom(interpreter, context, database):
    for name in ("alice", "bob", "carol"):
        await context.activity.process_message(chat(name, "hello world"))

    reply = await interpreter.handle(mod("mod1", "!droprandom 5 2"))

    assert reply.startswith("🎲 2 random users received +5 points")
    totals = [(await get_user(database, name)).points for name in ("alice", "bob", "carol")]
    assert sorted(totals) == [1, 6, 6]
    assert await interpreter.handle(mod("mod1", "!droprandom 5 0")) == "@mod1 Invalid parameters!"


async def test_clip_commands(interpreter, context, database, owner_oracle):
    await create_user(database, "bob")
    owner_oracle.default = "bob"

    assert await interpreter.handle(chat("bob", "!submitclip")) == "@bob Usage: !submitclip <clip_url>"
    assert "valid Twitch clip URL" in await interpreter.handle(chat("bob", "!submitclip https://example.com"))

    reply = await interpreter.handle(chat("bob", f"!submitclip {CLIP}"))
    assert reply.startswith("@bob ✅ Clip submitted")
    clip_pk = (await context.clips.pending())[0].id

    assert await interpreter.handle(chat("bob", "!clips pending")) is None
    assert f"#{clip_pk}" in await interpreter.handle(mod("mod1", "!clips pending"))

    reply = await interpreter.handle(mod("mod1", f"!clipapprove {clip_pk} 15 nice one"))
    assert reply == f"@mod1 ✅ Clip #{clip_pk} by bob approved (+15 points)"
    assert (await get_user(database, "bob")).points == 15

    again = await interpreter.handle(mod("mod1", f"!clipapprove {clip_pk} 15"))
    assert again == f"@mod1 Clip {clip_pk} not found or already processed"
    assert (await get_user(database, "bob")).points == 15

    assert await interpreter.handle(mod("mod1", "!clips pending")) == "📋 No pending clips."


async def test_clipreject_requires_note(interpreter, context, database, owner_oracle):
    await create_user(database, "bob")
    owner_oracle.default = "bob"
    submitted = await context.clips.submit("bob", CLIP)

    usage = await interpreter.handle(mod("mod1", f"!clipreject {submitted.clip_pk}"))
    assert usage == "@mod1 Usage: !clipreject <id> <note>"

    reply = await interpreter.handle(mod("mod1", f"!clipreject {submitted.clip_pk} wrong channel"))
    assert reply == f"@mod1 ❌ Clip #{submitted.clip_pk} by bob rejected"


async def test_bot_list_commands(interpreter):
    assert await interpreter.handle(mod("mod1", "!botadd Nightbot known bot")) == "🤖 nightbot added to the bot list (known bot)"
    assert await interpreter.handle(mod("mod1", "!botcheck nightbot")) == "🤖 nightbot is on the bot list"
    assert "nightbot" in await interpreter.handle(mod("mod1", "!botlist"))
    assert await interpreter.handle(mod("mod1", "!botremove nightbot")) == "✅ nightbot removed from the bot list"
    assert await interpreter.handle(mod("mod1", "!botcheck nightbot")) == "👤 nightbot is not on the bot list"
    assert await interpreter.handle(mod("mod1", "!botremove nightbot")) == "@mod1 nightbot is not on the bot list"
    assert await interpreter.handle(mod("mod1", "!botclean")) == "🧹 Removed 0 malformed bot list entries"


async def test_spam_commands(interpreter, context, clock):
    await context.activity.process_message(chat("alice", "hello world"))
    clock.advance(4)

    config = await interpreter.handle(mod("mod1", "!spamconfig"))
    assert "cooldown 10s" in config

    check = await interpreter.handle(mod("mod1", "!spamcheck alice"))
    assert "blocked (cooldown)" in check
    assert "cooldown 6s" in check

    assert await interpreter.handle(mod("mod1", "!spamreset alice")) == "✅ Anti-spam state reset for alice"
    assert "can earn points" in await interpreter.handle(mod("mod1", "!spamcheck alice"))
    assert await interpreter.handle(mod("mod1", "!spamreset ghost")) == "@mod1 Unknown user ghost"


async def test_streamconfig(interpreter, live_oracle):
    assert await interpreter.handle(mod("mod1", "!streamconfig")) == "📺 Offline check: on, stream live: yes"

    live_oracle.live = False
    assert await interpreter.handle(mod("mod1", "!streamconfig")) == "📺 Offline check: on, stream live: no"
