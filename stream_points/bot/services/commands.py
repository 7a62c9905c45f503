"""Chat command interpreter.

Parses ``!command`` messages and dispatches them to the services. Handlers
return the reply text (or None for no reply); the chat client sends it.
Moderator commands from unprivileged users and unknown commands are
ignored without a reply.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable
from typing import Callable

from stream_points.bot.services.context import AppContext
from stream_points.bot.services.exceptions import ResourceNotFoundError
from stream_points.bot.services.exceptions import ServiceError
from stream_points.bot.services.exceptions import ValidationError
from stream_points.bot.services.models import ChatEvent
from stream_points.web.crud import DatabaseOperationError
from stream_points.web.crud import normalize_username

logger = logging.getLogger(__name__)

PREFIX = "!"
TOP_CHAT_LIMIT = 5
PENDING_CHAT_LIMIT = 5
BOTLIST_CHAT_LIMIT = 10

Handler = Callable[[ChatEvent, list[str]], Awaitable[str | None]]


@dataclass(frozen=True)
class Command:
    handler: Handler
    mod_only: bool = False


def parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def target_name(value: str) -> str:
    return normalize_username(value)


class CommandInterpreter:
    """Maps command names to handlers and enforces role checks."""

    def __init__(self, context: AppContext):
        self.context = context
        self.commands: dict[str, Command] = {
            "points": Command(self.cmd_points),
            "punkte": Command(self.cmd_points),
            "top": Command(self.cmd_top),
            "leaderboard": Command(self.cmd_top),
            "submitclip": Command(self.cmd_submitclip),
            "clips": Command(self.cmd_clips, mod_only=True),
            "clipapprove": Command(self.cmd_clipapprove, mod_only=True),
            "clipreject": Command(self.cmd_clipreject, mod_only=True),
            "give": Command(self.cmd_give, mod_only=True),
            "dropall": Command(self.cmd_dropall, mod_only=True),
            "droprandom": Command(self.cmd_droprandom, mod_only=True),
            "doublepoints": Command(self.cmd_doublepoints, mod_only=True),
            "botadd": Command(self.cmd_botadd, mod_only=True),
            "botremove": Command(self.cmd_botremove, mod_only=True),
            "botlist": Command(self.cmd_botlist, mod_only=True),
            "botcheck": Command(self.cmd_botcheck, mod_only=True),
            "botclean": Command(self.cmd_botclean, mod_only=True),
            "spamconfig": Command(self.cmd_spamconfig, mod_only=True),
            "spamcheck": Command(self.cmd_spamcheck, mod_only=True),
            "spamreset": Command(self.cmd_spamreset, mod_only=True),
            "streamconfig": Command(self.cmd_streamconfig, mod_only=True),
        }

    async def handle(self, event: ChatEvent) -> str | None:
        """Interpret one chat message.

        Args:
            event: Chat message with the sender's role flags

        Returns:
            Reply text, or None when the message is not a command to answer
        """
        text = event.text.strip()
        if not text.startswith(PREFIX):
            return None

        parts = text.split()
        name = parts[0][len(PREFIX):].lower()
        command = self.commands.get(name)
        if command is None:
            return None
        if command.mod_only and not event.is_privileged:
            logger.debug(f"Ignoring !{name} from unprivileged user {event.login}")
            return None

        try:
            return await command.handler(event, parts[1:])
        except ValidationError as e:
            return f"@{event.login} {e.message}"
        except ResourceNotFoundError as e:
            return f"@{event.login} {e.message}"
        except (ServiceError, DatabaseOperationError) as e:
            logger.error(f"Command !{name} from {event.login} failed: {e}")
            return f"@{event.login} Something went wrong, please try again later."

    # Viewer commands

    async def cmd_points(self, event: ChatEvent, args: list[str]) -> str:
        user = await self.context.activity.get_user(event.login)
        points = user.points if user else 0
        return f"@{event.display_name or event.login} has {points} points! 🎯"

    async def cmd_top(self, event: ChatEvent, args: list[str]) -> str:
        entries = await self.context.activity.leaderboard(TOP_CHAT_LIMIT)
        if not entries:
            return "🏆 No points collected yet."
        board = " | ".join(
            f"{entry.rank}. {entry.display_name or entry.username}: {entry.points}"
            for entry in entries
        )
        return f"🏆 Top {TOP_CHAT_LIMIT}: {board}"

    async def cmd_submitclip(self, event: ChatEvent, args: list[str]) -> str:
        if not args:
            return f"@{event.login} Usage: !submitclip <clip_url>"

        result = await self.context.clips.submit(event.login, args[0], event.display_name)
        if result.accepted:
            return f"@{event.login} ✅ {result.message}"
        return f"@{event.login} {result.message}"

    # Clip review

    async def cmd_clips(self, event: ChatEvent, args: list[str]) -> str:
        if not args or args[0].lower() != "pending":
            return f"@{event.login} Usage: !clips pending"

        clips = await self.context.clips.pending(PENDING_CHAT_LIMIT)
        if not clips:
            return "📋 No pending clips."
        listing = " | ".join(
            f"#{clip.id} {clip.display_name or clip.submitter}: {clip.clip_url}"
            for clip in clips
        )
        return f"📋 Pending clips: {listing}"

    async def cmd_clipapprove(self, event: ChatEvent, args: list[str]) -> str:
        clip_pk = parse_int(args[0]) if args else None
        points = parse_int(args[1]) if len(args) > 1 else None
        if clip_pk is None or points is None:
            return f"@{event.login} Usage: !clipapprove <id> <points> [note]"

        note = " ".join(args[2:]) or None
        result = await self.context.clips.approve(clip_pk, event.login, points, note)
        return f"@{event.login} ✅ Clip #{clip_pk} by {result.submitter} approved (+{points} points)"

    async def cmd_clipreject(self, event: ChatEvent, args: list[str]) -> str:
        clip_pk = parse_int(args[0]) if args else None
        note = " ".join(args[1:]).strip()
        if clip_pk is None or not note:
            return f"@{event.login} Usage: !clipreject <id> <note>"

        result = await self.context.clips.reject(clip_pk, event.login, note)
        return f"@{event.login} ❌ Clip #{clip_pk} by {result.submitter} rejected"

    # Points administration

    async def cmd_give(self, event: ChatEvent, args: list[str]) -> str:
        amount = parse_int(args[1]) if len(args) > 1 else None
        if not args or amount is None:
            return f"@{event.login} Usage: !give <user> <amount>"
        if amount <= 0:
            return f"@{event.login} Invalid amount!"

        award = await self.context.ledger.grant(target_name(args[0]), amount, event.login)
        return f"🎁 @{award.username} +{award.final_points} points! Total: {award.new_total}"

    async def cmd_dropall(self, event: ChatEvent, args: list[str]) -> str:
        amount = parse_int(args[0]) if args else None
        if amount is None:
            return f"@{event.login} Usage: !dropall <amount>"
        if amount <= 0:
            return f"@{event.login} Invalid amount!"

        result = await self.context.activity.drop_all(amount, event.login)
        if not result.recipients and not result.failed:
            return f"@{event.login} No active users found!"
        return f"🎊 All {len(result.recipients)} active users received +{amount} points!"

    async def cmd_droprandom(self, event: ChatEvent, args: list[str]) -> str:
        amount = parse_int(args[0]) if args else None
        count = parse_int(args[1]) if len(args) > 1 else None
        if amount is None or count is None:
            return f"@{event.login} Usage: !droprandom <amount> <count>"
        if amount <= 0 or count <= 0:
            return f"@{event.login} Invalid parameters!"

        result = await self.context.activity.drop_random(amount, count, event.login)
        if not result.recipients and not result.failed:
            return f"@{event.login} No active users found!"
        winners = ", ".join(result.recipients)
        return f"🎲 {len(result.recipients)} random users received +{amount} points: {winners}"

    async def cmd_doublepoints(self, event: ChatEvent, args: list[str]) -> str:
        enabled = await self.context.ledger.toggle_double_points()
        if enabled:
            return "⚡ Double points are now ACTIVE! All awards count twice."
        return "Double points are now disabled."

    # Bot blacklist

    async def cmd_botadd(self, event: ChatEvent, args: list[str]) -> str:
        if not args:
            return f"@{event.login} Usage: !botadd <user> [reason]"

        reason = " ".join(args[1:]) or "Manual addition"
        entry = await self.context.classifier.add(args[0], reason, event.login)
        return f"🤖 {entry.username} added to the bot list ({reason})"

    async def cmd_botremove(self, event: ChatEvent, args: list[str]) -> str:
        if not args:
            return f"@{event.login} Usage: !botremove <user>"

        name = target_name(args[0])
        if await self.context.classifier.remove(name):
            return f"✅ {name} removed from the bot list"
        return f"@{event.login} {name} is not on the bot list"

    async def cmd_botlist(self, event: ChatEvent, args: list[str]) -> str:
        entries = await self.context.classifier.list_entries(BOTLIST_CHAT_LIMIT)
        if not entries:
            return "🤖 The bot list is empty."
        names = ", ".join(entry.username or "<empty>" for entry in entries)
        return f"🤖 Bots ({len(entries)} newest): {names}"

    async def cmd_botcheck(self, event: ChatEvent, args: list[str]) -> str:
        if not args:
            return f"@{event.login} Usage: !botcheck <user>"

        name = target_name(args[0])
        if await self.context.classifier.is_bot(name):
            return f"🤖 {name} is on the bot list"
        return f"👤 {name} is not on the bot list"

    async def cmd_botclean(self, event: ChatEvent, args: list[str]) -> str:
        deleted = await self.context.classifier.cleanup()
        return f"🧹 Removed {deleted} malformed bot list entries"

    # Diagnostics

    async def cmd_spamconfig(self, event: ChatEvent, args: list[str]) -> str:
        t = self.context.gate.thresholds()
        return (
            f"🛡️ Anti-spam: min length {t['min_message_length']}, "
            f"cooldown {t['cooldown_seconds']}s, "
            f"max {t['max_points_per_hour']} points/hour, "
            f"max {t['max_messages_per_window']} messages per {t['window_seconds']}s"
        )

    async def cmd_spamcheck(self, event: ChatEvent, args: list[str]) -> str:
        if not args:
            return f"@{event.login} Usage: !spamcheck <user>"

        status = await self.context.gate.status(args[0])
        verdict = "can earn points" if status.decision.allowed else f"blocked ({status.decision.reason})"
        return (
            f"🛡️ {status.username}: {verdict}, cooldown {status.cooldown_remaining}s, "
            f"{status.hourly_count}/{self.context.settings.max_chat_points_per_hour} this hour, "
            f"{status.recent_messages} recent messages"
        )

    async def cmd_spamreset(self, event: ChatEvent, args: list[str]) -> str:
        if not args:
            return f"@{event.login} Usage: !spamreset <user>"

        name = target_name(args[0])
        if await self.context.gate.reset(name):
            return f"✅ Anti-spam state reset for {name}"
        return f"@{event.login} Unknown user {name}"

    async def cmd_streamconfig(self, event: ChatEvent, args: list[str]) -> str:
        stream_status = self.context.stream_status
        live = await stream_status.is_live()
        check = "on" if stream_status.check_enabled else "off"
        return f"📺 Offline check: {check}, stream live: {'yes' if live else 'no'}"
