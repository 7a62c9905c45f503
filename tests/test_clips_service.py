"""Clip submission workflow."""

from __future__ import annotations

import asyncio
from datetime import UTC
from datetime import datetime

import pytest

from stream_points.bot.services.clips_service import REASON_DAILY_LIMIT
from stream_points.bot.services.clips_service import REASON_DUPLICATE_OTHER
from stream_points.bot.services.clips_service import REASON_DUPLICATE_OWN
from stream_points.bot.services.clips_service import REASON_INVALID_URL
from stream_points.bot.services.clips_service import REASON_NOT_OWNER
from stream_points.bot.services.exceptions import ClipNotFoundError
from stream_points.bot.services.exceptions import UserNotFoundError
from stream_points.bot.services.exceptions import ValidationError
from stream_points.web.models import ClipStatus
from stream_points.web.models import ClipSubmission
from tests.conftest import create_user, get_user, make_settings

CLIP_X = "https://clips.twitch.tv/FunnyCleverClipSlug-abc123"
CLIP_Y = "https://www.twitch.tv/teststream/clip/AnotherSlug-xyz?filter=clips"


async def get_clip(database, clip_pk):
    async with database.session() as session:
        return await session.get(ClipSubmission, clip_pk)


@pytest.fixture
async def bob(database, owner_oracle):
    await create_user(database, "bob", points=0)
    owner_oracle.default = "bob"
    return "bob"


async def test_submit_accepts_and_parses_clip_id(context, database, bob):
    result = await context.clips.submit("Bob", CLIP_Y, "Bob")

    assert result.accepted
    assert result.clip_pk is not None
    assert result.clip_id == "AnotherSlug-xyz"

    clip = await get_clip(database, result.clip_pk)
    assert clip.status == ClipStatus.PENDING.value
    assert clip.submitter == "bob"
    assert clip.clip_url == CLIP_Y


async def test_submit_rejects_invalid_url(context, bob):
    for url in ("https://youtube.com/watch?v=1", "clips.twitch.tv/abc", "", "https://www.twitch.tv/teststream"):
        result = await context.clips.submit("bob", url)
        assert not result.accepted
        assert result.reason == REASON_INVALID_URL


async def test_submit_rejects_someone_elses_clip(context, owner_oracle, bob):
    owner_oracle.owners[CLIP_X] = "alice"

    result = await context.clips.submit("bob", CLIP_X)

    assert not result.accepted
    assert result.reason == REASON_NOT_OWNER


async def test_unknown_owner_fails_closed(context, owner_oracle, bob):
    owner_oracle.owners[CLIP_X] = None

    result = await context.clips.submit("bob", CLIP_X)

    assert result.reason == REASON_NOT_OWNER


async def test_url_channel_match_without_oracle(tmp_path, build_context, database):
    await create_user(database, "teststream")
    context = build_context(make_settings(tmp_path), owner_oracle=None)

    accepted = await context.clips.submit("teststream", CLIP_Y)
    refused = await context.clips.submit("teststream", CLIP_X)

    assert accepted.accepted
    assert refused.reason == REASON_NOT_OWNER


async def test_permissive_mode_skips_ownership(tmp_path, build_context, owner_oracle):
    owner_oracle.default = "someone_else"
    context = build_context(make_settings(tmp_path, clip_ownership_mode="permissive"))

    result = await context.clips.submit("bob", CLIP_X)

    assert result.accepted


async def test_duplicate_url_is_rejected_for_everyone(context, owner_oracle, bob):
    first = await context.clips.submit("bob", CLIP_X)
    assert first.accepted

    again = await context.clips.submit("bob", CLIP_X)
    assert again.reason == REASON_DUPLICATE_OWN

    owner_oracle.default = "alice"
    other = await context.clips.submit("alice", CLIP_X)
    assert other.reason == REASON_DUPLICATE_OTHER


async def test_duplicate_check_covers_reviewed_clips(context, bob):
    first = await context.clips.submit("bob", CLIP_X)
    await context.clips.reject(first.clip_pk, "mod1", "low quality")

    again = await context.clips.submit("bob", CLIP_X)

    assert again.reason == REASON_DUPLICATE_OWN


async def test_daily_quota(context, clock, bob):
    for i in range(3):
        result = await context.clips.submit("bob", f"https://clips.twitch.tv/Slug{i}")
        assert result.accepted

    blocked = await context.clips.submit("bob", "https://clips.twitch.tv/Slug3")
    assert blocked.reason == REASON_DAILY_LIMIT

    clock.advance(24 * 3600)
    assert (await context.clips.submit("bob", "https://clips.twitch.tv/Slug3")).accepted


async def test_daily_quota_resets_at_local_midnight(context, clock, bob):
    # 23:50 in Berlin (CET)
    clock.set(datetime(2026, 3, 15, 22, 50, tzinfo=UTC))
    for i in range(3):
        assert (await context.clips.submit("bob", f"https://clips.twitch.tv/Late{i}")).accepted
    blocked = await context.clips.submit("bob", "https://clips.twitch.tv/Late3")
    assert blocked.reason == REASON_DAILY_LIMIT

    clock.set(datetime(2026, 3, 15, 23, 5, tzinfo=UTC))
    assert (await context.clips.submit("bob", "https://clips.twitch.tv/Late3")).accepted


async def test_approve_awards_submitter_once(context, database, sender, bob):
    submitted = await context.clips.submit("bob", CLIP_X, "Bob")

    result = await context.clips.approve(submitted.clip_pk, "mod1", 15, "great clip")

    assert result.status == ClipStatus.APPROVED.value
    assert result.new_total == 15
    assert (await get_user(database, "bob")).points == 15

    clip = await get_clip(database, submitted.clip_pk)
    assert clip.status == ClipStatus.APPROVED.value
    assert clip.reviewer == "mod1"
    assert clip.points_awarded == 15
    assert clip.note == "great clip"
    assert clip.reviewed_at is not None

    with pytest.raises(ClipNotFoundError):
        await context.clips.approve(submitted.clip_pk, "mod2", 15)
    assert (await get_user(database, "bob")).points == 15

    await context.announcer.drain()
    assert any("approved" in message and "+15" in message for message in sender.messages)


async def test_concurrent_approvals_award_once(context, database, bob):
    submitted = await context.clips.submit("bob", CLIP_X)

    results = await asyncio.gather(
        context.clips.approve(submitted.clip_pk, "mod1", 15),
        context.clips.approve(submitted.clip_pk, "mod2", 15),
        return_exceptions=True,
    )

    assert sum(1 for r in results if isinstance(r, ClipNotFoundError)) == 1
    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    assert (await get_user(database, "bob")).points == 15


async def test_approve_with_zero_points(context, database, bob):
    submitted = await context.clips.submit("bob", CLIP_X)

    result = await context.clips.approve(submitted.clip_pk, "mod1", 0)

    assert result.new_total is None
    assert (await get_user(database, "bob")).points == 0


async def test_approve_rejects_negative_points(context, bob):
    submitted = await context.clips.submit("bob", CLIP_X)

    with pytest.raises(ValidationError):
        await context.clips.approve(submitted.clip_pk, "mod1", -5)


async def test_approve_unknown_clip(context):
    with pytest.raises(ClipNotFoundError):
        await context.clips.approve(999, "mod1", 10)


async def test_failed_award_leaves_clip_pending(context, database):
    async with database.session() as session:
        clip = ClipSubmission(submitter="ghost", clip_url=CLIP_X, clip_id="FunnyCleverClipSlug-abc123")
        session.add(clip)
        await session.commit()
        clip_pk = clip.id

    with pytest.raises(UserNotFoundError):
        await context.clips.approve(clip_pk, "mod1", 10)

    assert (await get_clip(database, clip_pk)).status == ClipStatus.PENDING.value


async def test_reject_is_terminal(context, database, bob):
    submitted = await context.clips.submit("bob", CLIP_X)

    result = await context.clips.reject(submitted.clip_pk, "mod1", "not a clip of this stream")
    assert result.status == ClipStatus.REJECTED.value

    with pytest.raises(ClipNotFoundError):
        await context.clips.reject(submitted.clip_pk, "mod1", "again")
    with pytest.raises(ClipNotFoundError):
        await context.clips.approve(submitted.clip_pk, "mod1", 10)

    clip = await get_clip(database, submitted.clip_pk)
    assert clip.status == ClipStatus.REJECTED.value
    assert clip.note == "not a clip of this stream"
    assert (await get_user(database, "bob")).points == 0


async def test_pending_and_public_listing(context, clock, bob):
    first = await context.clips.submit("bob", CLIP_X, "Bob")
    clock.advance(60)
    second = await context.clips.submit("bob", CLIP_Y, "Bob")

    pending = await context.clips.pending()
    assert [clip.id for clip in pending] == [second.clip_pk, first.clip_pk]

    await context.clips.approve(first.clip_pk, "mod1", 5, "epic moment")
    await context.clips.approve(second.clip_pk, "mod1", 5, "funny")

    clips, total = await context.clips.public(limit=1)
    assert total == 2
    assert [clip.id for clip in clips] == [second.clip_pk]

    clips, total = await context.clips.public(search="EPIC")
    assert total == 1
    assert clips[0].id == first.clip_pk
