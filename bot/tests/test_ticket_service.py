from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from core.config import TicketsConfig
from core.errors import (
    AlreadyClaimedError,
    FeatureDisabledError,
    NotClaimedError,
    NotConfiguredError,
    PermissionDeniedError,
    TicketCreationError,
    TicketNotFoundError,
    ValidationError,
)
from database.store import MemoryDocumentStore
from fakes import (
    ADMIN_ROLE_ID,
    GUILD_ID,
    LOG_CHANNEL_ID,
    SUPPORT_CATEGORY_ID,
    SUPPORT_ROLE_ID,
    TRADE_CATEGORY_ID,
    TRADE_ROLE_ID,
    FakeScheduler,
    configured_patch,
    make_guild,
    make_member,
    make_repo,
    make_text_channel,
)
from services.cache import MemoryCache
from services.config_service import ConfigService
from services.premium_service import PremiumService
from services.ticket_service import TicketService, TicketServiceDeps

OPENER_ID = 920000000000000001
STAFF_ID = 920000000000000002
OTHER_STAFF_ID = 920000000000000003
ADMIN_ID = 920000000000000004
OUTSIDER_ID = 920000000000000005


def _http_error(cls: type[discord.HTTPException] = discord.Forbidden) -> discord.HTTPException:
    response = MagicMock()
    response.status = 403 if cls is discord.Forbidden else 404
    response.reason = "rejected"
    return cls(response, "rejected")


async def _make_env(
    *,
    config_patch: dict[str, Any] | None = None,
    premium: dict[str, Any] | None = None,
    dm_on_close: bool = False,
    cooldown: int = 20,
    rating_view_factory: Any = None,
    user_fetcher: Any = None,
) -> SimpleNamespace:
    store = MemoryDocumentStore()
    scheduler = FakeScheduler()
    config_service = ConfigService(make_repo(store, "guildConfigs", scheduler, debounce_seconds=0.25))
    premium_service = PremiumService(make_repo(store, "premiumGuilds", scheduler), make_repo(store, "premiumKeys", scheduler))
    transcripts = MagicMock()
    transcripts.generate = AsyncMock(return_value="artifacts")
    transcripts.publish = AsyncMock(return_value=True)

    await config_service.save_config(GUILD_ID, configured_patch() if config_patch is None else config_patch)
    if premium is not None:
        await premium_service.save_state(GUILD_ID, {"isPremium": True, **premium})

    deps = TicketServiceDeps(
        config_service=config_service,
        premium_service=premium_service,
        transcript_service=transcripts,
        scheduler=scheduler,
        cache=MemoryCache(),
        rating_view_factory=rating_view_factory,
        user_fetcher=user_fetcher,
    )
    service = TicketService(
        TicketsConfig(close_grace_seconds=2, dm_on_close=dm_on_close, creation_cooldown_seconds=cooldown),
        deps,
    )
    guild = make_guild()
    opener = make_member(OPENER_ID, guild, name="Trader Joe")
    guild.members_by_id[OPENER_ID] = opener
    return SimpleNamespace(
        service=service,
        scheduler=scheduler,
        guild=guild,
        opener=opener,
        staff=make_member(STAFF_ID, guild, roles=[SUPPORT_ROLE_ID], name="helper"),
        other_staff=make_member(OTHER_STAFF_ID, guild, roles=[SUPPORT_ROLE_ID], name="helper2"),
        trade_staff=make_member(OTHER_STAFF_ID, guild, roles=[TRADE_ROLE_ID], name="middleman"),
        admin=make_member(ADMIN_ID, guild, roles=[ADMIN_ROLE_ID], name="admin"),
        outsider=make_member(OUTSIDER_ID, guild, name="random"),
        transcripts=transcripts,
        log_channel=guild.channels_by_id[LOG_CHANNEL_ID],
    )


def test_build_channel_name_sanitizes_template() -> None:
    service = TicketService(TicketsConfig(max_name_length=90), MagicMock())
    opener = SimpleNamespace(name="Cool Guy!!", id=123)

    assert service.build_channel_name("ticket-{user}", opener, "support") == "ticket-cool-guy"
    assert service.build_channel_name("{type}_{id}", opener, "trade") == "trade_123"
    assert service.build_channel_name("!!!", opener, "support") == "ticket"
    assert len(service.build_channel_name("x" * 300, opener, "support")) == 90


@pytest.mark.asyncio
async def test_create_ticket_builds_private_channel() -> None:
    env = await _make_env()

    channel = await env.service.create_ticket(env.guild, env.opener, "support", "nobody", "my order is missing")

    kwargs = env.guild.create_text_channel.await_args.kwargs
    assert kwargs["name"] == "ticket-trader-joe"
    assert kwargs["category"].id == SUPPORT_CATEGORY_ID
    assert kwargs["topic"] == f"opened:{OPENER_ID};claimed:null"
    overwrites = kwargs["overwrites"]
    assert overwrites[env.guild.default_role].view_channel is False
    assert overwrites[env.opener].view_channel is True
    assert env.guild.roles_by_id[SUPPORT_ROLE_ID] in overwrites
    assert env.guild.roles_by_id[ADMIN_ROLE_ID] in overwrites
    assert env.guild.roles_by_id[TRADE_ROLE_ID] not in overwrites

    assert channel.send.await_args_list[0].args[0] == "@here"
    assert env.log_channel.send.await_count == 1
    assert env.log_channel.send.await_args.kwargs["embed"].title == "Ticket Created"
    assert env.service.get_state(channel).opened_by == OPENER_ID
    assert env.scheduler.pending_named("auto-close") == []
    assert "position" not in kwargs
    assert channel.send.await_args_list[1].kwargs["embed"].title == "Support Ticket"


@pytest.mark.asyncio
async def test_trade_ticket_includes_support_and_trade_roles() -> None:
    env = await _make_env()

    await env.service.create_ticket(env.guild, env.opener, "trade", "@seller", "100 gems for 5 dollars")

    kwargs = env.guild.create_text_channel.await_args.kwargs
    assert kwargs["category"].id == TRADE_CATEGORY_ID
    for role_id in (TRADE_ROLE_ID, SUPPORT_ROLE_ID, ADMIN_ROLE_ID):
        assert env.guild.roles_by_id[role_id] in kwargs["overwrites"]


@pytest.mark.asyncio
async def test_create_ticket_skips_unknown_roles() -> None:
    patch = configured_patch()
    patch["supportRoles"] = [str(SUPPORT_ROLE_ID), "930000000000000099"]
    env = await _make_env(config_patch=patch)

    await env.service.create_ticket(env.guild, env.opener, "support", "-", "help")

    overwrites = env.guild.create_text_channel.await_args.kwargs["overwrites"]
    assert len(overwrites) == 5  # everyone, opener, bot, support role, admin role


@pytest.mark.asyncio
async def test_create_ticket_rejects_unknown_type() -> None:
    env = await _make_env()
    with pytest.raises(ValidationError):
        await env.service.create_ticket(env.guild, env.opener, "billing", "-", "-")


@pytest.mark.asyncio
async def test_create_ticket_disabled_type() -> None:
    patch = configured_patch()
    patch["supportEnabled"] = False
    env = await _make_env(config_patch=patch)

    with pytest.raises(FeatureDisabledError):
        await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")
    env.guild.create_text_channel.assert_not_awaited()


@pytest.mark.asyncio
async def test_create_ticket_requires_category() -> None:
    env = await _make_env(config_patch={"supportEnabled": True})

    with pytest.raises(NotConfiguredError):
        await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")


@pytest.mark.asyncio
async def test_create_ticket_category_must_be_category_channel() -> None:
    env = await _make_env()
    env.guild.channels_by_id[SUPPORT_CATEGORY_ID] = make_text_channel(SUPPORT_CATEGORY_ID, env.guild)

    with pytest.raises(NotConfiguredError):
        await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")


@pytest.mark.asyncio
async def test_create_ticket_cooldown_per_user() -> None:
    env = await _make_env()
    await env.service.create_ticket(env.guild, env.opener, "support", "-", "first")

    with pytest.raises(ValidationError):
        await env.service.create_ticket(env.guild, env.opener, "trade", "-", "second")

    other = make_member(OUTSIDER_ID, env.guild)
    await env.service.create_ticket(env.guild, other, "support", "-", "someone else")


@pytest.mark.asyncio
async def test_create_ticket_channel_failure() -> None:
    env = await _make_env()
    env.guild.create_text_channel.side_effect = _http_error()

    with pytest.raises(TicketCreationError):
        await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")


@pytest.mark.asyncio
async def test_premium_ticket_uses_template_ping_and_welcome() -> None:
    env = await _make_env(
        premium={
            "features": {
                "ticketNameTemplate": "{type}-{user}",
                "welcomeMessage": "Hi {user}, welcome to {server} ({type})",
                "pings": {"support": {"roles": [str(SUPPORT_ROLE_ID)], "here": False}},
            }
        }
    )

    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")

    assert channel.name == "support-trader-joe"
    sent = [call.args[0] for call in channel.send.await_args_list if call.args]
    assert sent[0] == f"<@&{SUPPORT_ROLE_ID}>"
    assert f"Hi <@{OPENER_ID}>, welcome to Dragon Market (support)" in sent


@pytest.mark.asyncio
async def test_claim_sets_claimer_and_topic() -> None:
    env = await _make_env()
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")

    state = await env.service.claim_ticket(channel, env.staff)

    assert state.claimed_by == STAFF_ID
    channel.edit.assert_awaited_with(topic=f"opened:{OPENER_ID};claimed:{STAFF_ID}")
    assert env.log_channel.send.await_args.kwargs["embed"].title == "Ticket Claimed"


@pytest.mark.asyncio
async def test_concurrent_claims_have_one_winner() -> None:
    env = await _make_env()
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")

    results = await asyncio.gather(
        env.service.claim_ticket(channel, env.staff),
        env.service.claim_ticket(channel, env.other_staff),
        return_exceptions=True,
    )

    errors = [result for result in results if isinstance(result, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], AlreadyClaimedError)
    winner = next(result for result in results if not isinstance(result, Exception))
    assert env.service.get_state(channel).claimed_by == winner.claimed_by


@pytest.mark.asyncio
async def test_claim_requires_staff_for_category() -> None:
    env = await _make_env()
    support = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")

    with pytest.raises(PermissionDeniedError):
        await env.service.claim_ticket(support, env.outsider)
    with pytest.raises(PermissionDeniedError):
        await env.service.claim_ticket(support, env.trade_staff)

    trade = make_text_channel(930000000000000001, env.guild, topic="opened:1;claimed:null", category_id=TRADE_CATEGORY_ID)
    state = await env.service.claim_ticket(trade, env.trade_staff)
    assert state.claimed_by == OTHER_STAFF_ID


@pytest.mark.asyncio
async def test_claim_outside_ticket_channel() -> None:
    env = await _make_env()
    general = make_text_channel(930000000000000002, env.guild, name="general")

    with pytest.raises(TicketNotFoundError):
        await env.service.claim_ticket(general, env.admin)


@pytest.mark.asyncio
async def test_claim_auto_tag_never_double_prefixes() -> None:
    env = await _make_env(premium={"features": {"claimAutoTag": True}})
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")

    await env.service.claim_ticket(channel, env.staff)
    assert channel.edit.await_args.kwargs["name"] == "claimed-ticket-trader-joe"

    channel.name = "claimed-ticket-trader-joe"
    await env.service.unclaim_ticket(channel, env.staff)
    assert channel.edit.await_args.kwargs["name"] == "ticket-trader-joe"

    channel.name = "claimed-ticket-trader-joe"
    await env.service.claim_ticket(channel, env.other_staff)
    assert "name" not in channel.edit.await_args.kwargs


@pytest.mark.asyncio
async def test_unclaim_rules() -> None:
    env = await _make_env()
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")

    with pytest.raises(NotClaimedError):
        await env.service.unclaim_ticket(channel, env.staff)

    await env.service.claim_ticket(channel, env.staff)
    with pytest.raises(PermissionDeniedError):
        await env.service.unclaim_ticket(channel, env.other_staff)

    state = await env.service.unclaim_ticket(channel, env.admin)
    assert state.claimed_by is None
    assert env.service.get_state(channel).claimed_by is None


@pytest.mark.asyncio
async def test_add_member_by_opener_and_failure() -> None:
    env = await _make_env()
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")
    friend = make_member(OUTSIDER_ID, env.guild)

    await env.service.add_member(channel, env.opener, friend)
    channel.set_permissions.assert_awaited_once()
    assert channel.set_permissions.await_args.kwargs["view_channel"] is True

    stranger = make_member(940000000000000001, env.guild)
    with pytest.raises(PermissionDeniedError):
        await env.service.add_member(channel, stranger, friend)

    channel.set_permissions.side_effect = _http_error()
    with pytest.raises(PermissionDeniedError):
        await env.service.add_member(channel, env.staff, friend)


@pytest.mark.asyncio
async def test_close_runs_side_effects_then_deletes() -> None:
    rating_factory = MagicMock(return_value="rating-view")
    env = await _make_env(dm_on_close=True, rating_view_factory=rating_factory)
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")
    await env.service.claim_ticket(channel, env.staff)

    await env.service.close_ticket(channel, env.staff, "  resolved  ")

    assert env.opener.send.await_count == 2
    rating_factory.assert_called_once_with(channel.id, STAFF_ID)
    close_log = env.log_channel.send.await_args.kwargs["embed"]
    assert close_log.title == "Ticket Closed"
    assert any(field.value == "resolved" for field in close_log.fields)
    assert channel.send.await_args.args[0] == "Ticket closed: **resolved**"
    channel.delete.assert_not_awaited()
    assert env.service.is_closing(channel.id)

    await env.scheduler.advance(2)

    channel.delete.assert_awaited_once()
    assert not env.service.is_closing(channel.id)


@pytest.mark.asyncio
async def test_second_close_is_noop() -> None:
    env = await _make_env()
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")

    await env.service.close_ticket(channel, env.staff)
    sends = channel.send.await_count
    await env.service.close_ticket(channel, env.admin, "again")

    assert channel.send.await_count == sends
    assert len(env.scheduler.pending_named("delete")) == 1


@pytest.mark.asyncio
async def test_close_requires_manager() -> None:
    env = await _make_env()
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")

    with pytest.raises(PermissionDeniedError):
        await env.service.close_ticket(channel, env.opener)
    assert not env.service.is_closing(channel.id)


@pytest.mark.asyncio
async def test_close_side_effect_failure_does_not_block_delete() -> None:
    env = await _make_env(dm_on_close=True)
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")
    env.opener.send.side_effect = RuntimeError("dm closed")
    env.log_channel.send.side_effect = _http_error()

    await env.service.close_ticket(channel, env.admin)
    await env.scheduler.advance(2)

    channel.delete.assert_awaited_once()


@pytest.mark.asyncio
async def test_close_tolerates_already_deleted_channel() -> None:
    env = await _make_env()
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")
    channel.delete.side_effect = _http_error(discord.NotFound)

    await env.service.close_ticket(channel, env.staff)
    await env.scheduler.advance(2)

    assert not env.service.is_closing(channel.id)


@pytest.mark.asyncio
async def test_premium_close_posts_transcript_to_log_channel() -> None:
    env = await _make_env(premium={"features": {"transcriptsEnabled": True}})
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")

    await env.service.close_ticket(channel, env.staff)

    env.transcripts.generate.assert_awaited_once()
    env.transcripts.publish.assert_awaited_once_with("artifacts", env.log_channel, channel.name)


@pytest.mark.asyncio
async def test_non_premium_close_skips_transcript() -> None:
    env = await _make_env()
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")

    await env.service.close_ticket(channel, env.staff)

    env.transcripts.generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_auto_close_fires_after_configured_minutes() -> None:
    env = await _make_env(premium={"features": {"autoCloseMinutes": 5}})
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")
    assert len(env.scheduler.pending_named("auto-close")) == 1

    await env.scheduler.advance(299)
    assert not env.service.is_closing(channel.id)

    await env.scheduler.advance(1)
    assert env.service.is_closing(channel.id)
    await env.scheduler.advance(2)
    channel.delete.assert_awaited_once()


@pytest.mark.asyncio
async def test_auto_close_is_noop_when_channel_gone() -> None:
    env = await _make_env(premium={"features": {"autoCloseMinutes": 1}})
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")
    del env.guild.channels_by_id[channel.id]

    await env.scheduler.advance(60)

    assert not env.service.is_closing(channel.id)
    assert env.scheduler.pending_named("delete") == []


@pytest.mark.asyncio
async def test_manual_close_cancels_auto_close() -> None:
    env = await _make_env(premium={"features": {"autoCloseMinutes": 1}})
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")

    await env.service.close_ticket(channel, env.staff)

    assert env.scheduler.pending_named("auto-close") == []


@pytest.mark.asyncio
async def test_channel_deleted_forgets_state() -> None:
    env = await _make_env(premium={"features": {"autoCloseMinutes": 1}})
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")

    env.service.handle_channel_deleted(channel.id)

    assert env.scheduler.pending_named("auto-close") == []


@pytest.mark.asyncio
async def test_is_ticket_channel_detection() -> None:
    env = await _make_env()
    guild = env.guild

    assert env.service.is_ticket_channel(make_text_channel(1, guild, name="general", category_id=SUPPORT_CATEGORY_ID))
    assert env.service.is_ticket_channel(make_text_channel(2, guild, name="general", topic="opened:5;claimed:null"))
    assert env.service.is_ticket_channel(make_text_channel(3, guild, name="claimed-ticket-bob"))
    assert not env.service.is_ticket_channel(make_text_channel(4, guild, name="general"))
    assert not env.service.is_ticket_channel(MagicMock(spec=discord.VoiceChannel))


@pytest.mark.asyncio
async def test_state_is_seeded_from_topic() -> None:
    env = await _make_env()
    channel = make_text_channel(5, env.guild, topic=f"opened:{OPENER_ID};claimed:{STAFF_ID}", category_id=SUPPORT_CATEGORY_ID)

    with pytest.raises(AlreadyClaimedError):
        await env.service.claim_ticket(channel, env.other_staff)
    assert env.service.ticket_type_for(channel) == "support"


@pytest.mark.asyncio
async def test_priority_ticket_is_pinned_to_top_and_marked() -> None:
    env = await _make_env(premium={"features": {"priority": True}})

    channel = await env.service.create_ticket(env.guild, env.opener, "trade", "@partner", "100 gems for a sword")

    assert env.guild.create_text_channel.await_args.kwargs["position"] == 0
    embed = channel.send.await_args_list[1].kwargs["embed"]
    assert embed.title == "Trade Ticket (Priority)"
    assert embed.footer.text.startswith("Priority ticket")


@pytest.mark.asyncio
async def test_priority_flag_is_ignored_without_premium() -> None:
    env = await _make_env()
    await env.service.deps.premium_service.save_state(GUILD_ID, {"isPremium": False, "features": {"priority": True}})

    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")

    assert "position" not in env.guild.create_text_channel.await_args.kwargs
    assert channel.send.await_args_list[1].kwargs["embed"].title == "Support Ticket"


@pytest.mark.asyncio
async def test_close_summary_reaches_opener_who_left() -> None:
    departed = MagicMock(spec=discord.User)
    departed.id = OPENER_ID
    departed.send = AsyncMock()
    fetch_user = AsyncMock(return_value=departed)
    env = await _make_env(dm_on_close=True, user_fetcher=fetch_user)
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")
    del env.guild.members_by_id[OPENER_ID]

    await env.service.close_ticket(channel, env.staff)

    fetch_user.assert_awaited_once_with(OPENER_ID)
    assert departed.send.await_args.kwargs["embed"].title == "Ticket Closed"
    env.opener.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_close_summary_skipped_when_opener_cannot_be_fetched() -> None:
    fetch_user = AsyncMock(side_effect=_http_error(discord.NotFound))
    env = await _make_env(dm_on_close=True, user_fetcher=fetch_user)
    channel = await env.service.create_ticket(env.guild, env.opener, "support", "-", "-")
    del env.guild.members_by_id[OPENER_ID]

    await env.service.close_ticket(channel, env.staff)

    fetch_user.assert_awaited_once_with(OPENER_ID)
    assert channel.send.await_args.args[0] == "Ticket will be closed."
    await env.scheduler.advance(2)
    channel.delete.assert_awaited_once()
