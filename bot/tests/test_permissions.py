from __future__ import annotations

from fakes import (
    ADMIN_ROLE_ID,
    OWNER_ID,
    SUPPORT_CATEGORY_ID,
    SUPPORT_ROLE_ID,
    TRADE_CATEGORY_ID,
    TRADE_ROLE_ID,
    make_guild,
    make_member,
    make_text_channel,
)
from database.models import GuildConfig
from services.permissions import can_manage_ticket, is_admin, is_bot_owner

BOT_OWNER = 950000000000000001


def _config() -> GuildConfig:
    return GuildConfig(
        guild_id=1,
        support_category_id=SUPPORT_CATEGORY_ID,
        trade_category_id=TRADE_CATEGORY_ID,
        support_roles=[SUPPORT_ROLE_ID],
        trade_roles=[TRADE_ROLE_ID],
        admin_roles=[ADMIN_ROLE_ID],
    )


def test_is_admin_sources() -> None:
    guild = make_guild()
    config = _config()

    assert is_admin(make_member(OWNER_ID, guild), config)
    assert is_admin(make_member(BOT_OWNER, guild), config, owner_ids=[BOT_OWNER])
    assert is_admin(make_member(5, guild, roles=[ADMIN_ROLE_ID]), config)
    assert not is_admin(make_member(6, guild, roles=[SUPPORT_ROLE_ID]), config)
    assert is_bot_owner(make_member(BOT_OWNER, guild), {BOT_OWNER})


def test_can_manage_ticket_by_category() -> None:
    guild = make_guild()
    config = _config()
    support_ticket = make_text_channel(10, guild, category_id=SUPPORT_CATEGORY_ID)
    trade_ticket = make_text_channel(11, guild, category_id=TRADE_CATEGORY_ID)
    elsewhere = make_text_channel(12, guild, category_id=999999999999999999)
    support = make_member(20, guild, roles=[SUPPORT_ROLE_ID])
    trade = make_member(21, guild, roles=[TRADE_ROLE_ID])
    admin = make_member(22, guild, roles=[ADMIN_ROLE_ID])

    assert can_manage_ticket(support, support_ticket, config)
    assert not can_manage_ticket(trade, support_ticket, config)
    assert can_manage_ticket(support, trade_ticket, config)
    assert can_manage_ticket(trade, trade_ticket, config)
    assert not can_manage_ticket(support, elsewhere, config)
    assert can_manage_ticket(admin, elsewhere, config)
