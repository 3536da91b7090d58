from __future__ import annotations

from collections.abc import Collection

import discord

from database.models import GuildConfig


def _role_ids(member: discord.Member) -> set[int]:
    return {role.id for role in getattr(member, "roles", [])}


def is_bot_owner(user: discord.abc.User, owner_ids: Collection[int] = ()) -> bool:
    return user.id in owner_ids


def is_admin(member: discord.Member, config: GuildConfig, owner_ids: Collection[int] = ()) -> bool:
    guild = getattr(member, "guild", None)
    if guild is not None and guild.owner_id == member.id:
        return True
    if is_bot_owner(member, owner_ids):
        return True
    return bool(_role_ids(member) & set(config.admin_roles))


def is_support_staff(member: discord.Member, config: GuildConfig) -> bool:
    return bool(_role_ids(member) & set(config.support_roles))


def is_trade_staff(member: discord.Member, config: GuildConfig) -> bool:
    return bool(_role_ids(member) & set(config.trade_roles))


def can_manage_ticket(
    member: discord.Member,
    channel: discord.abc.GuildChannel,
    config: GuildConfig,
    owner_ids: Collection[int] = (),
) -> bool:
    """Who may claim or close a ticket, decided by the channel's category."""
    if is_admin(member, config, owner_ids):
        return True
    parent_id = getattr(channel, "category_id", None)
    if parent_id is None:
        return False
    if parent_id == config.support_category_id:
        return is_support_staff(member, config)
    if parent_id == config.trade_category_id:
        return is_support_staff(member, config) or is_trade_staff(member, config)
    return False
