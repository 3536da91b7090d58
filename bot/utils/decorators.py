from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

import discord
from discord.ext import commands

from services.permissions import is_admin, is_bot_owner

if TYPE_CHECKING:
    from core.bot import TicketBot

F = TypeVar("F", bound=Callable[..., Any])


def guild_admin_only() -> Callable[[F], F]:
    """Guild owner, configured bot owners, or holders of a configured admin role."""

    async def predicate(ctx: commands.Context[TicketBot]) -> bool:
        if ctx.guild is None or not isinstance(ctx.author, discord.Member):
            return False
        config = ctx.bot.config_service.get_config(ctx.guild.id)
        return is_admin(ctx.author, config, ctx.bot.config.discord.owner_ids)

    return commands.check(predicate)


def guild_owner_only() -> Callable[[F], F]:
    async def predicate(ctx: commands.Context[TicketBot]) -> bool:
        if ctx.guild is None:
            return False
        return ctx.guild.owner_id == ctx.author.id or is_bot_owner(ctx.author, ctx.bot.config.discord.owner_ids)

    return commands.check(predicate)


def bot_owner_only() -> Callable[[F], F]:
    async def predicate(ctx: commands.Context[TicketBot]) -> bool:
        return is_bot_owner(ctx.author, ctx.bot.config.discord.owner_ids)

    return commands.check(predicate)
