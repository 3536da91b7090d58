from __future__ import annotations

import logging

import discord
from discord.ext import commands

from core.bot import TicketBot

LOGGER = logging.getLogger(__name__)


class EventsCog(commands.Cog):
    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        missing = self.bot.config_service.missing_setup(guild.id)
        LOGGER.info("Joined guild %s (%s); unset: %s", guild.name, guild.id, missing, extra={"guild_id": guild.id})

    @commands.Cog.listener()
    async def on_guild_remove(self, guild: discord.Guild) -> None:
        # Stored configuration and premium are kept in case the bot is re-invited.
        LOGGER.info("Removed from guild %s (%s)", guild.name, guild.id, extra={"guild_id": guild.id})

    @commands.Cog.listener()
    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        # Drops claim state and pending auto-close timers for tickets deleted by hand.
        self.bot.ticket_service.handle_channel_deleted(channel.id)


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(EventsCog(bot))
