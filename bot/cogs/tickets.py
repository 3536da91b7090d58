from __future__ import annotations

import logging
from typing import Literal

import discord
from discord.ext import commands

from core.bot import TicketBot
from core.errors import TicketNotFound, ValidationError
from utils.decorators import guild_admin_only
from utils.embeds import make_embed, panel_embed, success_embed
from views.ticket_controls import TicketControlsView
from views.ticket_panel import TicketPanelView

LOGGER = logging.getLogger(__name__)


class TicketsCog(commands.Cog):
    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.bot.add_view(TicketControlsView.for_registration(self.bot))
        for ticket_type in ("support", "trade"):
            self.bot.add_view(TicketPanelView(self.bot, ticket_type))

    def _context(self, ctx: commands.Context[TicketBot]) -> tuple[discord.TextChannel, discord.Member]:
        if not ctx.guild or not isinstance(ctx.author, discord.Member):
            raise ValidationError("Guild context is required.")
        if not isinstance(ctx.channel, discord.TextChannel) or not self.bot.ticket_service.is_ticket_channel(ctx.channel):
            raise TicketNotFound()
        return ctx.channel, ctx.author

    @commands.hybrid_command(name="claim", description="Claim the current ticket.")
    @commands.guild_only()
    async def claim(self, ctx: commands.Context[TicketBot]) -> None:
        channel, member = self._context(ctx)
        await self.bot.ticket_service.claim_ticket(channel, member)
        await ctx.reply(embed=success_embed("You claimed this ticket."), ephemeral=True, mention_author=False)

    @commands.hybrid_command(name="unclaim", description="Release the current ticket.")
    @commands.guild_only()
    async def unclaim(self, ctx: commands.Context[TicketBot]) -> None:
        channel, member = self._context(ctx)
        await self.bot.ticket_service.unclaim_ticket(channel, member)
        await ctx.reply(embed=success_embed("Ticket unclaimed."), ephemeral=True, mention_author=False)

    @commands.hybrid_command(name="close", description="Close the current ticket (staff only).")
    @commands.guild_only()
    async def close(self, ctx: commands.Context[TicketBot], *, reason: str | None = None) -> None:
        channel, member = self._context(ctx)
        await ctx.defer(ephemeral=True)
        await self.bot.ticket_service.close_ticket(channel, member, reason)
        await ctx.send(embed=success_embed("Closing ticket..."), ephemeral=True)

    @commands.hybrid_command(name="add", description="Add a user to the current ticket.")
    @commands.guild_only()
    async def add(self, ctx: commands.Context[TicketBot], user: discord.Member) -> None:
        channel, member = self._context(ctx)
        await self.bot.ticket_service.add_member(channel, member, user)
        await ctx.reply(embed=success_embed(f"Added {user.mention} to this ticket."), ephemeral=True, mention_author=False)

    @commands.hybrid_command(name="panel", description="Post the support or trade ticket panel here.")
    @commands.guild_only()
    @guild_admin_only()
    async def panel(self, ctx: commands.Context[TicketBot], ticket_type: Literal["support", "trade"]) -> None:
        assert ctx.guild is not None
        config = self.bot.config_service.get_config(ctx.guild.id)
        premium = await self.bot.premium_service.get_state(ctx.guild.id)
        embed = panel_embed(ticket_type, config, premium.branding if premium.is_premium else None)
        await ctx.channel.send(embed=embed, view=TicketPanelView(self.bot, ticket_type))
        if ctx.interaction is not None:
            await ctx.reply(embed=success_embed(f"{ticket_type.capitalize()} panel posted."), ephemeral=True)
        missing = self.bot.config_service.missing_setup(ctx.guild.id)
        if missing:
            LOGGER.info("Panel posted before setup finished: %s", missing, extra={"guild_id": ctx.guild.id})

    @commands.hybrid_command(name="help", description="Show what this bot can do.")
    async def help(self, ctx: commands.Context[TicketBot]) -> None:
        embed = make_embed(
            "Help Center",
            "**Tickets**\n"
            "Pick Support or Trade Help from a panel, fill in the form, and a private channel opens.\n"
            "`/claim`, `/unclaim`, `/close [reason]` and `/add <user>` work inside a ticket.\n\n"
            "**Ratings**\n"
            "After a ticket closes you may be asked to rate the helper and our service.\n"
            "`/toptrade` shows the best-rated trade helpers.\n\n"
            "**Server setup**\n"
            "`/setup`, `/config show`, `/panel <type>` and `/premium status` for server admins.",
        )
        await ctx.reply(embed=embed, ephemeral=True, mention_author=False)


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(TicketsCog(bot))
