from __future__ import annotations

import logging

import discord
from discord.ext import commands

from core.bot import TicketBot
from core.errors import BotError
from utils.embeds import error_embed, make_embed, success_embed
from views.rating import RATING_PREFIX, disabled_copy, parse_rating_custom_id

LOGGER = logging.getLogger(__name__)

LEADERBOARD_SIZE = 10


class RatingsCog(commands.Cog):
    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot

    @commands.hybrid_command(name="toptrade", description="Show the best-rated trade helpers.")
    async def toptrade(self, ctx: commands.Context[TicketBot]) -> None:
        entries = self.bot.rating_service.leaderboard(LEADERBOARD_SIZE)
        if not entries:
            await ctx.reply(embed=make_embed("Top Trade Helpers", "No ratings yet."), mention_author=False)
            return
        lines = []
        for position, entry in enumerate(entries, start=1):
            user = self.bot.get_user(entry.staff_id)
            name = user.mention if user else f"<@{entry.staff_id}>"
            lines.append(f"**{position}.** {name} {entry.avg:.2f}/5 ({entry.count} rating{'s' if entry.count != 1 else ''})")
        service = self.bot.rating_service.service_bucket()
        footer = f"Service average {service.avg:.2f}/5 from {service.count} rating(s)" if service.count else None
        await ctx.reply(embed=make_embed("Top Trade Helpers", "\n".join(lines), footer=footer), mention_author=False)

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction) -> None:
        """Handle rating buttons, which carry everything they need in the custom id."""
        if interaction.type is not discord.InteractionType.component:
            return
        custom_id = (interaction.data or {}).get("custom_id", "")
        if not isinstance(custom_id, str) or not custom_id.startswith(f"{RATING_PREFIX}:"):
            return

        choice = parse_rating_custom_id(custom_id)
        if choice is None:
            await interaction.response.send_message(embed=error_embed("This rating button is invalid."), ephemeral=True)
            return

        try:
            await self.bot.rating_service.rate(
                choice.ticket_id, interaction.user.id, choice.kind, choice.score, choice.staff_id
            )
        except BotError as error:
            await interaction.response.send_message(embed=error_embed(error.user_message), ephemeral=True)
            return

        label = "helper" if choice.kind == "trade" else "service"
        thanks = success_embed(f"Thanks! You rated the {label} {choice.score}/5.")
        try:
            if interaction.message is not None:
                await interaction.response.edit_message(view=disabled_copy(interaction.message, choice.kind))
                await interaction.followup.send(embed=thanks)
            else:
                await interaction.response.send_message(embed=thanks)
        except discord.HTTPException:
            LOGGER.warning("Could not acknowledge rating for ticket %s", choice.ticket_id, exc_info=True)


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(RatingsCog(bot))
