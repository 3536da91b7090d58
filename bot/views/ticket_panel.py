from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord

from core.errors import run_operation
from utils.embeds import error_embed, result_embed

if TYPE_CHECKING:
    from core.bot import TicketBot

LOGGER = logging.getLogger(__name__)

PANEL_OPTIONS = {
    "support": ("Support", "Get help from our staff", "Open a support ticket..."),
    "trade": ("Trade Help", "Request trade assistance for safe trading", "Request trade help..."),
}


class TicketModal(discord.ui.Modal):
    other_party = discord.ui.TextInput(
        label="Username of the other party",
        placeholder="Their Discord username, or - if none",
        required=True,
        max_length=100,
    )
    details = discord.ui.TextInput(
        label="Details",
        style=discord.TextStyle.long,
        required=True,
        max_length=1000,
    )

    def __init__(self, bot: TicketBot, ticket_type: str) -> None:
        super().__init__(title="Support Ticket" if ticket_type == "support" else "Trade Ticket", timeout=600)
        self.bot = bot
        self.ticket_type = ticket_type
        self.details.label = "Describe your issue" if ticket_type == "support" else "Describe the trade"

    async def on_submit(self, interaction: discord.Interaction) -> None:
        if not interaction.guild or not isinstance(interaction.user, discord.Member):
            await interaction.response.send_message(embed=error_embed("Guild context is required."), ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await run_operation(
            self.bot.ticket_service.create_ticket(
                interaction.guild,
                interaction.user,
                self.ticket_type,
                str(self.other_party).strip(),
                str(self.details).strip(),
            )
        )
        if result.ok:
            result.message = f"Your {self.ticket_type} ticket has been created: {result.data.mention}"

        # Re-render the panel so the same option can be picked again.
        if interaction.message is not None:
            try:
                await interaction.message.edit(view=TicketPanelView(self.bot, self.ticket_type))
            except discord.HTTPException:
                LOGGER.debug("Could not reset panel menu", exc_info=True)
        await interaction.followup.send(embed=result_embed(result), ephemeral=True)


class TicketTypeSelect(discord.ui.Select["TicketPanelView"]):
    def __init__(self, bot: TicketBot, ticket_type: str) -> None:
        label, description, placeholder = PANEL_OPTIONS[ticket_type]
        super().__init__(
            placeholder=placeholder,
            options=[discord.SelectOption(label=label, value=ticket_type, description=description)],
            min_values=1,
            max_values=1,
            custom_id=f"ticket:open:{ticket_type}",
        )
        self.bot = bot
        self.ticket_type = ticket_type

    async def callback(self, interaction: discord.Interaction) -> None:
        if not interaction.guild or not isinstance(interaction.user, discord.Member):
            await interaction.response.send_message(embed=error_embed("Guild context is required."), ephemeral=True)
            return
        config = self.bot.config_service.get_config(interaction.guild.id)
        if not config.is_enabled(self.ticket_type):
            await interaction.response.send_message(
                embed=error_embed("This ticket type is currently disabled in this server."), ephemeral=True
            )
            return
        await interaction.response.send_modal(TicketModal(self.bot, self.ticket_type))


class TicketPanelView(discord.ui.View):
    """Persistent panel; one instance per ticket type is registered at startup."""

    def __init__(self, bot: TicketBot, ticket_type: str) -> None:
        super().__init__(timeout=None)
        self.bot = bot
        self.add_item(TicketTypeSelect(bot, ticket_type))
