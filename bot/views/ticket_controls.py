from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord

from core.errors import BotError, run_operation
from database.models import PremiumState
from utils.embeds import error_embed, result_embed

if TYPE_CHECKING:
    from core.bot import TicketBot

LOGGER = logging.getLogger(__name__)

CLOSE_REASON_SELECT_ID = "ticket:close_select"


async def _close_with_reason(bot: TicketBot, interaction: discord.Interaction, reason: str | None) -> None:
    if not isinstance(interaction.user, discord.Member):
        await interaction.response.send_message(embed=error_embed("Guild context is required."), ephemeral=True)
        return
    await interaction.response.defer(ephemeral=True, thinking=True)
    result = await run_operation(
        bot.ticket_service.close_ticket(interaction.channel, interaction.user, reason),  # type: ignore[arg-type]
        message="Closing ticket...",
    )
    await interaction.followup.send(embed=result_embed(result), ephemeral=True)


class CloseReasonModal(discord.ui.Modal, title="Close Ticket With Reason"):
    reason = discord.ui.TextInput(
        label="Reason",
        placeholder="Why is this ticket being closed?",
        style=discord.TextStyle.long,
        max_length=500,
        required=True,
    )

    def __init__(self, bot: TicketBot) -> None:
        super().__init__(timeout=300)
        self.bot = bot

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await _close_with_reason(self.bot, interaction, str(self.reason).strip())


class CloseReasonSelect(discord.ui.Select["TicketControlsView"]):
    def __init__(self, bot: TicketBot, reasons: list[str]) -> None:
        super().__init__(
            placeholder="Close with a preset reason...",
            options=[discord.SelectOption(label=reason[:100], value=reason[:100]) for reason in reasons[:25]],
            min_values=1,
            max_values=1,
            custom_id=CLOSE_REASON_SELECT_ID,
        )
        self.bot = bot

    async def callback(self, interaction: discord.Interaction) -> None:
        await _close_with_reason(self.bot, interaction, self.values[0])


class TicketControlsView(discord.ui.View):
    """Claim/unclaim/close buttons posted in every ticket.

    The view is persistent: the custom ids are fixed and one instance is
    registered on startup, so buttons in old tickets keep working after a
    restart. Premium guilds with preset close reasons also get a select menu.
    """

    def __init__(self, bot: TicketBot, close_reasons: list[str] | None = None) -> None:
        super().__init__(timeout=None)
        self.bot = bot
        if close_reasons:
            self.add_item(CloseReasonSelect(bot, close_reasons))

    @classmethod
    def for_state(cls, bot: TicketBot, premium: PremiumState) -> TicketControlsView:
        reasons = premium.features.close_reasons if premium.is_premium else []
        return cls(bot, reasons)

    @classmethod
    def for_registration(cls, bot: TicketBot) -> TicketControlsView:
        # Select options are not matched on dispatch; one placeholder registers the custom id.
        return cls(bot, ["Resolved"])

    async def _member(self, interaction: discord.Interaction) -> discord.Member | None:
        if interaction.guild and isinstance(interaction.user, discord.Member):
            return interaction.user
        await interaction.response.send_message(embed=error_embed("Guild context is required."), ephemeral=True)
        return None

    @discord.ui.button(label="Claim", style=discord.ButtonStyle.primary, emoji="🎯", custom_id="ticket:claim")
    async def claim_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        member = await self._member(interaction)
        if member is None:
            return
        result = await run_operation(
            self.bot.ticket_service.claim_ticket(interaction.channel, member),  # type: ignore[arg-type]
            message="You claimed this ticket.",
        )
        await interaction.response.send_message(embed=result_embed(result), ephemeral=True)

    @discord.ui.button(label="Unclaim", style=discord.ButtonStyle.secondary, emoji="📤", custom_id="ticket:unclaim")
    async def unclaim_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        member = await self._member(interaction)
        if member is None:
            return
        result = await run_operation(
            self.bot.ticket_service.unclaim_ticket(interaction.channel, member),  # type: ignore[arg-type]
            message="Ticket unclaimed.",
        )
        await interaction.response.send_message(embed=result_embed(result), ephemeral=True)

    @discord.ui.button(label="Close", style=discord.ButtonStyle.danger, emoji="❌", custom_id="ticket:close")
    async def close_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        await _close_with_reason(self.bot, interaction, None)

    @discord.ui.button(
        label="Close with Reason",
        style=discord.ButtonStyle.secondary,
        emoji="📝",
        custom_id="ticket:close_reason",
    )
    async def close_reason_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        member = await self._member(interaction)
        if member is None:
            return
        if not self.bot.ticket_service.can_manage(interaction.channel, member):
            await interaction.response.send_message(
                embed=error_embed("Only authorized staff can close this ticket."), ephemeral=True
            )
            return
        await interaction.response.send_modal(CloseReasonModal(self.bot))

    async def on_error(
        self, interaction: discord.Interaction, error: Exception, item: discord.ui.Item[discord.ui.View]
    ) -> None:
        message = error.user_message if isinstance(error, BotError) else "Action failed due to an unexpected error."
        if not isinstance(error, BotError):
            LOGGER.exception("Ticket control %s failed", getattr(item, "custom_id", item), exc_info=error)
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=error_embed(message), ephemeral=True)
            else:
                await interaction.response.send_message(embed=error_embed(message), ephemeral=True)
        except discord.HTTPException:
            LOGGER.debug("Could not deliver control error", exc_info=True)
