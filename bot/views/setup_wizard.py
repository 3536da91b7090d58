from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import discord

from core.errors import BotError
from utils.embeds import error_embed, setup_embed, success_embed

if TYPE_CHECKING:
    from core.bot import TicketBot

LOGGER = logging.getLogger(__name__)


class _ChannelPick(discord.ui.ChannelSelect["SetupWizardView"]):
    def __init__(self, field: str, enable_field: str, placeholder: str, channel_type: discord.ChannelType, row: int) -> None:
        super().__init__(placeholder=placeholder, channel_types=[channel_type], min_values=1, max_values=1, row=row)
        self.field = field
        self.enable_field = enable_field

    async def callback(self, interaction: discord.Interaction) -> None:
        assert self.view is not None
        # Picking a destination through setup also switches that feature on.
        await self.view.apply(interaction, {self.field: str(self.values[0].id), self.enable_field: True})


class _RolePick(discord.ui.RoleSelect["SetupWizardView"]):
    def __init__(self, field: str, placeholder: str, row: int) -> None:
        super().__init__(placeholder=placeholder, min_values=0, max_values=25, row=row)
        self.field = field

    async def callback(self, interaction: discord.Interaction) -> None:
        assert self.view is not None
        await self.view.apply(interaction, {self.field: [str(role.id) for role in self.values]})


class SetupWizardView(discord.ui.View):
    """Interactive per-guild setup. Only the member who opened it can use it."""

    def __init__(self, bot: TicketBot, guild_id: int, owner_id: int, page: str = "channels") -> None:
        super().__init__(timeout=600)
        self.bot = bot
        self.guild_id = guild_id
        self.owner_id = owner_id
        self.page = page
        self._build()

    def _build(self) -> None:
        for item in list(self.children):
            if not isinstance(item, discord.ui.Button):
                self.remove_item(item)
        if self.page == "channels":
            self.add_item(_ChannelPick("supportCategoryId", "supportEnabled", "Support category", discord.ChannelType.category, 0))
            self.add_item(_ChannelPick("mmCategoryId", "tradeEnabled", "Trade category", discord.ChannelType.category, 1))
            self.add_item(_ChannelPick("logChannelId", "logsEnabled", "Log channel", discord.ChannelType.text, 2))
        else:
            self.add_item(_RolePick("supportRoles", "Support roles", 0))
            self.add_item(_RolePick("mmRoles", "Trade roles", 1))
            self.add_item(_RolePick("adminRoles", "Admin roles", 2))

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id == self.owner_id:
            return True
        await interaction.response.send_message(embed=error_embed("This setup panel belongs to someone else."), ephemeral=True)
        return False

    def render(self) -> discord.Embed:
        config = self.bot.config_service.get_config(self.guild_id)
        return setup_embed(config, self.bot.config_service.missing_setup(self.guild_id))

    async def apply(self, interaction: discord.Interaction, patch: dict[str, Any]) -> None:
        try:
            await self.bot.config_service.save_config(self.guild_id, patch)
        except BotError as error:
            await interaction.response.send_message(embed=error_embed(error.user_message), ephemeral=True)
            return
        await interaction.response.edit_message(embed=self.render(), view=self)

    async def _toggle(self, interaction: discord.Interaction, field: str, attribute: str) -> None:
        current = getattr(self.bot.config_service.get_config(self.guild_id), attribute)
        await self.apply(interaction, {field: not current})

    @discord.ui.button(label="Channels / Roles", style=discord.ButtonStyle.primary, row=3)
    async def switch_page(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        self.page = "roles" if self.page == "channels" else "channels"
        self._build()
        await interaction.response.edit_message(embed=self.render(), view=self)

    @discord.ui.button(label="Toggle Support", style=discord.ButtonStyle.secondary, row=3)
    async def toggle_support(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        await self._toggle(interaction, "supportEnabled", "support_enabled")

    @discord.ui.button(label="Toggle Trade", style=discord.ButtonStyle.secondary, row=3)
    async def toggle_trade(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        await self._toggle(interaction, "tradeEnabled", "trade_enabled")

    @discord.ui.button(label="Toggle Logs", style=discord.ButtonStyle.secondary, row=3)
    async def toggle_logs(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        await self._toggle(interaction, "logsEnabled", "logs_enabled")

    @discord.ui.button(label="Done", style=discord.ButtonStyle.success, row=4)
    async def done(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        missing = self.bot.config_service.missing_setup(self.guild_id)
        await self.bot.config_service.flush()
        self.stop()
        if missing:
            embed = error_embed("Setup saved, but still missing: " + ", ".join(missing))
        else:
            embed = success_embed("Setup saved. Post a panel with `/panel support` or `/panel trade`.")
        await interaction.response.edit_message(embed=embed, view=None)
        LOGGER.info("Setup finished (missing=%s)", missing, extra={"guild_id": self.guild_id})
