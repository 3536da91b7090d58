from __future__ import annotations

from typing import Literal

from discord.ext import commands

from core.bot import TicketBot
from core.extensions import reload_extensions
from utils.decorators import bot_owner_only, guild_admin_only, guild_owner_only
from utils.embeds import make_embed, setup_embed, success_embed
from views.setup_wizard import SetupWizardView

TOGGLE_FIELDS = {"support": "supportEnabled", "trade": "tradeEnabled", "logs": "logsEnabled"}


class AdminCog(commands.Cog):
    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot

    @commands.hybrid_command(name="setup", description="Configure ticket categories, log channel and roles.")
    @commands.guild_only()
    @guild_owner_only()
    async def setup_command(self, ctx: commands.Context[TicketBot]) -> None:
        assert ctx.guild is not None
        view = SetupWizardView(self.bot, ctx.guild.id, ctx.author.id)
        await ctx.reply(embed=view.render(), view=view, ephemeral=True, mention_author=False)

    @commands.hybrid_group(name="config", with_app_command=True, description="Server ticket configuration.")
    @commands.guild_only()
    @guild_admin_only()
    async def config(self, ctx: commands.Context[TicketBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed(
                    "Config Commands",
                    "`/config show`\n"
                    "`/config toggle <support|trade|logs> <on>`\n"
                    "`/config paneltext <support|trade> [text]` (premium)",
                ),
                mention_author=False,
            )

    @config.command(name="show", description="Show this server's ticket configuration.")
    async def config_show(self, ctx: commands.Context[TicketBot]) -> None:
        assert ctx.guild is not None
        config = self.bot.config_service.get_config(ctx.guild.id)
        embed = setup_embed(config, self.bot.config_service.missing_setup(ctx.guild.id))
        await ctx.reply(embed=embed, ephemeral=True, mention_author=False)

    @config.command(name="toggle", description="Turn support tickets, trade tickets or logging on or off.")
    async def config_toggle(
        self,
        ctx: commands.Context[TicketBot],
        feature: Literal["support", "trade", "logs"],
        enabled: bool,
    ) -> None:
        assert ctx.guild is not None
        await self.bot.config_service.save_config(ctx.guild.id, {TOGGLE_FIELDS[feature]: enabled})
        state = "enabled" if enabled else "disabled"
        await ctx.reply(embed=success_embed(f"{feature.capitalize()} {state}."), ephemeral=True, mention_author=False)

    @config.command(name="paneltext", description="Override a panel's description (premium). Leave empty to reset.")
    async def config_panel_text(
        self,
        ctx: commands.Context[TicketBot],
        ticket_type: Literal["support", "trade"],
        *,
        text: str | None = None,
    ) -> None:
        assert ctx.guild is not None
        key = "supportDescription" if ticket_type == "support" else "tradeDescription"
        await self.bot.config_service.save_config(ctx.guild.id, {"panelText": {key: text or ""}})
        message = "Panel text reset to default." if not text else "Panel text saved. Re-post the panel to show it."
        await ctx.reply(embed=success_embed(message), ephemeral=True, mention_author=False)

    @commands.hybrid_command(name="reload", description="Reload all enabled extensions.")
    @bot_owner_only()
    async def reload(self, ctx: commands.Context[TicketBot]) -> None:
        extensions = self.bot.config.enabled_extensions
        reloaded = await reload_extensions(self.bot, extensions)
        message = f"Reloaded {len(reloaded)}/{len(extensions)} extensions."
        await ctx.reply(embed=success_embed(message), ephemeral=True, mention_author=False)


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(AdminCog(bot))
