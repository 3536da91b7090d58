from __future__ import annotations

import logging
from typing import Any, Literal

import discord
from discord.ext import commands

from core.bot import TicketBot
from database.models import PremiumState
from utils.decorators import bot_owner_only, guild_admin_only
from utils.embeds import make_embed, success_embed
from utils.time import humanize_duration

LOGGER = logging.getLogger(__name__)

MAX_KEYS_LISTED = 20


def _timestamp(value: Any) -> str:
    return discord.utils.format_dt(value, "f") if value else "never"


def _status_embed(state: PremiumState) -> discord.Embed:
    if not state.is_premium:
        return make_embed(
            "Premium",
            "This server does not have premium. Redeem a key with `/premium redeem <key>`.",
        )
    features = state.features
    ping_lines = []
    for ticket_type, ping in features.pings.items():
        targets = [f"<@&{role_id}>" for role_id in ping.roles]
        if ping.here:
            targets.append("@here")
        if ping.everyone:
            targets.append("@everyone")
        ping_lines.append(f"{ticket_type}: {' '.join(targets) or '@here'}")

    embed = make_embed("Premium", f"Plan: **{state.plan or 'premium'}**", branding=state.branding)
    embed.add_field(name="Activated", value=_timestamp(state.activated_at), inline=True)
    embed.add_field(name="Expires", value=_timestamp(state.expires_at) if state.expires_at else "lifetime", inline=True)
    embed.add_field(name="Channel template", value=f"`{features.ticket_name_template}`", inline=False)
    embed.add_field(name="Welcome message", value=features.welcome_message or "not set", inline=False)
    embed.add_field(name="Pings", value="\n".join(ping_lines), inline=False)
    embed.add_field(
        name="Transcripts",
        value=(
            f"on ({f'<#{features.transcript_channel_id}>' if features.transcript_channel_id else 'log channel'})"
            if features.transcripts_enabled
            else "off"
        ),
        inline=True,
    )
    embed.add_field(
        name="Auto-close",
        value=f"{features.auto_close_minutes} min" if features.auto_close_minutes else "off",
        inline=True,
    )
    embed.add_field(name="Claim auto-tag", value="on" if features.claim_auto_tag else "off", inline=True)
    embed.add_field(name="Close reasons", value=", ".join(features.close_reasons) or "none", inline=False)
    return embed


class PremiumCog(commands.Cog):
    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot

    async def _update(self, ctx: commands.Context[TicketBot], features: dict[str, Any], message: str) -> None:
        assert ctx.guild is not None
        await self.bot.premium_service.update_features(ctx.guild.id, features)
        await ctx.reply(embed=success_embed(message), ephemeral=True, mention_author=False)

    @commands.hybrid_group(name="premium", with_app_command=True, description="Premium status and features.")
    @commands.guild_only()
    async def premium(self, ctx: commands.Context[TicketBot]) -> None:
        if ctx.invoked_subcommand is None:
            await self.status(ctx)

    @premium.command(name="status", description="Show this server's premium plan and features.")
    async def status(self, ctx: commands.Context[TicketBot]) -> None:
        assert ctx.guild is not None
        state = await self.bot.premium_service.get_state(ctx.guild.id)
        await ctx.reply(embed=_status_embed(state), ephemeral=True, mention_author=False)

    @premium.command(name="redeem", description="Activate premium with a license key.")
    @guild_admin_only()
    async def redeem(self, ctx: commands.Context[TicketBot], key: str) -> None:
        assert ctx.guild is not None
        state = await self.bot.premium_service.redeem(ctx.guild.id, key)
        until = _timestamp(state.expires_at) if state.expires_at else "forever"
        await ctx.reply(
            embed=success_embed(f"Premium activated ({state.plan}). Active until {until}."),
            ephemeral=True,
            mention_author=False,
        )

    @premium.command(name="branding", description="Set the bot name, icon and accent color used in embeds.")
    @guild_admin_only()
    async def branding(
        self,
        ctx: commands.Context[TicketBot],
        name: str | None = None,
        icon_url: str | None = None,
        accent: str | None = None,
    ) -> None:
        assert ctx.guild is not None
        state = await self.bot.premium_service.set_branding(ctx.guild.id, name=name, icon_url=icon_url, accent=accent)
        embed = make_embed("Branding updated", "New tickets and panels use this look.", branding=state.branding)
        await ctx.reply(embed=embed, ephemeral=True, mention_author=False)

    @premium.command(name="template", description="Ticket channel name template. Use {user}, {type} and {id}.")
    @guild_admin_only()
    async def template(self, ctx: commands.Context[TicketBot], *, template: str) -> None:
        await self._update(ctx, {"ticketNameTemplate": template}, f"Channel template set to `{template}`.")

    @premium.command(name="welcome", description="Message posted in new tickets. Use {user}, {type} and {server}.")
    @guild_admin_only()
    async def welcome(self, ctx: commands.Context[TicketBot], *, message: str | None = None) -> None:
        await self._update(
            ctx,
            {"welcomeMessage": message or None},
            "Welcome message saved." if message else "Welcome message cleared.",
        )

    @premium.command(name="autoclose", description="Close new tickets after this many minutes (0 turns it off).")
    @guild_admin_only()
    async def autoclose(self, ctx: commands.Context[TicketBot], minutes: commands.Range[int, 0, 1440]) -> None:
        message = f"New tickets auto-close after {minutes} minutes." if minutes else "Auto-close disabled."
        await self._update(ctx, {"autoCloseMinutes": minutes}, message)

    @premium.command(name="transcripts", description="Save transcripts when tickets close.")
    @guild_admin_only()
    async def transcripts(
        self,
        ctx: commands.Context[TicketBot],
        enabled: bool,
        channel: discord.TextChannel | None = None,
    ) -> None:
        features: dict[str, Any] = {"transcriptsEnabled": enabled}
        if channel is not None:
            features["transcriptChannelId"] = str(channel.id)
        target = channel.mention if channel else "the configured destination"
        await self._update(ctx, features, f"Transcripts enabled, posted to {target}." if enabled else "Transcripts disabled.")

    @premium.command(name="reasons", description="Preset close reasons, separated by commas. Empty clears them.")
    @guild_admin_only()
    async def reasons(self, ctx: commands.Context[TicketBot], *, reasons: str | None = None) -> None:
        values = [reason.strip() for reason in (reasons or "").split(",") if reason.strip()]
        message = f"{len(values[:25])} close reason(s) saved." if values else "Close reasons cleared."
        await self._update(ctx, {"closeReasons": values}, message)

    @premium.command(name="autotag", description="Rename tickets with a claimed- prefix when claimed.")
    @guild_admin_only()
    async def autotag(self, ctx: commands.Context[TicketBot], enabled: bool) -> None:
        await self._update(ctx, {"claimAutoTag": enabled}, f"Claim auto-tag {'enabled' if enabled else 'disabled'}.")

    @premium.command(name="ping", description="Choose who gets pinged when a ticket opens.")
    @guild_admin_only()
    async def ping(
        self,
        ctx: commands.Context[TicketBot],
        ticket_type: Literal["support", "trade"],
        role: discord.Role | None = None,
        here: bool = True,
        everyone: bool = False,
    ) -> None:
        ping = {"roles": [str(role.id)] if role else [], "here": here, "everyone": everyone}
        await self._update(ctx, {"pings": {ticket_type: ping}}, f"{ticket_type.capitalize()} ping updated.")

    @premium.command(name="priority", description="Open new tickets at the top of their category, marked as priority.")
    @guild_admin_only()
    async def priority(self, ctx: commands.Context[TicketBot], enabled: bool) -> None:
        await self._update(ctx, {"priority": enabled}, f"Priority {'enabled' if enabled else 'disabled'}.")

    @commands.hybrid_group(name="license", with_app_command=True, description="License key tools (bot owner).")
    @bot_owner_only()
    async def license(self, ctx: commands.Context[TicketBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed(
                    "License Commands",
                    "`/license genkey <duration> [count] [plan]`\n"
                    "`/license keys [used]`\n"
                    "`/license deletekey <key>`\n"
                    "`/license revoke <guild_id>`",
                ),
                mention_author=False,
            )

    @license.command(name="genkey", description="Generate premium keys, e.g. 30d, 2w, 1y or 2d12h.")
    async def genkey(
        self,
        ctx: commands.Context[TicketBot],
        duration: str,
        count: commands.Range[int, 1, 25] = 1,
        plan: str | None = None,
    ) -> None:
        keys = await self.bot.license_service.generate(plan, duration, count, created_by=ctx.author.id)
        lines = "\n".join(f"`{record.key}`" for record in keys)
        length = humanize_duration(keys[0].duration_ms or 0)
        embed = make_embed("Keys generated", f"Plan **{keys[0].plan}**, {length} each.\n{lines}")
        await ctx.reply(embed=embed, ephemeral=True, mention_author=False)

    @license.command(name="keys", description="List license keys.")
    async def keys(self, ctx: commands.Context[TicketBot], used: bool | None = None) -> None:
        records = self.bot.license_service.list_keys(used)
        lines = []
        for record in records[-MAX_KEYS_LISTED:]:
            status = f"used by `{record.used_by_guild_id}`" if record.used else "unused"
            lines.append(f"`{record.key}` {record.plan} ({status})")
        description = "\n".join(lines) or "No keys found."
        if len(records) > MAX_KEYS_LISTED:
            description += f"\n...and {len(records) - MAX_KEYS_LISTED} older key(s)."
        await ctx.reply(embed=make_embed("License keys", description), ephemeral=True, mention_author=False)

    @license.command(name="deletekey", description="Delete an unused license key.")
    async def deletekey(self, ctx: commands.Context[TicketBot], key: str) -> None:
        removed = await self.bot.license_service.delete_key(key)
        message = "Key deleted." if removed else "No such key."
        await ctx.reply(embed=success_embed(message), ephemeral=True, mention_author=False)

    @license.command(name="revoke", description="Remove premium from a server.")
    async def revoke(self, ctx: commands.Context[TicketBot], guild_id: str) -> None:
        if not guild_id.isdigit():
            await ctx.reply(embed=make_embed("Revoke", "Guild id must be numeric."), ephemeral=True, mention_author=False)
            return
        await self.bot.premium_service.revoke(int(guild_id))
        LOGGER.info("Premium revoked by %s", ctx.author.id, extra={"guild_id": int(guild_id)})
        await ctx.reply(embed=success_embed(f"Premium revoked for `{guild_id}`."), ephemeral=True, mention_author=False)


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(PremiumCog(bot))
