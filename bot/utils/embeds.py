from __future__ import annotations

from datetime import UTC, datetime

import discord

from core.errors import OperationResult
from database.models import Branding, GuildConfig

TICKET_COLORS = {
    "support": discord.Color.from_str("#3498db"),
    "trade": discord.Color.from_str("#9b59b6"),
}
TICKET_TITLES = {"support": "Support Ticket", "trade": "Trade Ticket"}
LOG_COLORS = {
    "created": discord.Color.from_str("#2ecc71"),
    "claimed": discord.Color.from_str("#f1c40f"),
    "unclaimed": discord.Color.from_str("#95a5a6"),
    "closed": discord.Color.from_str("#e74c3c"),
}

DEFAULT_SUPPORT_DESCRIPTION = (
    "Thank you for contacting support.\n"
    "Please describe your issue clearly and wait for a staff response.\n\n"
    "Appropriate for:\n"
    "- Server or role issues\n"
    "- Questions about rules or the ticket system\n"
    "- Reporting bugs or problems\n\n"
    "Not for random chatting or trade assistance."
)
DEFAULT_TRADE_DESCRIPTION = (
    "This panel exists strictly for secure trade requests.\n\n"
    "When opening a trade ticket, provide:\n"
    "- Your Discord @ and the other party's Discord @\n"
    "- What you are exchanging or purchasing\n"
    "- The agreed amount or service terms\n"
    "- Proof or a screenshot of the agreement"
)


def apply_branding(embed: discord.Embed, branding: Branding | None) -> discord.Embed:
    if branding is None:
        return embed
    if branding.accent_value is not None:
        embed.color = discord.Color(branding.accent_value)
    if branding.name:
        embed.set_author(name=branding.name, icon_url=branding.icon_url)
    return embed


def make_embed(
    title: str,
    description: str | None = None,
    color: discord.Color | None = None,
    footer: str | None = None,
    branding: Branding | None = None,
) -> discord.Embed:
    resolved_color = color if color is not None else discord.Color.blurple()
    embed = discord.Embed(
        title=title,
        description=description,
        color=resolved_color,
        timestamp=datetime.now(UTC),
    )
    if footer:
        embed.set_footer(text=footer)
    return apply_branding(embed, branding)


def success_embed(message: str) -> discord.Embed:
    return make_embed(title="Success", description=message, color=discord.Color.green())


def error_embed(message: str) -> discord.Embed:
    return make_embed(title="Error", description=message, color=discord.Color.red())


def result_embed(result: OperationResult, success_message: str | None = None) -> discord.Embed:
    if result.ok:
        return success_embed(result.message or success_message or "Done.")
    return error_embed(result.message or "Something went wrong.")


def panel_embed(ticket_type: str, config: GuildConfig, branding: Branding | None = None) -> discord.Embed:
    if ticket_type == "support":
        title = "Support Panel"
        description = config.panel_text.support_description or DEFAULT_SUPPORT_DESCRIPTION
    else:
        title = "Request Trade Help"
        description = config.panel_text.trade_description or DEFAULT_TRADE_DESCRIPTION
    footer = f"{branding.name} | Tickets" if branding and branding.name else None
    return make_embed(title, description, color=TICKET_COLORS[ticket_type], footer=footer, branding=branding)


def ticket_embed(
    ticket_type: str,
    opener: discord.abc.User,
    other_party: str,
    details: str,
    branding: Branding | None = None,
    priority: bool = False,
) -> discord.Embed:
    title = TICKET_TITLES[ticket_type]
    footer = "A staff member will claim this ticket shortly."
    if priority:
        title = f"{title} (Priority)"
        footer = "Priority ticket: staff will answer this one first."
    embed = make_embed(title, color=TICKET_COLORS[ticket_type], footer=footer, branding=branding)
    embed.add_field(name="Opened by", value=f"{opener.mention} ({opener})", inline=True)
    embed.add_field(name="Other party", value=other_party[:1024] or "-", inline=True)
    embed.add_field(name="Issue" if ticket_type == "support" else "Trade", value=details[:1024] or "-", inline=False)
    return embed


def log_embed(
    event: str,
    channel: discord.abc.GuildChannel,
    actor: discord.abc.User,
    fields: dict[str, str] | None = None,
) -> discord.Embed:
    embed = make_embed(f"Ticket {event.capitalize()}", color=LOG_COLORS.get(event, discord.Color.blurple()))
    embed.add_field(name="Channel", value=f"{channel.name} ({channel.id})", inline=True)
    embed.add_field(name="By", value=f"{actor} ({actor.id})", inline=True)
    for name, value in (fields or {}).items():
        embed.add_field(name=name, value=value[:1024] or "-", inline=len(value) < 40)
    return embed


def close_summary_embed(
    closer: discord.abc.User,
    claimer_id: int | None,
    reason: str | None,
    branding: Branding | None = None,
) -> discord.Embed:
    lines = [
        f"- Claimed by: {f'<@{claimer_id}>' if claimer_id else 'Not claimed'}",
        f"- Closed by: **{closer}**",
        f"- Time: {discord.utils.format_dt(datetime.now(UTC), 'F')}",
    ]
    if reason:
        lines.append(f"- Reason: {reason}")
    title = "Ticket Closed (With Reason)" if reason else "Ticket Closed"
    return make_embed(title, "Summary:\n" + "\n".join(lines), color=LOG_COLORS["closed"], branding=branding)


def rating_prompt_embed(claimer_id: int | None) -> discord.Embed:
    if claimer_id:
        description = f"Rate the trade helper <@{claimer_id}> (first row) and our service (second row)."
    else:
        description = "Rate our service."
    description += "\n\nPick the star count you want to give."
    return make_embed("Please rate", description, color=discord.Color.blurple())


def setup_embed(config: GuildConfig, missing: list[str]) -> discord.Embed:
    def channel(value: int | None) -> str:
        return f"<#{value}>" if value else "Not set"

    def roles(values: list[int]) -> str:
        return " ".join(f"<@&{role_id}>" for role_id in values) or "Not set"

    def toggle(value: bool) -> str:
        return "on" if value else "off"

    embed = make_embed(
        "Ticket Bot - Server Setup",
        "This setup is per server and saves automatically.\n"
        "Use the controls below to pick where tickets are created and who can manage them.",
        color=discord.Color.from_str("#3498db"),
        footer="Setup is saved per server",
    )
    embed.add_field(name="Support Category", value=f"{channel(config.support_category_id)} ({toggle(config.support_enabled)})")
    embed.add_field(name="Trade Category", value=f"{channel(config.trade_category_id)} ({toggle(config.trade_enabled)})")
    embed.add_field(name="Log Channel", value=f"{channel(config.log_channel_id)} ({toggle(config.logs_enabled)})")
    embed.add_field(name="Support Roles", value=roles(config.support_roles), inline=False)
    embed.add_field(name="Trade Roles", value=roles(config.trade_roles), inline=False)
    embed.add_field(name="Admin Roles", value=roles(config.admin_roles), inline=False)
    if missing:
        embed.add_field(name="Still missing", value=", ".join(missing), inline=False)
    return embed
