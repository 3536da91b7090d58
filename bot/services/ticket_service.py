from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import partial
from typing import Any, TypeVar

import discord

from core.config import TicketsConfig
from core.errors import (
    AlreadyClaimedError,
    FeatureDisabledError,
    NotClaimedError,
    NotConfiguredError,
    PermissionDeniedError,
    TicketCreationError,
    TicketNotFoundError,
    ValidationError,
)
from database.models import (
    MAX_AUTO_CLOSE_MINUTES,
    TICKET_TYPES,
    GuildConfig,
    PremiumFeatures,
    PremiumState,
    TicketState,
)
from services.cache import CacheBackend
from services.config_service import ConfigService
from services.permissions import can_manage_ticket, is_admin
from services.premium_service import PremiumService
from services.transcript_service import TranscriptService
from utils.embeds import close_summary_embed, log_embed, rating_prompt_embed, ticket_embed
from utils.rate_limit import CooldownLimiter
from utils.scheduler import ScheduledTask, Scheduler

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

TICKET_PREFIX = "ticket-"
CLAIMED_PREFIX = "claimed-"
FALLBACK_CHANNEL_NAME = "ticket"
MAX_CHANNEL_NAME = 100

_UNSAFE_NAME_RE = re.compile(r"[^a-z0-9\-_]+")
_DASH_RUN_RE = re.compile(r"-{2,}")

ControlsFactory = Callable[[PremiumState], discord.ui.View]
RatingViewFactory = Callable[[int, int | None], discord.ui.View]
UserFetcher = Callable[[int], Awaitable[discord.User]]


@dataclass(slots=True)
class TicketServiceDeps:
    config_service: ConfigService
    premium_service: PremiumService
    transcript_service: TranscriptService
    scheduler: Scheduler
    cache: CacheBackend
    owner_ids: list[int] = field(default_factory=list)
    controls_factory: ControlsFactory | None = None
    rating_view_factory: RatingViewFactory | None = None
    user_fetcher: UserFetcher | None = None


class TicketService:
    """Ticket lifecycle: open, claim, unclaim, close.

    Claim ownership is kept in memory per channel id (seeded from the channel
    topic the first time a channel is seen) and mirrored back to the topic.
    Checks and updates of that map never straddle an ``await``, so two
    interactions racing for the same ticket cannot both win.
    """

    def __init__(self, config: TicketsConfig, deps: TicketServiceDeps) -> None:
        self.config = config
        self.deps = deps
        self.rate_limiter = CooldownLimiter(deps.cache)
        self._states: dict[int, TicketState] = {}
        self._closing: set[int] = set()
        self._auto_close: dict[int, ScheduledTask] = {}

    # -- classification -------------------------------------------------

    def guild_config(self, guild_id: int) -> GuildConfig:
        return self.deps.config_service.get_config(guild_id)

    def is_ticket_channel(self, channel: Any) -> bool:
        if not isinstance(channel, discord.TextChannel):
            return False
        if channel.id in self._states:
            return True
        config = self.guild_config(channel.guild.id)
        categories = {config.support_category_id, config.trade_category_id} - {None}
        if channel.category_id is not None and channel.category_id in categories:
            return True
        if TicketState.has_marker(channel.topic):
            return True
        return channel.name.startswith((TICKET_PREFIX, CLAIMED_PREFIX))

    def ticket_type_for(self, channel: discord.TextChannel) -> str | None:
        config = self.guild_config(channel.guild.id)
        if channel.category_id is None:
            return None
        if channel.category_id == config.support_category_id:
            return "support"
        if channel.category_id == config.trade_category_id:
            return "trade"
        return None

    def get_state(self, channel: discord.TextChannel) -> TicketState:
        state = self._states.get(channel.id)
        if state is None:
            state = TicketState.parse(channel.topic)
            self._states[channel.id] = state
        return state

    def is_closing(self, channel_id: int) -> bool:
        return channel_id in self._closing

    def can_manage(self, channel: Any, member: discord.Member) -> bool:
        if not self.is_ticket_channel(channel):
            return False
        return can_manage_ticket(member, channel, self.guild_config(channel.guild.id), self.deps.owner_ids)

    def _require_ticket(self, channel: Any) -> discord.TextChannel:
        if not self.is_ticket_channel(channel) or channel.id in self._closing:
            raise TicketNotFoundError()
        return channel

    def _require_manager(self, channel: discord.TextChannel, member: discord.Member) -> GuildConfig:
        config = self.guild_config(channel.guild.id)
        if not can_manage_ticket(member, channel, config, self.deps.owner_ids):
            raise PermissionDeniedError()
        return config

    # -- gateway helpers ------------------------------------------------

    @staticmethod
    async def _safe(action: Awaitable[T], what: str, channel_id: int | None = None) -> T | None:
        try:
            return await action
        except discord.HTTPException:
            LOGGER.warning("Discord call failed: %s", what, exc_info=True, extra={"channel_id": channel_id})
            return None

    @staticmethod
    async def _isolated(action: Awaitable[Any], what: str, channel_id: int | None = None) -> None:
        try:
            await action
        except Exception:
            LOGGER.exception("Close side effect failed: %s", what, extra={"channel_id": channel_id})

    async def _log(self, guild: discord.Guild, config: GuildConfig, embed: discord.Embed) -> None:
        if not config.logs_enabled or config.log_channel_id is None:
            return
        log_channel = guild.get_channel(config.log_channel_id)
        if not isinstance(log_channel, discord.TextChannel):
            LOGGER.info("Log channel %s is missing", config.log_channel_id, extra={"guild_id": guild.id})
            return
        await self._safe(log_channel.send(embed=embed), "send log entry", log_channel.id)

    async def _write_state(self, channel: discord.TextChannel, state: TicketState, name: str | None = None) -> None:
        changes: dict[str, Any] = {"topic": state.serialize()}
        if name is not None and name != channel.name:
            changes["name"] = name
        await self._safe(channel.edit(**changes), "update ticket channel", channel.id)

    # -- creation -------------------------------------------------------

    def build_channel_name(self, template: str, opener: discord.abc.User, ticket_type: str) -> str:
        raw = (
            template.replace("{user}", opener.name)
            .replace("{type}", ticket_type)
            .replace("{id}", str(opener.id))
        )
        name = _UNSAFE_NAME_RE.sub("-", raw.strip().lower())
        name = _DASH_RUN_RE.sub("-", name).strip("-")
        limit = max(1, min(self.config.max_name_length, MAX_CHANNEL_NAME))
        return name[:limit].strip("-") or FALLBACK_CHANNEL_NAME

    @staticmethod
    def _build_overwrites(
        guild: discord.Guild, opener: discord.Member, role_ids: list[int]
    ) -> dict[discord.abc.Snowflake, discord.PermissionOverwrite]:
        allow = dict(view_channel=True, send_messages=True, read_message_history=True)
        overwrites: dict[discord.abc.Snowflake, discord.PermissionOverwrite] = {
            guild.default_role: discord.PermissionOverwrite(view_channel=False),
            opener: discord.PermissionOverwrite(**allow),
        }
        if guild.me is not None:
            overwrites[guild.me] = discord.PermissionOverwrite(**allow, manage_channels=True, manage_messages=True)
        for role_id in role_ids:
            role = guild.get_role(role_id)
            if role is None:
                LOGGER.debug("Skipping unknown role %s", role_id, extra={"guild_id": guild.id})
                continue
            overwrites[role] = discord.PermissionOverwrite(**allow)
        return overwrites

    async def _check_cooldown(self, guild_id: int, user_id: int) -> None:
        window = self.config.creation_cooldown_seconds
        if window <= 0:
            return
        result = await self.rate_limiter.hit(f"ticket:cooldown:{guild_id}:{user_id}", limit=1, window_seconds=window)
        if not result.allowed:
            raise ValidationError(f"You just opened a ticket. Try again in {result.retry_after:.0f} seconds.")

    async def create_ticket(
        self,
        guild: discord.Guild,
        opener: discord.Member,
        ticket_type: str,
        other_party: str,
        details: str,
    ) -> discord.TextChannel:
        if ticket_type not in TICKET_TYPES:
            raise ValidationError(f"Unknown ticket type `{ticket_type}`.")
        config = self.guild_config(guild.id)
        if not config.is_enabled(ticket_type):
            raise FeatureDisabledError()
        category_id = config.category_for(ticket_type)
        category = guild.get_channel(category_id) if category_id is not None else None
        if not isinstance(category, discord.CategoryChannel):
            raise NotConfiguredError()
        await self._check_cooldown(guild.id, opener.id)

        premium = await self.deps.premium_service.get_state(guild.id)
        features = premium.features if premium.is_premium else PremiumFeatures()
        branding = premium.branding if premium.is_premium else None
        state = TicketState(opened_by=opener.id)

        channel_options: dict[str, Any] = {}
        if features.priority:
            # Priority tickets sit at the top of the category.
            channel_options["position"] = 0
        try:
            channel = await guild.create_text_channel(
                name=self.build_channel_name(features.ticket_name_template, opener, ticket_type),
                category=category,
                overwrites=self._build_overwrites(guild, opener, config.staff_roles_for(ticket_type)),
                topic=state.serialize(),
                reason=f"{ticket_type} ticket opened by {opener} ({opener.id})",
                **channel_options,
            )
        except discord.HTTPException as exc:
            LOGGER.warning("Ticket channel creation failed: %s", exc, extra={"guild_id": guild.id, "user_id": opener.id})
            raise TicketCreationError() from exc
        self._states[channel.id] = state

        mention = await self.deps.premium_service.compute_ping_mention(guild.id, ticket_type)
        await self._safe(
            channel.send(mention, allowed_mentions=discord.AllowedMentions(everyone=True, roles=True)),
            "send ticket ping",
            channel.id,
        )
        message: dict[str, Any] = {
            "embed": ticket_embed(ticket_type, opener, other_party, details, branding, priority=features.priority)
        }
        if self.deps.controls_factory is not None:
            message["view"] = self.deps.controls_factory(premium)
        await self._safe(channel.send(**message), "send ticket embed", channel.id)

        if features.welcome_message:
            welcome = (
                features.welcome_message.replace("{user}", opener.mention)
                .replace("{type}", ticket_type)
                .replace("{server}", guild.name)
            )
            await self._safe(channel.send(welcome), "send welcome message", channel.id)

        await self._log(
            guild,
            config,
            log_embed(
                "created",
                channel,
                opener,
                {"Type": ticket_type.capitalize(), "Other party / Details": f"{other_party} - {details}"},
            ),
        )
        if premium.is_premium and features.auto_close_minutes > 0:
            self._schedule_auto_close(guild, channel.id, features.auto_close_minutes)

        LOGGER.info(
            "Opened %s ticket %s", ticket_type, channel.name,
            extra={"guild_id": guild.id, "channel_id": channel.id, "user_id": opener.id},
        )
        return channel

    # -- auto-close -----------------------------------------------------

    def _schedule_auto_close(self, guild: discord.Guild, channel_id: int, minutes: int) -> None:
        minutes = max(1, min(MAX_AUTO_CLOSE_MINUTES, minutes))
        self._cancel_auto_close(channel_id)
        self._auto_close[channel_id] = self.deps.scheduler.schedule(
            minutes * 60,
            partial(self._run_auto_close, guild, channel_id, minutes),
            name=f"auto-close:{channel_id}",
        )

    def _cancel_auto_close(self, channel_id: int) -> None:
        task = self._auto_close.pop(channel_id, None)
        if task is not None:
            task.cancel()

    async def _run_auto_close(self, guild: discord.Guild, channel_id: int, minutes: int) -> None:
        self._auto_close.pop(channel_id, None)
        channel = guild.get_channel(channel_id)
        if not isinstance(channel, discord.TextChannel) or guild.me is None:
            LOGGER.info("Auto-close skipped; channel is gone", extra={"guild_id": guild.id, "channel_id": channel_id})
            self._forget(channel_id)
            return
        await self._close(channel, guild.me, f"Automatically closed after {minutes} minutes")

    # -- claim ----------------------------------------------------------

    async def claim_ticket(self, channel: discord.TextChannel, member: discord.Member) -> TicketState:
        channel = self._require_ticket(channel)
        config = self._require_manager(channel, member)
        state = self.get_state(channel)
        if state.claimed_by is not None:
            raise AlreadyClaimedError()
        state = state.with_claimer(member.id)
        self._states[channel.id] = state

        premium = await self.deps.premium_service.get_state(channel.guild.id)
        new_name = None
        if premium.is_premium and premium.features.claim_auto_tag and not channel.name.startswith(CLAIMED_PREFIX):
            new_name = f"{CLAIMED_PREFIX}{channel.name}"[:MAX_CHANNEL_NAME]
        await self._write_state(channel, state, new_name)
        await self._safe(channel.send(f"Ticket claimed by {member.mention}"), "send claim notice", channel.id)
        await self._log(channel.guild, config, log_embed("claimed", channel, member))
        LOGGER.info("Ticket claimed", extra={"guild_id": channel.guild.id, "channel_id": channel.id, "user_id": member.id})
        return state

    async def unclaim_ticket(self, channel: discord.TextChannel, member: discord.Member) -> TicketState:
        channel = self._require_ticket(channel)
        config = self.guild_config(channel.guild.id)
        state = self.get_state(channel)
        if state.claimed_by is None:
            raise NotClaimedError()
        if state.claimed_by != member.id and not is_admin(member, config, self.deps.owner_ids):
            raise PermissionDeniedError("Only the staff member who claimed this ticket or an admin can unclaim it.")
        previous = state.claimed_by
        state = state.with_claimer(None)
        self._states[channel.id] = state

        new_name = channel.name[len(CLAIMED_PREFIX):] if channel.name.startswith(CLAIMED_PREFIX) else None
        await self._write_state(channel, state, new_name or None)
        await self._safe(channel.send(f"Ticket unclaimed by {member.mention}"), "send unclaim notice", channel.id)
        await self._log(channel.guild, config, log_embed("unclaimed", channel, member, {"Previous claimer": f"<@{previous}>"}))
        return state

    # -- membership -----------------------------------------------------

    async def add_member(
        self, channel: discord.TextChannel, member: discord.Member, target: discord.Member
    ) -> None:
        channel = self._require_ticket(channel)
        state = self.get_state(channel)
        if state.opened_by != member.id:
            self._require_manager(channel, member)
        try:
            await channel.set_permissions(
                target,
                view_channel=True,
                send_messages=True,
                read_message_history=True,
                reason=f"Added to ticket by {member} ({member.id})",
            )
        except discord.HTTPException as exc:
            LOGGER.warning("Could not add member to ticket: %s", exc, extra={"channel_id": channel.id})
            raise PermissionDeniedError("I could not update this ticket's permissions.") from exc
        await self._safe(channel.send(f"{member.mention} added {target.mention} to this ticket."), "send add notice", channel.id)

    # -- close ----------------------------------------------------------

    async def close_ticket(
        self, channel: discord.TextChannel, member: discord.Member, reason: str | None = None
    ) -> TicketState:
        if isinstance(channel, discord.TextChannel) and channel.id in self._closing:
            return self.get_state(channel)
        channel = self._require_ticket(channel)
        self._require_manager(channel, member)
        return await self._close(channel, member, (reason or "").strip() or None)

    async def _close(self, channel: discord.TextChannel, actor: discord.Member, reason: str | None) -> TicketState:
        state = self.get_state(channel)
        if channel.id in self._closing:
            return state
        self._closing.add(channel.id)
        self._cancel_auto_close(channel.id)

        guild = channel.guild
        config = self.guild_config(guild.id)
        premium = await self.deps.premium_service.get_state(guild.id)
        branding = premium.branding if premium.is_premium else None

        if self.config.dm_on_close:
            await self._isolated(self._send_close_dm(channel, state, actor, reason, branding), "dm summary", channel.id)
        fields = {"Claimed by": f"<@{state.claimed_by}>" if state.claimed_by else "Not claimed"}
        if state.opened_by:
            fields["Opened by"] = f"<@{state.opened_by}>"
        if reason:
            fields["Reason"] = reason
        await self._isolated(self._log(guild, config, log_embed("closed", channel, actor, fields)), "log entry", channel.id)
        if premium.is_premium and premium.features.transcripts_enabled:
            await self._isolated(self._post_transcript(channel, config, premium), "transcript", channel.id)

        notice = f"Ticket closed: **{reason}**" if reason else "Ticket will be closed."
        await self._safe(channel.send(notice), "send closing notice", channel.id)
        self.deps.scheduler.schedule(
            self.config.close_grace_seconds,
            partial(self._delete_channel, channel),
            name=f"delete:{channel.id}",
        )
        LOGGER.info(
            "Ticket closing (reason=%s)", reason or "-",
            extra={"guild_id": guild.id, "channel_id": channel.id, "user_id": actor.id},
        )
        return state

    async def _send_close_dm(
        self,
        channel: discord.TextChannel,
        state: TicketState,
        actor: discord.Member,
        reason: str | None,
        branding: Any,
    ) -> None:
        if state.opened_by is None:
            return
        opener: discord.abc.User | None = channel.guild.get_member(state.opened_by)
        if opener is None and self.deps.user_fetcher is not None:
            # Openers who left the guild can still receive DMs.
            opener = await self._safe(self.deps.user_fetcher(state.opened_by), "fetch opener", channel.id)
        if opener is None:
            LOGGER.info("Opener not found; skipping close summary", extra={"channel_id": channel.id})
            return
        await self._safe(opener.send(embed=close_summary_embed(actor, state.claimed_by, reason, branding)), "dm summary", channel.id)
        if self.deps.rating_view_factory is not None:
            view = self.deps.rating_view_factory(channel.id, state.claimed_by)
            await self._safe(opener.send(embed=rating_prompt_embed(state.claimed_by), view=view), "dm rating prompt", channel.id)

    async def _post_transcript(self, channel: discord.TextChannel, config: GuildConfig, premium: PremiumState) -> None:
        destination_id = premium.features.transcript_channel_id or config.log_channel_id
        destination = channel.guild.get_channel(destination_id) if destination_id else None
        if not isinstance(destination, discord.TextChannel):
            LOGGER.info("No transcript destination configured", extra={"guild_id": channel.guild.id})
            return
        artifacts = await self.deps.transcript_service.generate(channel, premium.branding)
        await self.deps.transcript_service.publish(artifacts, destination, channel.name)

    async def _delete_channel(self, channel: discord.TextChannel) -> None:
        try:
            await channel.delete(reason="Ticket closed")
        except discord.NotFound:
            LOGGER.debug("Ticket channel already deleted", extra={"channel_id": channel.id})
        except discord.HTTPException:
            LOGGER.warning("Could not delete ticket channel", exc_info=True, extra={"channel_id": channel.id})
        finally:
            self._forget(channel.id)

    def _forget(self, channel_id: int) -> None:
        self._states.pop(channel_id, None)
        self._closing.discard(channel_id)
        self._cancel_auto_close(channel_id)

    def handle_channel_deleted(self, channel_id: int) -> None:
        if channel_id in self._states or channel_id in self._auto_close:
            self._forget(channel_id)
