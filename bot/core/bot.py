from __future__ import annotations

import logging
from functools import partial
from pathlib import Path

import discord
from discord.ext import commands

from core.config import AppConfig
from core.errors import handle_app_command_error, handle_prefix_command_error
from core.extensions import load_extensions
from database.repositories import DocumentRepository
from database.store import DocumentStore, build_store
from services.cache import CacheBackend, build_cache
from services.config_service import ConfigService
from services.license_service import LicenseService
from services.premium_service import PremiumService
from services.rating_service import RatingService
from services.ticket_service import TicketService, TicketServiceDeps
from services.transcript_service import TranscriptService
from utils.scheduler import AsyncioScheduler
from views.rating import RatingView
from views.ticket_controls import TicketControlsView

LOGGER = logging.getLogger(__name__)


class TicketBot(commands.Bot):
    def __init__(self, config: AppConfig, store: DocumentStore | None = None) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.messages = True
        intents.message_content = True

        super().__init__(
            command_prefix=config.discord.prefix,
            intents=intents,
            application_id=config.discord.application_id,
            owner_ids=set(config.discord.owner_ids) or None,
            allowed_mentions=discord.AllowedMentions(
                everyone=config.discord.allowed_mentions_everyone,
                roles=True,
                users=True,
                replied_user=False,
            ),
            help_command=None,
        )
        self.config = config
        self.root_dir = Path(__file__).resolve().parent.parent
        self.store = store or build_store(config.storage)
        self.scheduler = AsyncioScheduler()
        self.cache: CacheBackend | None = None

        retry = float(config.storage.retry_seconds)
        self.config_repo = DocumentRepository(
            self.store,
            "guildConfigs",
            self.scheduler,
            debounce_seconds=config.storage.config_debounce_ms / 1000,
            retry_seconds=retry,
        )
        self.premium_repo = DocumentRepository(self.store, "premiumGuilds", self.scheduler, retry_seconds=retry)
        self.key_repo = DocumentRepository(self.store, "premiumKeys", self.scheduler, retry_seconds=retry)
        self.reviews_repo = DocumentRepository(self.store, "reviews", self.scheduler, retry_seconds=retry)
        self.rated_repo = DocumentRepository(self.store, "ratedTickets", self.scheduler, retry_seconds=retry)

        self.premium_service = PremiumService(self.premium_repo, self.key_repo)
        self.config_service = ConfigService(
            self.config_repo, config.guild_defaults, premium_check=self.premium_service.require_premium
        )
        self.license_service = LicenseService(self.key_repo, config.premium)
        self.rating_service = RatingService(self.reviews_repo, self.rated_repo)
        self.transcript_service = TranscriptService(config.transcripts)

        # The ticket service needs the cache, which is built in setup_hook.
        self.ticket_service: TicketService

    @property
    def repositories(self) -> list[DocumentRepository]:
        return [self.config_repo, self.premium_repo, self.key_repo, self.reviews_repo, self.rated_repo]

    async def setup_hook(self) -> None:
        for repository in self.repositories:
            await repository.load()
        await self.rating_service.migrate_legacy()
        self.cache = await build_cache(self.config.redis)

        deps = TicketServiceDeps(
            config_service=self.config_service,
            premium_service=self.premium_service,
            transcript_service=self.transcript_service,
            scheduler=self.scheduler,
            cache=self.cache,
            owner_ids=list(self.config.discord.owner_ids),
            controls_factory=partial(TicketControlsView.for_state, self),
            rating_view_factory=RatingView,
            user_fetcher=self.fetch_user,
        )
        self.ticket_service = TicketService(self.config.tickets, deps)

        await load_extensions(self, self.config.enabled_extensions)

        if self.config.discord.sync_commands_on_start:
            synced = await self.tree.sync()
            LOGGER.info("Synced %s application commands", len(synced))

        self.tree.on_error = handle_app_command_error  # type: ignore[assignment]

    async def on_ready(self) -> None:
        LOGGER.info("Bot ready as %s (%s) in %s guild(s)", self.user, self.user.id if self.user else "n/a", len(self.guilds))
        activity_type = self.config.discord.activity_type.lower()
        if activity_type == "playing":
            activity = discord.Game(name=self.config.discord.status_text)
        elif activity_type == "listening":
            activity = discord.Activity(
                type=discord.ActivityType.listening, name=self.config.discord.status_text
            )
        else:
            activity = discord.Activity(
                type=discord.ActivityType.watching, name=self.config.discord.status_text
            )
        await self.change_presence(status=discord.Status.online, activity=activity)

    async def on_command_error(self, ctx: commands.Context[commands.Bot], error: commands.CommandError) -> None:
        if isinstance(error, commands.CommandNotFound):
            return
        if ctx.command and ctx.command.has_error_handler():
            return
        await handle_prefix_command_error(ctx, error)

    async def close(self) -> None:
        await super().close()
        for repository in self.repositories:
            await repository.close()
        self.scheduler.cancel_pending()
        await self.store.close()
        if self.cache:
            await self.cache.close()
        LOGGER.info("Shutdown complete")
