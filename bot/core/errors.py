from __future__ import annotations

import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any

import discord
from discord import app_commands
from discord.ext import commands

LOGGER = logging.getLogger(__name__)


class BotError(RuntimeError):
    user_message: str = "An unexpected error occurred."


@dataclass(slots=True)
class NotConfiguredError(BotError):
    user_message: str = (
        "The ticket system is not configured in this server. "
        "Ask the server owner to run `/setup` and set the ticket categories first."
    )


@dataclass(slots=True)
class FeatureDisabledError(BotError):
    user_message: str = "This ticket type is currently disabled in this server."


@dataclass(slots=True)
class ValidationError(BotError):
    user_message: str = "The provided input is not valid."


@dataclass(slots=True)
class PermissionDeniedError(BotError):
    user_message: str = "You do not have permission to run this action."


@dataclass(slots=True)
class TicketNotFoundError(BotError):
    user_message: str = "Use this only inside a ticket channel."


@dataclass(slots=True)
class TicketCreationError(BotError):
    user_message: str = (
        "I couldn't create the ticket channel. "
        "Most common reason: one of the configured role or category IDs is wrong or not in this server. "
        "Run `/setup` to configure categories and roles for this server."
    )


@dataclass(slots=True)
class AlreadyClaimedError(BotError):
    user_message: str = "This ticket is already claimed."


@dataclass(slots=True)
class NotClaimedError(BotError):
    user_message: str = "This ticket is not claimed."


@dataclass(slots=True)
class InvalidKeyError(BotError):
    user_message: str = "That license key does not exist."


@dataclass(slots=True)
class KeyAlreadyUsedError(BotError):
    user_message: str = "That license key has already been redeemed."


@dataclass(slots=True)
class NotPremiumError(BotError):
    user_message: str = "This feature requires premium. Redeem a license key with `/premium redeem`."


@dataclass(slots=True)
class AlreadyRatedError(BotError):
    user_message: str = "You already rated this ticket."


@dataclass(slots=True)
class PersistenceDegradedError(BotError):
    user_message: str = "Storage is temporarily unavailable. Your change is kept and will be saved shortly."


PermissionDenied = PermissionDeniedError
TicketNotFound = TicketNotFoundError


@dataclass(slots=True)
class OperationResult:
    status: str
    message: str | None = None
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @classmethod
    def success(cls, data: Any = None, message: str | None = None) -> OperationResult:
        return cls(status="ok", message=message, data=data)

    @classmethod
    def failure(cls, error: BotError) -> OperationResult:
        return cls(status="error", message=error.user_message, data=type(error).__name__)


async def run_operation(operation: Awaitable[Any], message: str | None = None) -> OperationResult:
    """Await a service operation and fold domain errors into a result for rendering."""
    try:
        data = await operation
    except BotError as error:
        LOGGER.info("Operation rejected: %s (%s)", type(error).__name__, error.user_message)
        return OperationResult.failure(error)
    return OperationResult.success(data=data, message=message)


async def send_error_response(
    target: commands.Context[commands.Bot] | discord.Interaction[commands.Bot], message: str
) -> None:
    embed = discord.Embed(title="Error", description=message, color=discord.Color.red())
    try:
        if isinstance(target, commands.Context):
            await target.reply(embed=embed, mention_author=False)
            return
        if target.response.is_done():
            await target.followup.send(embed=embed, ephemeral=True)
        else:
            await target.response.send_message(embed=embed, ephemeral=True)
    except discord.HTTPException:
        # The interaction token may have expired; nothing left to answer.
        LOGGER.debug("Could not deliver error response", exc_info=True)


def unwrap_command_error(error: BaseException) -> BaseException:
    # Hybrid commands nest the real error up to three levels deep.
    while isinstance(
        error, commands.HybridCommandError | commands.CommandInvokeError | app_commands.CommandInvokeError
    ):
        error = error.original
    return error


def _humanize_command_error(error: Exception) -> str:
    error = unwrap_command_error(error)
    if isinstance(error, BotError):
        return error.user_message
    if isinstance(error, commands.CommandOnCooldown | app_commands.CommandOnCooldown):
        return f"Cooldown active. Retry in {error.retry_after:.1f} seconds."
    if isinstance(error, commands.MissingPermissions | app_commands.MissingPermissions):
        return "You are missing required Discord permissions."
    if isinstance(error, commands.NoPrivateMessage | app_commands.NoPrivateMessage):
        return "This command only works inside a server."
    if isinstance(error, commands.CheckFailure | app_commands.CheckFailure):
        return "You are not authorized for this command."
    if isinstance(error, commands.BadArgument):
        return "Command argument was invalid."
    return "An unexpected command error occurred."


async def handle_prefix_command_error(
    ctx: commands.Context[commands.Bot], error: commands.CommandError
) -> None:
    message = _humanize_command_error(error)
    root = unwrap_command_error(error)
    if isinstance(root, BotError | commands.CheckFailure | app_commands.CheckFailure):
        LOGGER.info(
            "Prefix command rejected. command=%s guild=%s user=%s reason=%s",
            getattr(ctx.command, "qualified_name", None),
            getattr(ctx.guild, "id", None),
            ctx.author.id,
            message,
        )
    else:
        LOGGER.exception(
            "Prefix command failed. command=%s guild=%s user=%s",
            getattr(ctx.command, "qualified_name", None),
            getattr(ctx.guild, "id", None),
            ctx.author.id,
            exc_info=error,
        )
    await send_error_response(ctx, message)


async def handle_app_command_error(
    interaction: discord.Interaction[commands.Bot], error: app_commands.AppCommandError
) -> None:
    original = error.original if isinstance(error, app_commands.CommandInvokeError) else error
    message = "An unexpected slash-command error occurred."
    if isinstance(original, BotError):
        message = original.user_message
    elif isinstance(error, app_commands.CheckFailure):
        message = "You are not authorized for this command."
    elif isinstance(error, app_commands.CommandOnCooldown):
        message = f"Cooldown active. Retry in {error.retry_after:.1f} seconds."

    if isinstance(original, BotError) or isinstance(error, app_commands.CheckFailure):
        LOGGER.info(
            "Slash command rejected. command=%s guild=%s user=%s reason=%s",
            getattr(interaction.command, "qualified_name", None),
            getattr(interaction.guild, "id", None),
            interaction.user.id if interaction.user else None,
            message,
        )
    else:
        LOGGER.exception(
            "Slash command failed. command=%s guild=%s user=%s",
            getattr(interaction.command, "qualified_name", None),
            getattr(interaction.guild, "id", None),
            interaction.user.id if interaction.user else None,
            exc_info=error,
        )
    await send_error_response(interaction, message)
