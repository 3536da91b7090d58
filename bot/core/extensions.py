from __future__ import annotations

import logging

from discord.ext import commands

LOGGER = logging.getLogger(__name__)


async def load_extensions(bot: commands.Bot, extension_names: list[str]) -> list[str]:
    """Load each cog module; a broken one is logged and skipped so the rest still start."""
    loaded: list[str] = []
    for ext in extension_names:
        try:
            await bot.load_extension(ext)
        except commands.ExtensionAlreadyLoaded:
            LOGGER.warning("Extension already loaded: %s", ext)
        except commands.ExtensionError:
            LOGGER.exception("Failed to load extension: %s", ext)
        else:
            loaded.append(ext)
            LOGGER.info("Loaded extension: %s", ext)
    return loaded


async def reload_extensions(bot: commands.Bot, extension_names: list[str]) -> list[str]:
    reloaded: list[str] = []
    for ext in extension_names:
        try:
            await bot.reload_extension(ext)
        except commands.ExtensionNotLoaded:
            reloaded.extend(await load_extensions(bot, [ext]))
        except commands.ExtensionError:
            LOGGER.exception("Failed to reload extension: %s", ext)
        else:
            reloaded.append(ext)
            LOGGER.info("Reloaded extension: %s", ext)
    return reloaded
