from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path

import uvicorn

from core.api import create_api_app
from core.bot import TicketBot
from core.config import AppConfig, ConfigError, load_config
from core.logging import configure_logging

LOGGER = logging.getLogger(__name__)


async def _run_bot(config: AppConfig) -> None:
    bot = TicketBot(config=config)
    async with bot:
        server: uvicorn.Server | None = None
        api_task: asyncio.Task[None] | None = None
        if config.fastapi.enabled:
            server = uvicorn.Server(
                uvicorn.Config(
                    app=create_api_app(bot),
                    host=config.fastapi.host,
                    port=config.fastapi.port,
                    log_level=config.logging.level.lower(),
                )
            )
            api_task = asyncio.create_task(server.serve())
            LOGGER.info("Dashboard API listening on %s:%s", config.fastapi.host, config.fastapi.port)
        try:
            await bot.start(config.discord.token)
        finally:
            if server and api_task:
                server.should_exit = True
                await asyncio.gather(api_task, return_exceptions=True)


def main() -> None:
    root = Path(__file__).resolve().parent
    config_path = Path(os.getenv("BOT_CONFIG", root / "config" / "config.yaml"))
    try:
        config = load_config(config_path)
    except ConfigError as error:
        print(f"Configuration error: {error}", file=sys.stderr)
        raise SystemExit(2) from error
    configure_logging(config.logging)
    LOGGER.info("Starting with %s storage", config.storage.backend)
    try:
        asyncio.run(_run_bot(config))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted; shutting down")


if __name__ == "__main__":
    main()
