from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import Body, Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from core.errors import NotPremiumError, ValidationError

if TYPE_CHECKING:
    from core.bot import TicketBot


class BrandingPayload(BaseModel):
    name: str | None = None
    icon_url: str | None = Field(default=None, alias="iconUrl")
    accent: str | None = None


def create_api_app(bot: TicketBot) -> FastAPI:
    """Dashboard API over the same services the bot uses; runs on the bot's event loop."""
    app = FastAPI(title="Dragon Ticket Bot API", version="1.0.0")

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        expected = bot.config.fastapi.api_key
        if expected and x_api_key != expected:
            raise HTTPException(status_code=401, detail="Unauthorized")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        degraded = [repo.name for repo in bot.repositories if repo.degraded]
        return {"status": "degraded" if degraded else "ok", "degraded": degraded}

    @app.get("/guilds/{guild_id}/config", dependencies=[Depends(require_api_key)])
    async def get_config(guild_id: int) -> dict[str, Any]:
        return bot.config_service.get_config(guild_id).to_dict()

    @app.post("/guilds/{guild_id}/config", dependencies=[Depends(require_api_key)])
    async def save_config(guild_id: int, patch: dict[str, Any] = Body(...)) -> dict[str, Any]:
        try:
            config = await bot.config_service.save_config(guild_id, patch)
        except NotPremiumError as error:
            raise HTTPException(status_code=403, detail=error.user_message) from error
        except ValidationError as error:
            raise HTTPException(status_code=400, detail=error.user_message) from error
        return config.to_dict()

    @app.get("/guilds/{guild_id}/premium", dependencies=[Depends(require_api_key)])
    async def get_premium(guild_id: int) -> dict[str, Any]:
        state = await bot.premium_service.get_state(guild_id)
        return state.to_dict()

    @app.post("/guilds/{guild_id}/branding", dependencies=[Depends(require_api_key)])
    async def save_branding(guild_id: int, payload: BrandingPayload) -> dict[str, Any]:
        try:
            state = await bot.premium_service.set_branding(
                guild_id, name=payload.name, icon_url=payload.icon_url, accent=payload.accent
            )
        except NotPremiumError as error:
            raise HTTPException(status_code=403, detail=error.user_message) from error
        except ValidationError as error:
            raise HTTPException(status_code=400, detail=error.user_message) from error
        return state.branding.to_dict()

    return app
