from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from core.config import GuildDefaultsConfig
from core.errors import ValidationError
from database.models import GuildConfig
from database.repositories import DocumentRepository
from utils.validation import normalize_snowflakes, require_snowflake

LOGGER = logging.getLogger(__name__)

PremiumCheck = Callable[[int], Awaitable[Any]]

ROLE_FIELDS = ("supportRoles", "mmRoles", "adminRoles")
CHANNEL_FIELDS = {
    "supportCategoryId": "support category",
    "mmCategoryId": "trade category",
    "logChannelId": "log channel",
}
TOGGLE_FIELDS = ("supportEnabled", "tradeEnabled", "logsEnabled")

# Accepts the attribute names used in Python code as aliases of the stored keys.
PATCH_ALIASES = {
    "support_category_id": "supportCategoryId",
    "trade_category_id": "mmCategoryId",
    "mm_category_id": "mmCategoryId",
    "tradeCategoryId": "mmCategoryId",
    "log_channel_id": "logChannelId",
    "support_enabled": "supportEnabled",
    "trade_enabled": "tradeEnabled",
    "logs_enabled": "logsEnabled",
    "support_roles": "supportRoles",
    "trade_roles": "mmRoles",
    "mm_roles": "mmRoles",
    "tradeRoles": "mmRoles",
    "admin_roles": "adminRoles",
    "panel_text": "panelText",
}
PANEL_TEXT_ALIASES = {
    "support_description": "supportDescription",
    "trade_description": "tradeDescription",
}


class ConfigService:
    """Per-guild ticket routing. Reads never fail; writes are coalesced.

    ``premium_check`` raises ``NotPremiumError`` for guilds without premium and
    gates every write of ``panelText``, whichever surface the patch comes from.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        defaults: GuildDefaultsConfig | None = None,
        premium_check: PremiumCheck | None = None,
    ) -> None:
        self.repository = repository
        self.defaults = defaults or GuildDefaultsConfig()
        self.premium_check = premium_check

    def _default_patch(self) -> dict[str, Any]:
        raw: dict[str, Any] = {
            "supportRoles": [str(role_id) for role_id in self.defaults.support_roles],
            "mmRoles": [str(role_id) for role_id in self.defaults.mm_roles],
            "adminRoles": [str(role_id) for role_id in self.defaults.admin_roles],
        }
        for key, value in (
            ("supportCategoryId", self.defaults.support_category_id),
            ("mmCategoryId", self.defaults.mm_category_id),
            ("logChannelId", self.defaults.log_channel_id),
        ):
            if value is not None:
                raw[key] = str(value)
        return raw

    def _stored(self, guild_id: int) -> dict[str, Any]:
        stored = self.repository.get(str(guild_id), {})
        return stored if isinstance(stored, dict) else {}

    def get_raw(self, guild_id: int) -> dict[str, Any]:
        """Defaults merged with the stored patch, before toggle inference."""
        return {**self._default_patch(), **self._stored(guild_id)}

    def get_config(self, guild_id: int) -> GuildConfig:
        return GuildConfig.from_dict(guild_id, self.get_raw(guild_id))

    def _normalize_patch(self, patch: dict[str, Any]) -> dict[str, Any]:
        normalized: dict[str, Any] = {}
        for key, value in patch.items():
            key = PATCH_ALIASES.get(key, key)
            if key in ROLE_FIELDS:
                normalized[key] = [str(role_id) for role_id in normalize_snowflakes(value)]
            elif key in CHANNEL_FIELDS:
                channel_id = require_snowflake(value, CHANNEL_FIELDS[key])
                normalized[key] = str(channel_id) if channel_id is not None else None
            elif key in TOGGLE_FIELDS:
                if not isinstance(value, bool):
                    raise ValidationError(f"`{key}` must be true or false.")
                normalized[key] = value
            elif key == "panelText":
                if not isinstance(value, dict):
                    raise ValidationError("`panelText` must be an object.")
                normalized[key] = {
                    PANEL_TEXT_ALIASES.get(name, name): (text.strip() or None) if isinstance(text, str) else None
                    for name, text in value.items()
                    if PANEL_TEXT_ALIASES.get(name, name) in {"supportDescription", "tradeDescription"}
                }
            else:
                raise ValidationError(f"Unknown configuration field `{key}`.")
        return normalized

    async def save_config(self, guild_id: int, patch: dict[str, Any]) -> GuildConfig:
        normalized = self._normalize_patch(patch)
        if "panelText" in normalized and self.premium_check is not None:
            await self.premium_check(guild_id)
        current = self.get_raw(guild_id)
        merged = {**current, **normalized}
        if "panelText" in normalized:
            current_panel = current.get("panelText") if isinstance(current.get("panelText"), dict) else {}
            merged["panelText"] = {**current_panel, **normalized["panelText"]}

        self.repository.set(str(guild_id), merged)
        await self.repository.commit()
        LOGGER.info("Saved guild config fields %s", sorted(normalized), extra={"guild_id": guild_id})
        return GuildConfig.from_dict(guild_id, merged)

    def missing_setup(self, guild_id: int) -> list[str]:
        config = self.get_config(guild_id)
        missing: list[str] = []
        if not config.support_category_id:
            missing.append("Support Category")
        if not config.trade_category_id:
            missing.append("Trade Category")
        if not config.log_channel_id:
            missing.append("Log Channel")
        return missing

    async def flush(self) -> bool:
        return await self.repository.flush()
