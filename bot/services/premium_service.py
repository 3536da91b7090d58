from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from core.errors import InvalidKeyError, KeyAlreadyUsedError, NotPremiumError, ValidationError
from database.models import TICKET_TYPES, LicenseKey, PremiumState
from database.repositories import DocumentRepository
from utils.merge import deep_merge
from utils.time import utc_now
from utils.validation import is_http_url, normalize_hex_color

LOGGER = logging.getLogger(__name__)


def normalize_key(key: str) -> str:
    return (key or "").strip().upper()


class PremiumService:
    """Premium entitlement per guild.

    Every read enforces expiry first: an expired grant is demoted and the
    demotion is written back before the caller sees the state. Writes go
    straight to storage; entitlement changes are never coalesced.
    """

    def __init__(
        self,
        state_repo: DocumentRepository,
        key_repo: DocumentRepository,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.state_repo = state_repo
        self.key_repo = key_repo
        self.clock = clock

    def _load(self, guild_id: int) -> PremiumState:
        return PremiumState.from_dict(guild_id, self.state_repo.get(str(guild_id), {}))

    async def get_state(self, guild_id: int) -> PremiumState:
        state = self._load(guild_id)
        if state.is_premium and state.is_expired(self.clock()):
            state.is_premium = False
            self.state_repo.set(str(guild_id), state.to_dict())
            await self.state_repo.commit()
            LOGGER.info("Premium expired at %s; demoted", state.expires_at, extra={"guild_id": guild_id})
        return state

    async def is_premium(self, guild_id: int) -> bool:
        return (await self.get_state(guild_id)).is_premium

    async def require_premium(self, guild_id: int) -> PremiumState:
        state = await self.get_state(guild_id)
        if not state.is_premium:
            raise NotPremiumError()
        return state

    @staticmethod
    def _validate_branding(branding: Any) -> None:
        if not isinstance(branding, dict):
            raise ValidationError("Branding must be an object.")
        accent = branding.get("accent")
        if accent not in (None, "") and normalize_hex_color(accent) is None:
            raise ValidationError("Accent must be a 6-digit hex color such as `#5865F2`.")
        icon_url = branding.get("iconUrl")
        if icon_url not in (None, "") and not is_http_url(icon_url):
            raise ValidationError("Icon URL must start with http:// or https://.")
        name = branding.get("name")
        if name is not None and not isinstance(name, str):
            raise ValidationError("Branding name must be text.")

    async def save_state(self, guild_id: int, patch: dict[str, Any]) -> PremiumState:
        if "branding" in patch:
            self._validate_branding(patch["branding"])
        if "features" in patch and not isinstance(patch["features"], dict):
            raise ValidationError("Features must be an object.")

        current = await self.get_state(guild_id)
        merged = deep_merge(current.to_dict(), patch)
        state = PremiumState.from_dict(guild_id, merged)
        self.state_repo.set(str(guild_id), state.to_dict())
        await self.state_repo.commit()
        LOGGER.info("Saved premium state fields %s", sorted(patch), extra={"guild_id": guild_id})
        return state

    async def set_branding(
        self,
        guild_id: int,
        *,
        name: str | None = None,
        icon_url: str | None = None,
        accent: str | None = None,
    ) -> PremiumState:
        await self.require_premium(guild_id)
        branding: dict[str, Any] = {}
        if name is not None:
            branding["name"] = name.strip() or None
        if icon_url is not None:
            branding["iconUrl"] = icon_url.strip() or None
        if accent is not None:
            branding["accent"] = accent.strip() or None
        return await self.save_state(guild_id, {"branding": branding})

    async def update_features(self, guild_id: int, features: dict[str, Any]) -> PremiumState:
        await self.require_premium(guild_id)
        return await self.save_state(guild_id, {"features": features})

    def get_key(self, key: str) -> LicenseKey | None:
        raw = self.key_repo.get(normalize_key(key))
        return LicenseKey.from_dict(raw) if isinstance(raw, dict) else None

    async def redeem(self, guild_id: int, key: str) -> PremiumState:
        """Consume a license key for a guild, extending any active grant."""
        normalized = normalize_key(key)
        license_key = self.get_key(normalized)
        if license_key is None:
            raise InvalidKeyError()
        if license_key.used:
            raise KeyAlreadyUsedError()

        now = self.clock()
        current = self._load(guild_id)
        if current.is_premium and current.is_expired(now):
            current.is_premium = False

        license_key.used = True
        license_key.used_by_guild_id = guild_id
        license_key.used_at = now
        self.key_repo.set(normalized, license_key.to_dict())

        duration = license_key.duration
        if duration is None or (current.is_premium and current.expires_at is None):
            expires_at = None
        else:
            base = max(now, current.expires_at) if current.expires_at else now
            expires_at = base + timedelta(milliseconds=duration)

        current.is_premium = True
        current.plan = license_key.plan
        current.activated_at = current.activated_at or now
        current.expires_at = expires_at
        self.state_repo.set(str(guild_id), current.to_dict())

        await self.key_repo.commit()
        await self.state_repo.commit()
        LOGGER.info(
            "Redeemed key %s (%s); premium until %s",
            normalized,
            license_key.plan,
            expires_at or "forever",
            extra={"guild_id": guild_id},
        )
        return current

    async def revoke(self, guild_id: int) -> PremiumState:
        state = await self.get_state(guild_id)
        state.is_premium = False
        self.state_repo.set(str(guild_id), state.to_dict())
        await self.state_repo.commit()
        LOGGER.info("Premium revoked", extra={"guild_id": guild_id})
        return state

    async def compute_ping_mention(self, guild_id: int, ticket_type: str) -> str:
        if ticket_type not in TICKET_TYPES:
            raise ValidationError(f"Unknown ticket type `{ticket_type}`.")
        state = await self.get_state(guild_id)
        if not state.is_premium:
            return "@here"
        ping = state.features.pings[ticket_type]
        parts = [f"<@&{role_id}>" for role_id in ping.roles]
        if ping.here:
            parts.append("@here")
        if ping.everyone:
            parts.append("@everyone")
        return " ".join(parts) if parts else "@here"
