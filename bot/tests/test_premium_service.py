from __future__ import annotations

from datetime import timedelta

import pytest

from core.errors import InvalidKeyError, KeyAlreadyUsedError, NotPremiumError, ValidationError
from fakes import make_repo
from services.premium_service import PremiumService
from utils.time import DAY_MS, to_iso

GUILD = 111111111111111111
OTHER_GUILD = 222222222222222222
ROLE = 333333333333333333


def _service(store, scheduler, clock) -> PremiumService:
    return PremiumService(make_repo(store, "premiumGuilds", scheduler), make_repo(store, "premiumKeys", scheduler), clock=clock)


def _add_key(service: PremiumService, key: str, duration_ms: int | None = 30 * DAY_MS, **extra) -> None:
    service.key_repo.set(key, {"key": key, "plan": "30d", "durationMs": duration_ms, "used": False, **extra})


@pytest.mark.asyncio
async def test_unknown_guild_is_not_premium(store, scheduler, clock) -> None:
    service = _service(store, scheduler, clock)

    state = await service.get_state(GUILD)

    assert state.is_premium is False
    assert state.features.ticket_name_template == "ticket-{user}"
    with pytest.raises(NotPremiumError):
        await service.require_premium(GUILD)


@pytest.mark.asyncio
async def test_redeem_activates_and_marks_key(store, scheduler, clock) -> None:
    service = _service(store, scheduler, clock)
    _add_key(service, "DRGN-AAAA-BBBB-CCCC-DDDD")

    state = await service.redeem(GUILD, " drgn-aaaa-bbbb-cccc-dddd ")

    assert state.is_premium is True
    assert state.plan == "30d"
    assert state.activated_at == clock.now
    assert state.expires_at == clock.now + timedelta(days=30)
    key = service.get_key("DRGN-AAAA-BBBB-CCCC-DDDD")
    assert key.used is True
    assert key.used_by_guild_id == GUILD
    assert store.documents["premiumKeys"]["DRGN-AAAA-BBBB-CCCC-DDDD"]["used"] is True
    assert store.documents["premiumGuilds"][str(GUILD)]["isPremium"] is True


@pytest.mark.asyncio
async def test_redeem_rejects_unknown_and_used_keys(store, scheduler, clock) -> None:
    service = _service(store, scheduler, clock)
    _add_key(service, "DRGN-USED-USED-USED-USED", used=True)

    with pytest.raises(InvalidKeyError):
        await service.redeem(GUILD, "DRGN-NOPE-NOPE-NOPE-NOPE")
    with pytest.raises(KeyAlreadyUsedError):
        await service.redeem(GUILD, "DRGN-USED-USED-USED-USED")
    assert (await service.get_state(GUILD)).is_premium is False


@pytest.mark.asyncio
async def test_redeem_stacks_on_active_grant(store, scheduler, clock) -> None:
    service = _service(store, scheduler, clock)
    _add_key(service, "K1")
    _add_key(service, "K2")
    first = await service.redeem(GUILD, "K1")
    clock.advance(days=10)

    second = await service.redeem(GUILD, "K2")

    assert second.expires_at == first.expires_at + timedelta(days=30)
    assert second.activated_at == first.activated_at


@pytest.mark.asyncio
async def test_key_can_only_be_redeemed_once_across_guilds(store, scheduler, clock) -> None:
    service = _service(store, scheduler, clock)
    _add_key(service, "K1")

    await service.redeem(GUILD, "K1")
    with pytest.raises(KeyAlreadyUsedError):
        await service.redeem(OTHER_GUILD, "K1")
    assert (await service.get_state(OTHER_GUILD)).is_premium is False


@pytest.mark.asyncio
async def test_non_expiring_key_and_legacy_days(store, scheduler, clock) -> None:
    service = _service(store, scheduler, clock)
    _add_key(service, "LIFETIME", duration_ms=None)
    _add_key(service, "LEGACY", duration_ms=None, durationDays=15)

    lifetime = await service.redeem(GUILD, "LIFETIME")
    assert lifetime.expires_at is None

    legacy = await service.redeem(OTHER_GUILD, "LEGACY")
    assert legacy.expires_at == clock.now + timedelta(days=15)


@pytest.mark.asyncio
async def test_expired_grant_is_demoted_and_written_back(store, scheduler, clock) -> None:
    service = _service(store, scheduler, clock)
    service.state_repo.set(
        str(GUILD), {"isPremium": True, "plan": "1m", "expiresAt": to_iso(clock.now - timedelta(seconds=1))}
    )

    assert await service.is_premium(GUILD) is False
    assert store.documents["premiumGuilds"][str(GUILD)]["isPremium"] is False


@pytest.mark.asyncio
async def test_expiry_boundary(store, scheduler, clock) -> None:
    service = _service(store, scheduler, clock)
    service.state_repo.set(str(GUILD), {"isPremium": True, "expiresAt": to_iso(clock.now + timedelta(seconds=1))})

    assert await service.is_premium(GUILD) is True
    clock.advance(seconds=1)
    assert await service.is_premium(GUILD) is False


@pytest.mark.asyncio
async def test_ping_mention(store, scheduler, clock) -> None:
    service = _service(store, scheduler, clock)
    assert await service.compute_ping_mention(GUILD, "support") == "@here"

    await service.save_state(GUILD, {"isPremium": True})
    assert await service.compute_ping_mention(GUILD, "trade") == "@here"

    await service.update_features(GUILD, {"pings": {"trade": {"roles": [str(ROLE)], "here": False, "everyone": True}}})
    assert await service.compute_ping_mention(GUILD, "trade") == f"<@&{ROLE}> @everyone"

    await service.update_features(GUILD, {"pings": {"trade": {"roles": [], "everyone": False}}})
    assert await service.compute_ping_mention(GUILD, "trade") == "@here"

    with pytest.raises(ValidationError):
        await service.compute_ping_mention(GUILD, "billing")


@pytest.mark.asyncio
async def test_branding_requires_premium_and_valid_values(store, scheduler, clock) -> None:
    service = _service(store, scheduler, clock)
    with pytest.raises(NotPremiumError):
        await service.set_branding(GUILD, name="Dragon")

    await service.save_state(GUILD, {"isPremium": True})
    state = await service.set_branding(GUILD, name="Dragon", accent="FF8800", icon_url="https://example.com/i.png")
    assert state.branding.accent == "#ff8800"
    assert state.branding.accent_value == 0xFF8800

    with pytest.raises(ValidationError):
        await service.set_branding(GUILD, accent="orange")
    with pytest.raises(ValidationError):
        await service.set_branding(GUILD, icon_url="ftp://example.com/i.png")

    cleared = await service.set_branding(GUILD, name="")
    assert cleared.branding.name is None
    assert cleared.branding.accent == "#ff8800"


@pytest.mark.asyncio
async def test_features_merge_and_fall_back(store, scheduler, clock) -> None:
    service = _service(store, scheduler, clock)
    await service.save_state(GUILD, {"isPremium": True})

    await service.update_features(GUILD, {"autoCloseMinutes": 5000, "closeReasons": ["Resolved", "Resolved", "x" * 150]})
    state = await service.update_features(GUILD, {"claimAutoTag": True, "transcriptsEnabled": "yes"})

    assert state.features.auto_close_minutes == 1440
    assert state.features.close_reasons == ["Resolved", "x" * 100]
    assert state.features.claim_auto_tag is True
    assert state.features.transcripts_enabled is False


@pytest.mark.asyncio
async def test_revoke(store, scheduler, clock) -> None:
    service = _service(store, scheduler, clock)
    await service.save_state(GUILD, {"isPremium": True, "plan": "1y"})

    state = await service.revoke(GUILD)

    assert state.is_premium is False
    assert state.plan == "1y"
