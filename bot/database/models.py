from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from utils.time import DAY_MS, from_iso, to_iso
from utils.validation import as_snowflake, is_http_url, normalize_hex_color, normalize_snowflakes

TICKET_TYPES = ("support", "trade")
MAX_AUTO_CLOSE_MINUTES = 1440
MAX_CLOSE_REASONS = 25
DEFAULT_TICKET_NAME_TEMPLATE = "ticket-{user}"


def _id_str(value: int | None) -> str | None:
    return str(value) if value is not None else None


def _as_bool(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def _as_text(value: Any, max_length: int | None = None) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    return text[:max_length] if max_length else text


@dataclass(slots=True)
class PanelText:
    support_description: str | None = None
    trade_description: str | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> PanelText:
        raw = raw if isinstance(raw, dict) else {}
        return cls(
            support_description=_as_text(raw.get("supportDescription"), 4000),
            trade_description=_as_text(raw.get("tradeDescription"), 4000),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "supportDescription": self.support_description,
            "tradeDescription": self.trade_description,
        }


@dataclass(slots=True)
class GuildConfig:
    guild_id: int
    support_category_id: int | None = None
    trade_category_id: int | None = None
    log_channel_id: int | None = None
    support_enabled: bool = False
    trade_enabled: bool = False
    logs_enabled: bool = False
    support_roles: list[int] = field(default_factory=list)
    trade_roles: list[int] = field(default_factory=list)
    admin_roles: list[int] = field(default_factory=list)
    panel_text: PanelText = field(default_factory=PanelText)

    @classmethod
    def from_dict(cls, guild_id: int, raw: dict[str, Any]) -> GuildConfig:
        support_category_id = as_snowflake(raw.get("supportCategoryId"))
        trade_category_id = as_snowflake(raw.get("mmCategoryId"))
        log_channel_id = as_snowflake(raw.get("logChannelId"))
        # Older documents have no toggles: a configured id implies the feature is on.
        return cls(
            guild_id=guild_id,
            support_category_id=support_category_id,
            trade_category_id=trade_category_id,
            log_channel_id=log_channel_id,
            support_enabled=_as_bool(raw.get("supportEnabled"), support_category_id is not None),
            trade_enabled=_as_bool(raw.get("tradeEnabled"), trade_category_id is not None),
            logs_enabled=_as_bool(raw.get("logsEnabled"), log_channel_id is not None),
            support_roles=normalize_snowflakes(raw.get("supportRoles")),
            trade_roles=normalize_snowflakes(raw.get("mmRoles")),
            admin_roles=normalize_snowflakes(raw.get("adminRoles")),
            panel_text=PanelText.from_dict(raw.get("panelText")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "supportCategoryId": _id_str(self.support_category_id),
            "mmCategoryId": _id_str(self.trade_category_id),
            "logChannelId": _id_str(self.log_channel_id),
            "supportEnabled": self.support_enabled,
            "tradeEnabled": self.trade_enabled,
            "logsEnabled": self.logs_enabled,
            "supportRoles": [str(role_id) for role_id in self.support_roles],
            "mmRoles": [str(role_id) for role_id in self.trade_roles],
            "adminRoles": [str(role_id) for role_id in self.admin_roles],
            "panelText": self.panel_text.to_dict(),
        }

    def category_for(self, ticket_type: str) -> int | None:
        return self.support_category_id if ticket_type == "support" else self.trade_category_id

    def is_enabled(self, ticket_type: str) -> bool:
        return self.support_enabled if ticket_type == "support" else self.trade_enabled

    def staff_roles_for(self, ticket_type: str) -> list[int]:
        if ticket_type == "support":
            roles = [*self.support_roles, *self.admin_roles]
        else:
            roles = [*self.trade_roles, *self.support_roles, *self.admin_roles]
        return list(dict.fromkeys(roles))


@dataclass(slots=True)
class Branding:
    name: str | None = None
    icon_url: str | None = None
    accent: str | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> Branding:
        raw = raw if isinstance(raw, dict) else {}
        icon_url = raw.get("iconUrl")
        return cls(
            name=_as_text(raw.get("name"), 80),
            icon_url=icon_url.strip() if is_http_url(icon_url) else None,
            accent=normalize_hex_color(raw.get("accent")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "iconUrl": self.icon_url, "accent": self.accent}

    @property
    def accent_value(self) -> int | None:
        return int(self.accent[1:], 16) if self.accent else None


@dataclass(slots=True)
class PingConfig:
    roles: list[int] = field(default_factory=list)
    here: bool = True
    everyone: bool = False

    @classmethod
    def from_dict(cls, raw: Any) -> PingConfig:
        raw = raw if isinstance(raw, dict) else {}
        return cls(
            roles=normalize_snowflakes(raw.get("roles")),
            here=_as_bool(raw.get("here"), True),
            everyone=_as_bool(raw.get("everyone"), False),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"roles": [str(role_id) for role_id in self.roles], "here": self.here, "everyone": self.everyone}


@dataclass(slots=True)
class PremiumFeatures:
    ticket_name_template: str = DEFAULT_TICKET_NAME_TEMPLATE
    welcome_message: str | None = None
    pings: dict[str, PingConfig] = field(
        default_factory=lambda: {ticket_type: PingConfig() for ticket_type in TICKET_TYPES}
    )
    transcripts_enabled: bool = False
    transcript_channel_id: int | None = None
    auto_close_minutes: int = 0
    close_reasons: list[str] = field(default_factory=list)
    claim_auto_tag: bool = False
    priority: bool = False

    @classmethod
    def from_dict(cls, raw: Any) -> PremiumFeatures:
        raw = raw if isinstance(raw, dict) else {}
        pings_raw = raw.get("pings") if isinstance(raw.get("pings"), dict) else {}
        auto_close = raw.get("autoCloseMinutes")
        if isinstance(auto_close, bool) or not isinstance(auto_close, int | float) or not math.isfinite(auto_close):
            auto_close = 0
        reasons_raw = raw.get("closeReasons")
        reasons = [
            reason.strip()[:100]
            for reason in (reasons_raw if isinstance(reasons_raw, list) else [])
            if isinstance(reason, str) and reason.strip()
        ]
        return cls(
            ticket_name_template=_as_text(raw.get("ticketNameTemplate"), 100) or DEFAULT_TICKET_NAME_TEMPLATE,
            welcome_message=_as_text(raw.get("welcomeMessage"), 2000),
            pings={ticket_type: PingConfig.from_dict(pings_raw.get(ticket_type)) for ticket_type in TICKET_TYPES},
            transcripts_enabled=_as_bool(raw.get("transcriptsEnabled"), False),
            transcript_channel_id=as_snowflake(raw.get("transcriptChannelId")),
            auto_close_minutes=max(0, min(MAX_AUTO_CLOSE_MINUTES, int(auto_close))),
            close_reasons=list(dict.fromkeys(reasons))[:MAX_CLOSE_REASONS],
            claim_auto_tag=_as_bool(raw.get("claimAutoTag"), False),
            priority=_as_bool(raw.get("priority"), False),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticketNameTemplate": self.ticket_name_template,
            "welcomeMessage": self.welcome_message,
            "pings": {ticket_type: ping.to_dict() for ticket_type, ping in self.pings.items()},
            "transcriptsEnabled": self.transcripts_enabled,
            "transcriptChannelId": _id_str(self.transcript_channel_id),
            "autoCloseMinutes": self.auto_close_minutes,
            "closeReasons": list(self.close_reasons),
            "claimAutoTag": self.claim_auto_tag,
            "priority": self.priority,
        }


@dataclass(slots=True)
class PremiumState:
    guild_id: int
    is_premium: bool = False
    plan: str | None = None
    activated_at: datetime | None = None
    expires_at: datetime | None = None
    branding: Branding = field(default_factory=Branding)
    features: PremiumFeatures = field(default_factory=PremiumFeatures)

    @classmethod
    def from_dict(cls, guild_id: int, raw: Any) -> PremiumState:
        raw = raw if isinstance(raw, dict) else {}
        return cls(
            guild_id=guild_id,
            is_premium=_as_bool(raw.get("isPremium"), False),
            plan=_as_text(raw.get("plan"), 40),
            activated_at=from_iso(raw.get("activatedAt")),
            expires_at=from_iso(raw.get("expiresAt")),
            branding=Branding.from_dict(raw.get("branding")),
            features=PremiumFeatures.from_dict(raw.get("features")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "isPremium": self.is_premium,
            "plan": self.plan,
            "activatedAt": to_iso(self.activated_at),
            "expiresAt": to_iso(self.expires_at),
            "branding": self.branding.to_dict(),
            "features": self.features.to_dict(),
        }

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


@dataclass(slots=True)
class LicenseKey:
    key: str
    plan: str
    duration_ms: int | None
    created_at: datetime | None = None
    created_by: int | None = None
    used: bool = False
    used_by_guild_id: int | None = None
    used_at: datetime | None = None
    duration_days: float | None = None

    @property
    def duration(self) -> int | None:
        if self.duration_ms and self.duration_ms > 0:
            return self.duration_ms
        if self.duration_days and self.duration_days > 0:
            return int(self.duration_days * DAY_MS)
        return None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> LicenseKey:
        duration_ms = raw.get("durationMs")
        duration_days = raw.get("durationDays")
        return cls(
            key=str(raw.get("key", "")),
            plan=str(raw.get("plan") or "custom"),
            duration_ms=int(duration_ms) if isinstance(duration_ms, int | float) else None,
            duration_days=float(duration_days) if isinstance(duration_days, int | float) else None,
            created_at=from_iso(raw.get("createdAt")),
            created_by=as_snowflake(raw.get("createdBy")),
            used=bool(raw.get("used", False)),
            used_by_guild_id=as_snowflake(raw.get("usedByGuildId")),
            used_at=from_iso(raw.get("usedAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "plan": self.plan,
            "durationMs": self.duration_ms,
            "durationDays": self.duration_days,
            "createdAt": to_iso(self.created_at),
            "createdBy": _id_str(self.created_by),
            "used": self.used,
            "usedByGuildId": _id_str(self.used_by_guild_id),
            "usedAt": to_iso(self.used_at),
        }


@dataclass(slots=True, frozen=True)
class TicketState:
    """Ticket ownership, written to the channel topic as ``opened:<id>;claimed:<id|null>``."""

    opened_by: int | None = None
    claimed_by: int | None = None

    def serialize(self) -> str:
        opened = self.opened_by if self.opened_by is not None else "null"
        claimed = self.claimed_by if self.claimed_by is not None else "null"
        return f"opened:{opened};claimed:{claimed}"

    @classmethod
    def parse(cls, topic: str | None) -> TicketState:
        opened: int | None = None
        claimed: int | None = None
        if not topic:
            return cls()
        for part in topic.split(";"):
            key, _, value = part.partition(":")
            key = key.strip()
            value = value.strip()
            if key == "opened":
                opened = int(value) if value.isdigit() else None
            elif key == "claimed":
                claimed = int(value) if value.isdigit() else None
        return cls(opened_by=opened, claimed_by=claimed)

    @staticmethod
    def has_marker(topic: str | None) -> bool:
        return bool(topic) and "opened:" in topic

    def with_claimer(self, staff_id: int | None) -> TicketState:
        return TicketState(opened_by=self.opened_by, claimed_by=staff_id)


@dataclass(slots=True)
class RatingBucket:
    reviews: list[int] = field(default_factory=list)
    count: int = 0
    avg: float = 0.0

    @classmethod
    def from_dict(cls, raw: Any) -> RatingBucket:
        raw = raw if isinstance(raw, dict) else {}
        reviews_raw = raw.get("reviews")
        reviews = [
            int(score)
            for score in (reviews_raw if isinstance(reviews_raw, list) else [])
            if isinstance(score, int | float) and not isinstance(score, bool) and math.isfinite(score)
        ]
        bucket = cls(reviews=reviews)
        bucket.recompute()
        return bucket

    def add(self, score: int) -> None:
        self.reviews.append(score)
        self.recompute()

    def recompute(self) -> None:
        self.count = len(self.reviews)
        self.avg = round(sum(self.reviews) / self.count, 2) if self.count else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"reviews": list(self.reviews), "count": self.count, "avg": self.avg}
