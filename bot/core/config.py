from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv


class ConfigError(RuntimeError):
    pass


@dataclass(slots=True)
class DiscordConfig:
    token: str
    prefix: str = "?"
    application_id: int | None = None
    sync_commands_on_start: bool = True
    status_text: str = "Support & trade tickets"
    activity_type: str = "watching"
    owner_ids: list[int] = field(default_factory=list)
    allowed_mentions_everyone: bool = True


@dataclass(slots=True)
class StorageConfig:
    backend: str = "json"
    directory: str = "data"
    url: str = "sqlite:///./data/documents.db"
    config_debounce_ms: int = 250
    retry_seconds: int = 30


@dataclass(slots=True)
class RedisConfig:
    enabled: bool = False
    url: str = "redis://localhost:6379/0"
    default_ttl: int = 120


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    directory: str = "logs"
    file_name: str = "bot.log"
    max_bytes: int = 10_000_000
    backup_count: int = 10
    json_console: bool = False


@dataclass(slots=True)
class TicketsConfig:
    close_grace_seconds: float = 2.0
    dm_on_close: bool = False
    creation_cooldown_seconds: int = 20
    max_name_length: int = 90


@dataclass(slots=True)
class PremiumConfig:
    key_prefix: str = "DRGN"
    max_keys_per_batch: int = 25


@dataclass(slots=True)
class TranscriptConfig:
    html_enabled: bool = True
    txt_enabled: bool = True
    storage_directory: str = "artifacts/transcripts"
    message_limit: int | None = 2000


@dataclass(slots=True)
class FastApiConfig:
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    api_key: str = ""


@dataclass(slots=True)
class GuildDefaultsConfig:
    """Fallback ticket routing applied to guilds that never ran setup."""

    support_category_id: int | None = None
    mm_category_id: int | None = None
    log_channel_id: int | None = None
    support_roles: list[int] = field(default_factory=list)
    mm_roles: list[int] = field(default_factory=list)
    admin_roles: list[int] = field(default_factory=list)


@dataclass(slots=True)
class AppConfig:
    discord: DiscordConfig
    storage: StorageConfig = field(default_factory=StorageConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    tickets: TicketsConfig = field(default_factory=TicketsConfig)
    premium: PremiumConfig = field(default_factory=PremiumConfig)
    transcripts: TranscriptConfig = field(default_factory=TranscriptConfig)
    fastapi: FastApiConfig = field(default_factory=FastApiConfig)
    guild_defaults: GuildDefaultsConfig = field(default_factory=GuildDefaultsConfig)
    enabled_extensions: list[str] = field(
        default_factory=lambda: [
            "cogs.events",
            "cogs.tickets",
            "cogs.admin",
            "cogs.premium",
            "cogs.ratings",
        ]
    )


def _get_env_str(key: str, fallback: str | None = None) -> str | None:
    value = os.getenv(key)
    if value is None:
        return fallback
    cleaned = value.strip()
    return cleaned if cleaned else fallback


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_id_list(value: Any) -> list[int]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [part for part in value.replace(";", ",").split(",")]
    ids: list[int] = []
    for item in list(value):
        parsed = _as_optional_int(str(item).strip())
        if parsed is not None and parsed not in ids:
            ids.append(parsed)
    return ids


def _deep_get(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    node: Any = data
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    return raw


def load_config(config_path: Path) -> AppConfig:
    env_path = config_path.parent.parent / ".env"
    load_dotenv(env_path)
    raw = _load_yaml(config_path)

    discord_token = _get_env_str("DISCORD_TOKEN", _deep_get(raw, "discord", "token"))
    if not discord_token or "${" in discord_token:
        raise ConfigError("DISCORD_TOKEN is required")

    discord_cfg = DiscordConfig(
        token=discord_token,
        prefix=str(_get_env_str("BOT_PREFIX", _deep_get(raw, "discord", "prefix", default="?"))),
        application_id=_as_optional_int(
            _get_env_str("DISCORD_APPLICATION_ID", _deep_get(raw, "discord", "application_id"))
        ),
        sync_commands_on_start=_as_bool(
            _get_env_str("SYNC_COMMANDS"),
            _as_bool(_deep_get(raw, "discord", "sync_commands_on_start"), True),
        ),
        status_text=str(_deep_get(raw, "discord", "status_text", default="Support & trade tickets")),
        activity_type=str(_deep_get(raw, "discord", "activity_type", default="watching")),
        owner_ids=_as_id_list(_get_env_str("BOT_OWNER_IDS", _deep_get(raw, "discord", "owner_ids"))),
        allowed_mentions_everyone=_as_bool(
            _deep_get(raw, "discord", "allowed_mentions_everyone"), True
        ),
    )

    storage_cfg = StorageConfig(
        backend=str(_get_env_str("STORAGE_BACKEND", _deep_get(raw, "storage", "backend", default="json"))).lower(),
        directory=str(_get_env_str("DATA_DIRECTORY", _deep_get(raw, "storage", "directory", default="data"))),
        url=str(
            _get_env_str("DATABASE_URL", _deep_get(raw, "storage", "url", default="sqlite:///./data/documents.db"))
        ),
        config_debounce_ms=_as_int(_deep_get(raw, "storage", "config_debounce_ms"), 250),
        retry_seconds=_as_int(_deep_get(raw, "storage", "retry_seconds"), 30),
    )
    if storage_cfg.backend not in {"json", "sql", "memory"}:
        raise ConfigError(f"Unsupported storage backend: {storage_cfg.backend}")

    redis_cfg = RedisConfig(
        enabled=_as_bool(_get_env_str("REDIS_ENABLED"), _as_bool(_deep_get(raw, "redis", "enabled"), False)),
        url=str(_get_env_str("REDIS_URL", _deep_get(raw, "redis", "url", default="redis://localhost:6379/0"))),
        default_ttl=_as_int(_deep_get(raw, "redis", "default_ttl"), 120),
    )

    logging_cfg = LoggingConfig(
        level=str(_get_env_str("LOG_LEVEL", _deep_get(raw, "logging", "level", default="INFO"))),
        directory=str(_deep_get(raw, "logging", "directory", default="logs")),
        file_name=str(_deep_get(raw, "logging", "file_name", default="bot.log")),
        max_bytes=_as_int(_deep_get(raw, "logging", "max_bytes"), 10_000_000),
        backup_count=_as_int(_deep_get(raw, "logging", "backup_count"), 10),
        json_console=_as_bool(_deep_get(raw, "logging", "json_console"), False),
    )

    tickets_cfg = TicketsConfig(
        close_grace_seconds=float(_deep_get(raw, "tickets", "close_grace_seconds", default=2.0)),
        dm_on_close=_as_bool(_deep_get(raw, "tickets", "dm_on_close"), False),
        creation_cooldown_seconds=_as_int(_deep_get(raw, "tickets", "creation_cooldown_seconds"), 20),
        max_name_length=_as_int(_deep_get(raw, "tickets", "max_name_length"), 90),
    )

    premium_cfg = PremiumConfig(
        key_prefix=str(_deep_get(raw, "premium", "key_prefix", default="DRGN")).upper(),
        max_keys_per_batch=_as_int(_deep_get(raw, "premium", "max_keys_per_batch"), 25),
    )

    transcript_cfg = TranscriptConfig(
        html_enabled=_as_bool(_deep_get(raw, "transcripts", "html_enabled"), True),
        txt_enabled=_as_bool(_deep_get(raw, "transcripts", "txt_enabled"), True),
        storage_directory=str(
            _deep_get(raw, "transcripts", "storage_directory", default="artifacts/transcripts")
        ),
        message_limit=_as_optional_int(_deep_get(raw, "transcripts", "message_limit", default=2000)),
    )

    fastapi_cfg = FastApiConfig(
        enabled=_as_bool(_deep_get(raw, "fastapi", "enabled"), False),
        host=str(_deep_get(raw, "fastapi", "host", default="0.0.0.0")),
        port=_as_int(_deep_get(raw, "fastapi", "port"), 8000),
        api_key=str(_get_env_str("DASHBOARD_API_KEY", _deep_get(raw, "fastapi", "api_key", default=""))),
    )

    defaults_cfg = GuildDefaultsConfig(
        support_category_id=_as_optional_int(_deep_get(raw, "guild_defaults", "support_category_id")),
        mm_category_id=_as_optional_int(_deep_get(raw, "guild_defaults", "mm_category_id")),
        log_channel_id=_as_optional_int(_deep_get(raw, "guild_defaults", "log_channel_id")),
        support_roles=_as_id_list(_deep_get(raw, "guild_defaults", "support_roles")),
        mm_roles=_as_id_list(_deep_get(raw, "guild_defaults", "mm_roles")),
        admin_roles=_as_id_list(_deep_get(raw, "guild_defaults", "admin_roles")),
    )

    enabled_extensions = [
        str(ext)
        for ext in list(
            _deep_get(
                raw,
                "enabled_extensions",
                default=[
                    "cogs.events",
                    "cogs.tickets",
                    "cogs.admin",
                    "cogs.premium",
                    "cogs.ratings",
                ],
            )
        )
    ]

    return AppConfig(
        discord=discord_cfg,
        storage=storage_cfg,
        redis=redis_cfg,
        logging=logging_cfg,
        tickets=tickets_cfg,
        premium=premium_cfg,
        transcripts=transcript_cfg,
        fastapi=fastapi_cfg,
        guild_defaults=defaults_cfg,
        enabled_extensions=enabled_extensions,
    )
