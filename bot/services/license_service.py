from __future__ import annotations

import logging
import secrets
import string
from collections.abc import Callable
from datetime import datetime

from core.config import PremiumConfig
from core.errors import ValidationError
from database.models import LicenseKey
from database.repositories import DocumentRepository
from services.premium_service import normalize_key
from utils.time import DAY_MS, humanize_duration, parse_duration, utc_now

LOGGER = logging.getLogger(__name__)

KEY_ALPHABET = string.ascii_uppercase + string.digits
KEY_GROUPS = 4
KEY_GROUP_LENGTH = 4
MIN_BATCH = 1


class LicenseService:
    """Issues single-use activation codes; redemption lives in PremiumService."""

    def __init__(
        self,
        key_repo: DocumentRepository,
        config: PremiumConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.key_repo = key_repo
        self.config = config or PremiumConfig()
        self.clock = clock

    def _new_key(self) -> str:
        groups = [
            "".join(secrets.choice(KEY_ALPHABET) for _ in range(KEY_GROUP_LENGTH)) for _ in range(KEY_GROUPS)
        ]
        return "-".join([self.config.key_prefix, *groups])

    async def generate(
        self,
        plan: str | None,
        duration_spec: str,
        count: int = 1,
        created_by: int | None = None,
    ) -> list[LicenseKey]:
        duration_ms = parse_duration(duration_spec)
        count = max(MIN_BATCH, min(self.config.max_keys_per_batch, int(count)))
        label = (plan or "").strip()[:40] or duration_spec.strip().lower()
        now = self.clock()

        keys: list[LicenseKey] = []
        for _ in range(count):
            key = self._new_key()
            while key in self.key_repo:
                key = self._new_key()
            record = LicenseKey(
                key=key,
                plan=label,
                duration_ms=duration_ms,
                duration_days=round(duration_ms / DAY_MS, 4),
                created_at=now,
                created_by=created_by,
            )
            self.key_repo.set(key, record.to_dict())
            keys.append(record)

        await self.key_repo.commit()
        LOGGER.info(
            "Generated %s %s key(s) lasting %s", len(keys), label, humanize_duration(duration_ms),
            extra={"user_id": created_by},
        )
        return keys

    def list_keys(self, used: bool | None = None) -> list[LicenseKey]:
        keys = [LicenseKey.from_dict(raw) for _, raw in self.key_repo.items() if isinstance(raw, dict)]
        if used is not None:
            keys = [key for key in keys if key.used is used]
        return sorted(keys, key=lambda item: item.created_at or self.clock())

    async def delete_key(self, key: str) -> bool:
        """Withdraw an unused key. Redeemed keys stay on record."""
        normalized = normalize_key(key)
        raw = self.key_repo.get(normalized)
        if isinstance(raw, dict) and raw.get("used"):
            raise ValidationError("Redeemed keys are kept for auditing and cannot be deleted.")
        removed = self.key_repo.delete(normalized)
        if removed:
            await self.key_repo.commit()
        return removed
