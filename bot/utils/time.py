from __future__ import annotations

import re
from datetime import UTC, datetime

from core.errors import ValidationError

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS
WEEK_MS = 7 * DAY_MS
MONTH_MS = 30 * DAY_MS
YEAR_MS = 365 * DAY_MS
MAX_DURATION_MS = 10 * YEAR_MS

LEGACY_BUCKETS = {
    "15d": 15 * DAY_MS,
    "1m": MONTH_MS,
    "3m": 3 * MONTH_MS,
}

_UNIT_MS = {
    "s": SECOND_MS,
    "sec": SECOND_MS,
    "secs": SECOND_MS,
    "second": SECOND_MS,
    "seconds": SECOND_MS,
    "m": MINUTE_MS,
    "min": MINUTE_MS,
    "mins": MINUTE_MS,
    "minute": MINUTE_MS,
    "minutes": MINUTE_MS,
    "h": HOUR_MS,
    "hr": HOUR_MS,
    "hrs": HOUR_MS,
    "hour": HOUR_MS,
    "hours": HOUR_MS,
    "d": DAY_MS,
    "day": DAY_MS,
    "days": DAY_MS,
    "w": WEEK_MS,
    "wk": WEEK_MS,
    "wks": WEEK_MS,
    "week": WEEK_MS,
    "weeks": WEEK_MS,
    "mo": MONTH_MS,
    "mon": MONTH_MS,
    "month": MONTH_MS,
    "months": MONTH_MS,
    "y": YEAR_MS,
    "yr": YEAR_MS,
    "yrs": YEAR_MS,
    "year": YEAR_MS,
    "years": YEAR_MS,
}

_TOKEN_RE = re.compile(r"(\d+(?:\.\d+)?)\s*([a-z]+)")
_SEPARATORS_RE = re.compile(r"[\s,]+")


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.astimezone(UTC).isoformat()


def from_iso(value: object) -> datetime | None:
    """Parse a stored timestamp; ISO strings and epoch milliseconds are accepted."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, int | float) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def parse_duration(value: str) -> int:
    """Return a human duration such as ``2d12h`` or ``3 months`` in milliseconds.

    The legacy plan buckets ``15d``, ``1m`` and ``3m`` keep their historical
    meaning (``m`` is a month there, not a minute) and a bare number is a count
    of days. The result is capped at ten years.
    """
    text = (value or "").strip().lower()
    if not text:
        raise ValidationError("Duration cannot be empty. Use values like `30d`, `2w` or `1y`.")

    if text in LEGACY_BUCKETS:
        return LEGACY_BUCKETS[text]

    if text.isdigit():
        total = int(text) * DAY_MS
    else:
        compact = _SEPARATORS_RE.sub(" ", text)
        total = 0
        position = 0
        for match in _TOKEN_RE.finditer(compact):
            if compact[position:match.start()].strip():
                raise ValidationError(f"Could not understand duration `{value}`.")
            unit_ms = _UNIT_MS.get(match.group(2))
            if unit_ms is None:
                raise ValidationError(f"Unknown duration unit `{match.group(2)}`.")
            total += int(float(match.group(1)) * unit_ms)
            position = match.end()
        if position == 0 or compact[position:].strip():
            raise ValidationError(f"Could not understand duration `{value}`.")

    if total <= 0:
        raise ValidationError("Duration must be greater than zero.")
    return min(total, MAX_DURATION_MS)


def humanize_duration(duration_ms: int) -> str:
    remaining = max(0, int(duration_ms))
    parts: list[str] = []
    for label, size in (("y", YEAR_MS), ("d", DAY_MS), ("h", HOUR_MS), ("m", MINUTE_MS), ("s", SECOND_MS)):
        amount, remaining = divmod(remaining, size)
        if amount:
            parts.append(f"{amount}{label}")
    return "".join(parts) or "0s"
