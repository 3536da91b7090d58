from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any
from urllib.parse import urlparse

from core.errors import ValidationError

SNOWFLAKE_RE = re.compile(r"^[0-9]{15,25}$")
HEX_COLOR_RE = re.compile(r"^#?([0-9a-fA-F]{6})$")


def is_valid_snowflake(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return False
    return SNOWFLAKE_RE.match(str(value).strip()) is not None


def as_snowflake(value: Any) -> int | None:
    """Return the id as an int, or None when it is not a well-formed snowflake."""
    if not is_valid_snowflake(value):
        return None
    return int(str(value).strip())


def require_snowflake(value: Any, label: str) -> int | None:
    """Validate an explicitly supplied id; empty values clear the setting."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    parsed = as_snowflake(value)
    if parsed is None:
        raise ValidationError(f"`{value}` is not a valid {label} ID.")
    return parsed


def normalize_snowflakes(values: Any) -> list[int]:
    """Filter to valid ids and drop duplicates, keeping first-seen order."""
    if values is None or isinstance(values, str | bytes | dict):
        return []
    if not isinstance(values, Iterable):
        return []
    seen: list[int] = []
    for value in values:
        parsed = as_snowflake(value)
        if parsed is not None and parsed not in seen:
            seen.append(parsed)
    return seen


def normalize_hex_color(value: Any) -> str | None:
    if value is None:
        return None
    match = HEX_COLOR_RE.match(str(value).strip())
    if not match:
        return None
    return f"#{match.group(1).lower()}"


def is_http_url(value: Any) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)
