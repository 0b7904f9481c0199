from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping


def optional_field(payload: Mapping[str, Any] | None, name: str) -> str | None:
    source = payload if isinstance(payload, Mapping) else {}
    value = source.get(name)
    if value is None or str(value).strip() == "":
        return None
    return str(value).strip()


def normalize_time(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
