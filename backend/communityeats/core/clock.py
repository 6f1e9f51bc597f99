# communityeats/core/clock.py

from datetime import datetime, timezone


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def to_iso(value: datetime | None) -> str | None:
    """ISO-8601 with millisecond precision and a trailing Z."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
