from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes read back from the store as UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_published_hint(hint: Optional[str], default: datetime) -> datetime:
    """Best-effort parse of an adapter's published-at hint (ISO 8601 only)"""
    if not hint:
        return default
    try:
        return as_utc(datetime.fromisoformat(hint.strip().replace("Z", "+00:00")))
    except ValueError:
        return default
