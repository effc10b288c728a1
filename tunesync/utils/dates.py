from datetime import datetime, timezone
from typing import Optional

def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp as returned by Spotify ("2024-05-01T10:00:00.123Z")."""
    return ensure_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))

def to_millis(value: datetime) -> int:
    """Unix epoch milliseconds, the unit of the recently-played cursor."""
    return int(ensure_utc(value).timestamp() * 1000)
