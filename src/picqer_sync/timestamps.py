"""UTC timestamp helpers shared by the sync components."""

from datetime import datetime, timezone
from typing import Optional

# Format expected by Picqer's updated_after filter
PICQER_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Serialize a datetime for storage (UTC ISO-8601)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp; naive values are taken as UTC."""
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_picqer_filter(value: datetime) -> str:
    """Format a datetime for the updated_after query parameter."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(PICQER_DATETIME_FORMAT)
