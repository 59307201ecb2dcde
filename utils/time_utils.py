from datetime import datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Returns the current time in UTC, timezone aware."""
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """
    Serializes a datetime as a fixed-width UTC ISO string.

    Stored timestamps are compared as strings by the table stores, so every
    value goes through here to keep the width (microseconds included) stable.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parses an ISO string (or passes a datetime through) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
