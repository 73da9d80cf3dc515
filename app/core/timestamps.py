from datetime import datetime, timezone
from email.utils import formatdate, parsedate_to_datetime


def parse_datetime(dt_value) -> datetime | None:
    """Parse a datetime value from the database (could be string or datetime)."""
    if dt_value is None:
        return None
    if isinstance(dt_value, datetime):
        if dt_value.tzinfo is None:
            return dt_value.replace(tzinfo=timezone.utc)
        return dt_value
    if isinstance(dt_value, str):
        try:
            # Handle ISO format with timezone
            dt = datetime.fromisoformat(dt_value.replace('Z', '+00:00'))
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt
        except ValueError:
            return None
    return None


def to_http_date(dt: datetime) -> str:
    """RFC 7231 date for Last-Modified."""
    return formatdate(dt.timestamp(), usegmt=True)


def parse_http_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_update_tag(dt: datetime) -> str:
    """Opaque passesUpdatedSince tag: epoch seconds, sub-second precision kept."""
    return repr(dt.timestamp())


def parse_update_tag(tag: str | None) -> datetime | None:
    """Accept our own epoch tags and ISO-8601 timestamps."""
    if not tag:
        return None
    try:
        return datetime.fromtimestamp(float(tag), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return parse_datetime(tag)
