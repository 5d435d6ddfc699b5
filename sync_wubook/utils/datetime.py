"""
UTC datetime utilities and the canonical instant conversion.

External payloads carry timestamps as epoch seconds, `{"seconds": ...}`
objects, ISO strings or `dd/mm/yyyy` dates. Everything is converted here,
once, and compared as epoch seconds.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterator, Optional
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser

EU_DATE_FORMAT = "%d/%m/%Y"
_EU_DATETIME_FORMATS = ("%d/%m/%Y %H:%M:%S", "%d/%m/%Y %H:%M", EU_DATE_FORMAT)


def utc_now() -> datetime:
    """
    Return current UTC time as timezone-aware datetime.

    This function should be used instead of datetime.now() or datetime.utcnow()
    to ensure all timestamps are timezone-aware and stored in UTC.

    Returns:
        Timezone-aware datetime in UTC

    Example:
        >>> now = utc_now()
        >>> now.tzinfo
        datetime.timezone.utc
    """
    return datetime.now(timezone.utc)


def local_now(tz_name: str) -> datetime:
    """Current wall-clock time in the property timezone."""
    return utc_now().astimezone(ZoneInfo(tz_name))


def local_today(tz_name: str) -> date:
    """Today's calendar date in the property timezone."""
    return local_now(tz_name).date()


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_string_instant(text: str) -> Optional[datetime]:
    for fmt in _EU_DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    try:
        return ensure_aware(date_parser.isoparse(text))
    except (ValueError, OverflowError):
        return None


def to_datetime(value: Any) -> Optional[datetime]:
    """
    Convert any known timestamp shape into an aware UTC datetime.

    Args:
        value: Epoch seconds (int/float/numeric string), a mapping with
            `seconds` or `_seconds`, an ISO-8601 string, a `dd/mm/yyyy[ HH:MM]`
            string, a date or a datetime.

    Returns:
        Optional[datetime]: The instant in UTC, or None if unrecognised.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return ensure_aware(value).astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        return to_datetime(seconds) if seconds is not None else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return datetime.fromtimestamp(float(text), tz=timezone.utc)
        except (ValueError, OverflowError):
            return _parse_string_instant(text)
    return None


def to_epoch_seconds(value: Any) -> int:
    """Seconds-resolution sort key for any timestamp shape; unknown shapes sort first."""
    dt = to_datetime(value)
    return int(dt.timestamp()) if dt else 0


def to_iso_instant(value: Any) -> Optional[str]:
    """Canonical stored form of an instant: ISO-8601 in UTC, seconds resolution."""
    dt = to_datetime(value)
    return dt.replace(microsecond=0).isoformat() if dt else None


def parse_when(value: Any) -> datetime:
    """Parse a host-supplied `when`; absent, "now" or invalid input means now."""
    if value is None or value == "now":
        return utc_now()
    return to_datetime(value) or utc_now()


def eu_to_iso(value: Optional[str]) -> Optional[str]:
    """Convert a channel date (`dd/mm/yyyy`) to an ISO calendar date."""
    if not value:
        return None
    try:
        return datetime.strptime(str(value).strip(), EU_DATE_FORMAT).date().isoformat()
    except ValueError:
        return None


def to_eu(day: date) -> str:
    """Format a calendar date the way the channel manager expects it."""
    return day.strftime(EU_DATE_FORMAT)


def parse_iso_date(value: Any) -> Optional[date]:
    """Parse `YYYY-MM-DD` (or anything ISO-like) into a date; None if invalid."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def date_range(start: date, end: date) -> Iterator[date]:
    """Yield every calendar date from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
