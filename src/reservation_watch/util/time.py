from __future__ import annotations

from datetime import date, datetime, time, timezone
from email.utils import format_datetime
from typing import Optional, Union

SECONDS_PER_DAY = 86400


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: Union[datetime, date, str, None]) -> Optional[datetime]:
    """
    Coerce SDK date values to timezone-aware UTC datetimes.
    - naive datetimes are assumed to be UTC
    - plain dates become midnight UTC
    - ISO-8601 strings are parsed (a trailing 'Z' is accepted)
    """
    if value is None:
        return None
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        value = datetime.fromisoformat(raw)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    raise TypeError(f"Unsupported date value: {value!r}")


def days_remaining(expiry: datetime, now: datetime) -> int:
    """
    Whole days between now and expiry, truncated toward zero.
    Negative for reservations that have already expired.
    """
    return int((expiry - now).total_seconds() / SECONDS_PER_DAY)


def rfc1123_date(now: Optional[datetime] = None) -> str:
    """Return an RFC-1123 timestamp such as 'Sun, 18 Oct 2026 09:00:00 GMT'."""
    return format_datetime(now or utc_now(), usegmt=True)
