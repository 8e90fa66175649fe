from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.validation import ValidationError


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def get_business_date(
    timestamp: datetime | str,
    cutoff_hour: int = 0,
    tz: str | None = None,
) -> date:
    """
    Map a timestamp to the logical business day it belongs to.

    Anything earlier than `cutoff_hour` (local time) belongs to the previous
    business day, so a 1:30 AM close-out on a late shift still lands on the
    day the shift opened.

    - Aware timestamps are converted to `tz` (IANA name) when given.
    - Naive timestamps are taken as already local to the store.
    - ISO-8601 strings are accepted; a trailing Z or offset keeps the
      string aware, otherwise it is naive/local like any other datetime.
    """
    if isinstance(timestamp, str):
        s = timestamp.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            timestamp = datetime.fromisoformat(s)
        except ValueError:
            raise ValidationError(f"Invalid timestamp: {timestamp!r}")

    if not isinstance(timestamp, datetime):
        raise ValidationError("timestamp must be a datetime")

    if isinstance(cutoff_hour, bool) or not isinstance(cutoff_hour, int) or not 0 <= cutoff_hour <= 23:
        raise ValidationError("cutoff_hour must be an integer between 0 and 23")

    local = timestamp
    if tz:
        try:
            zone = ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError(f"Unknown timezone: {tz!r}")
        if timestamp.tzinfo is not None:
            local = timestamp.astimezone(zone)

    business_day = local.date()
    if local.hour < cutoff_hour:
        business_day -= timedelta(days=1)
    return business_day
