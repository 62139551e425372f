"""
Time rules for visit scheduling.
Handles visit time parsing, local dates and the monotonic store clock.
"""
import re
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional
import pytz
from ..config import settings

_TIME_12H = re.compile(r"^(\d{1,2}):(\d{2})\s*([AaPp][Mm])$")
_TIME_24H = re.compile(r"^(\d{1,2}):(\d{2})$")
_DATE_ISO = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utcnow() -> datetime:
    """Naive UTC now; the store keeps every timestamp naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_valid_date(value: str) -> bool:
    """True for a real calendar date written as YYYY-MM-DD."""
    if not isinstance(value, str) or not _DATE_ISO.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def parse_time_to_minutes(value: str) -> int:
    """
    Convert a visit time to minutes since midnight.

    Accepts "HH:MM AM/PM" (12h) and "HH:MM" (24h).

    Raises:
        ValueError: if the string is not a recognised time
    """
    if not isinstance(value, str):
        raise ValueError(f"Invalid time: {value!r}")
    text = value.strip()

    match = _TIME_12H.match(text)
    if match:
        hours, minutes, period = int(match.group(1)), int(match.group(2)), match.group(3).upper()
        if not 1 <= hours <= 12 or minutes > 59:
            raise ValueError(f"Invalid time: {value!r}")
        if period == "PM" and hours != 12:
            hours += 12
        elif period == "AM" and hours == 12:
            hours = 0
        return hours * 60 + minutes

    match = _TIME_24H.match(text)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        if hours > 23 or minutes > 59:
            raise ValueError(f"Invalid time: {value!r}")
        return hours * 60 + minutes

    raise ValueError(f"Invalid time: {value!r}")


def normalize_time(value: str) -> str:
    """
    Canonical stored form: zero-padded "HH:MM AM/PM" for 12h input, "HH:MM" for 24h.

    Stored times sort as text, so "9:00 am" must become "09:00 AM".

    Raises:
        ValueError: if the string is not a recognised time
    """
    parse_time_to_minutes(value)
    text = value.strip()
    match = _TIME_12H.match(text)
    if match:
        return f"{int(match.group(1)):02d}:{match.group(2)} {match.group(3).upper()}"
    match = _TIME_24H.match(text)
    return f"{int(match.group(1)):02d}:{match.group(2)}"


def is_valid_time(value: str) -> bool:
    try:
        parse_time_to_minutes(value)
    except ValueError:
        return False
    return True


def format_minutes_as_time(total_minutes: int) -> str:
    """Format minutes since midnight as "HH:MM AM/PM"."""
    hours, minutes = divmod(total_minutes % (24 * 60), 60)
    period = "PM" if hours >= 12 else "AM"
    if hours > 12:
        hours -= 12
    if hours == 0:
        hours = 12
    return f"{hours:02d}:{minutes:02d} {period}"


def local_today(timezone_str: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """
    Current calendar date in the given timezone as YYYY-MM-DD.

    Args:
        timezone_str: Timezone name (defaults to settings.tz_default)
        now: UTC instant to convert (naive values are treated as UTC)
    """
    tz_name = timezone_str or settings.tz_default
    try:
        tz = pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        tz = pytz.UTC
    instant = now or utcnow()
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=pytz.UTC)
    return instant.astimezone(tz).date().isoformat()


def whole_minutes_between(start: datetime, end: datetime) -> int:
    """Elapsed minutes between two instants, rounded to the nearest minute."""
    seconds = (end - start).total_seconds()
    return int(seconds / 60 + 0.5)


class StoreClock:
    """
    Strictly monotonic timestamp source for created_at/updated_at.

    Two stamps handed out by the same clock never compare equal, so ordering
    by stamp reproduces issuance order even when the wall clock stalls.
    """

    _TICK = timedelta(microseconds=1)

    def __init__(self, now_fn: Optional[Callable[[], datetime]] = None):
        self._now_fn = now_fn or utcnow
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        """Wall-clock reading without advancing the stamp sequence."""
        return self._now_fn()

    def stamp(self) -> datetime:
        current = self._now_fn()
        if self._last is not None and current <= self._last:
            current = self._last + self._TICK
        self._last = current
        return current
