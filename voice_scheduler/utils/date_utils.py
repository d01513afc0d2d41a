"""Date, time and conflict helpers.

Civil dates (``YYYY-MM-DD``) and times (``HH:MM``) are what callers say and
what gets displayed. Every comparison that matters is done on timezone-aware
UTC instants produced by ``local_to_utc``.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone as dt_timezone
from typing import Iterable, Mapping, NamedTuple, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser

from .errors import ParseError

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"

# Monday=0 .. Sunday=6, matching datetime.weekday()
WEEKDAY_KEYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

# Tried in order; month-first wins for ambiguous values like 03/02/2026.
DATE_LAYOUTS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%m-%d-%Y",
    "%Y/%m/%d",
)

_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_FREE_TIME_RE = re.compile(r"(\d{1,2})(?:[:.](\d{2}))?\s*([ap])\.?\s*m?\.?\b", re.IGNORECASE)
_BARE_TIME_RE = re.compile(r"^(\d{1,2})[:.](\d{2})$")


class LocalDateTime(NamedTuple):
    """Civil date and time in some timezone."""
    date: str
    time: str


def get_zone(timezone: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ParseError(f"Unknown timezone: {timezone}") from e


def parse_date(date_str: str) -> date:
    """Parse a strict ``YYYY-MM-DD`` string."""
    try:
        return datetime.strptime(date_str, DATE_FORMAT).date()
    except (TypeError, ValueError) as e:
        raise ParseError(f"Invalid date '{date_str}', expected YYYY-MM-DD") from e


def time_to_minutes(time_str: str) -> int:
    """Convert ``HH:MM`` into minutes since midnight."""
    match = _CLOCK_RE.match(time_str or "")
    if not match:
        raise ParseError(f"Invalid time '{time_str}', expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ParseError(f"Invalid time '{time_str}', expected HH:MM")
    return hours * 60 + minutes


def minutes_to_time(minutes: int) -> str:
    """Convert minutes since midnight into ``HH:MM``."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_time(time_str: str) -> time:
    minutes = time_to_minutes(time_str)
    return time(minutes // 60, minutes % 60)


@dataclass(frozen=True)
class BusinessHours:
    """
    Opening hours per weekday.

    ``windows`` maps a weekday (0=Monday) to an ``(open, close)`` pair of
    minutes since midnight. Closed days have no entry.
    """
    windows: Mapping[int, tuple[int, int]] = field(default_factory=dict)

    @classmethod
    def uniform(cls, start: str, end: str, days: Iterable[int]) -> "BusinessHours":
        window = (time_to_minutes(start), time_to_minutes(end))
        if window[1] <= window[0]:
            raise ParseError(f"Closing time {end} must be after opening time {start}")
        return cls(windows={day: window for day in days})

    @classmethod
    def from_config(
        cls,
        start: str,
        end: str,
        days: Iterable[int],
        overrides: Optional[Mapping[str, str]] = None,
    ) -> "BusinessHours":
        """
        Build hours from a uniform window plus per-day overrides.

        Overrides are keyed by ``WEEKDAY_KEYS`` and valued ``"HH:MM-HH:MM"``
        or ``"closed"``.
        """
        windows = dict(cls.uniform(start, end, days).windows)
        for key, window_text in (overrides or {}).items():
            day = WEEKDAY_KEYS.index(key.lower())
            window_text = window_text.strip().lower()
            if window_text in ("", "closed"):
                windows.pop(day, None)
                continue
            try:
                open_str, close_str = (part.strip() for part in window_text.split("-", 1))
            except ValueError as e:
                raise ParseError(f"Invalid hours for {key}: '{window_text}'") from e
            opening, closing = time_to_minutes(open_str), time_to_minutes(close_str)
            if closing <= opening:
                raise ParseError(f"Invalid hours for {key}: '{window_text}'")
            windows[day] = (opening, closing)
        return cls(windows=windows)

    def window_for(self, day: date) -> Optional[tuple[int, int]]:
        return self.windows.get(day.weekday())

    def describe(self) -> str:
        """Human-readable summary, e.g. ``Mon-Fri 09:00-17:00, Sat 10:00-14:00``."""
        if not self.windows:
            return "closed"
        parts: list[str] = []
        run: list[int] = []

        def flush() -> None:
            if not run:
                return
            label = WEEKDAY_KEYS[run[0]].title()
            if len(run) > 1:
                label += "-" + WEEKDAY_KEYS[run[-1]].title()
            opening, closing = self.windows[run[0]]
            parts.append(f"{label} {minutes_to_time(opening)}-{minutes_to_time(closing)}")

        for day in range(7):
            window = self.windows.get(day)
            if window is not None and run and self.windows[run[-1]] == window and run[-1] == day - 1:
                run.append(day)
                continue
            flush()
            run = [day] if window is not None else []
        flush()
        return ", ".join(parts)


def local_to_utc(date_str: str, time_str: str, timezone: str) -> datetime:
    """Interpret a civil date/time as wall-clock time in ``timezone`` and return the UTC instant."""
    local = datetime.combine(parse_date(date_str), parse_time(time_str), tzinfo=get_zone(timezone))
    return local.astimezone(dt_timezone.utc)


def utc_to_local(instant: datetime, timezone: str) -> LocalDateTime:
    """Inverse of ``local_to_utc`` for display."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=dt_timezone.utc)
    local = instant.astimezone(get_zone(timezone))
    return LocalDateTime(date=local.strftime(DATE_FORMAT), time=local.strftime(TIME_FORMAT))


def is_within_business_hours(date_str: str, time_str: str, hours: BusinessHours) -> bool:
    """True iff the weekday is open and the time falls in that day's window (inclusive)."""
    window = hours.window_for(parse_date(date_str))
    if window is None:
        return False
    minutes = time_to_minutes(time_str)
    return window[0] <= minutes <= window[1]


def has_time_conflict(
    new_start: datetime,
    new_end: datetime,
    existing_start: datetime,
    existing_end: datetime,
    buffer_minutes: int,
) -> bool:
    """
    Check whether a new interval collides with an existing one.

    The existing interval is padded by ``buffer_minutes`` on both sides, so
    back-to-back bookings keep a transition gap.
    """
    buffer = timedelta(minutes=buffer_minutes)
    return new_start < existing_end + buffer and new_end > existing_start - buffer


def calculate_end_time(start: datetime, duration_minutes: int) -> datetime:
    return start + timedelta(minutes=duration_minutes)


def utc_now() -> datetime:
    return datetime.now(dt_timezone.utc)


def to_iso_utc(instant: datetime) -> str:
    """ISO-8601 with a ``Z`` suffix, as persisted."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=dt_timezone.utc)
    return instant.astimezone(dt_timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def is_past_date_time(date_str: str, time_str: str, timezone: str, now: Optional[datetime] = None) -> bool:
    """True iff the localized instant is strictly before ``now``."""
    return local_to_utc(date_str, time_str, timezone) < (now or utc_now())


def today_in(timezone: str, now: Optional[datetime] = None) -> date:
    return parse_date(utc_to_local(now or utc_now(), timezone).date)


def normalize_date_string(text: str, reference: date) -> str:
    """
    Normalize a spoken or typed date to ``YYYY-MM-DD``.

    ``reference`` is "today" in the business timezone, see ``today_in``.

    Known numeric layouts are tried first, then relative words ("today",
    "tomorrow", weekday names) and finally dateutil's fuzzy parser.

    Raises:
        ParseError: if nothing matches
    """
    raw = (text or "").strip()
    if not raw:
        raise ParseError("Unable to parse date: empty value")

    for layout in DATE_LAYOUTS:
        try:
            return datetime.strptime(raw, layout).strftime(DATE_FORMAT)
        except ValueError:
            continue

    lowered = raw.lower()

    if "day after tomorrow" in lowered:
        return (reference + timedelta(days=2)).strftime(DATE_FORMAT)
    if "tomorrow" in lowered:
        return (reference + timedelta(days=1)).strftime(DATE_FORMAT)
    if "today" in lowered:
        return reference.strftime(DATE_FORMAT)

    words = re.findall(r"[a-z]+", lowered)
    for index, name in enumerate(WEEKDAY_NAMES):
        if name in words:
            # a bare weekday never means today
            days_ahead = (index - reference.weekday()) % 7 or 7
            return (reference + timedelta(days=days_ahead)).strftime(DATE_FORMAT)

    if not re.search(r"\d", raw) and not any(
        month in lowered for month in ("jan", "feb", "mar", "apr", "may", "jun",
                                       "jul", "aug", "sep", "oct", "nov", "dec")
    ):
        raise ParseError(f"Unable to parse date: {text}")

    try:
        default = datetime.combine(reference, time())
        parsed = date_parser.parse(raw, fuzzy=True, default=default)
    except (ValueError, OverflowError) as e:
        raise ParseError(f"Unable to parse date: {text}") from e
    return parsed.strftime(DATE_FORMAT)


def normalize_time_string(text: str) -> str:
    """
    Normalize a spoken or typed time to 24-hour ``HH:MM``.

    Accepts ``14:30``, ``9:05``, ``2:30 pm``, ``2pm``, ``2 p.m.``, ``noon``
    and ``midnight``.

    Raises:
        ParseError: if nothing matches
    """
    raw = (text or "").strip().lower()
    if raw in ("noon", "midday"):
        return "12:00"
    if raw == "midnight":
        return "00:00"

    hours: Optional[int] = None
    minutes = 0

    match = _FREE_TIME_RE.search(raw)
    if match:
        hours = int(match.group(1))
        minutes = int(match.group(2) or 0)
        period = match.group(3)
        if hours < 1 or hours > 12:
            raise ParseError(f"Unable to parse time: {text}")
        if period == "p" and hours < 12:
            hours += 12
        elif period == "a" and hours == 12:
            hours = 0
    else:
        match = _BARE_TIME_RE.match(raw)
        if match:
            hours, minutes = int(match.group(1)), int(match.group(2))

    if hours is None or hours > 23 or minutes > 59:
        raise ParseError(f"Unable to parse time: {text}")
    return minutes_to_time(hours * 60 + minutes)
