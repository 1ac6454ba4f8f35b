"""Natural-language due date parsing."""

import re
from datetime import date, datetime, timedelta

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
_MONTHS = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]
_DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

_IN_DAYS_RE = re.compile(r"in\s+(\d+)\s+days?")
_ON_ISO_RE = re.compile(r"on\s+(\d{4}-\d{2}-\d{2})")
_ON_US_RE = re.compile(r"on\s+(\d{1,2})/(\d{1,2})/(\d{4})")


def _hour12(moment: datetime) -> int:
    return moment.hour % 12 or 12


# Moment-style tokens accepted in time_format settings
_TIME_TOKENS = {
    "YYYY": lambda m: f"{m.year:04d}",
    "YY": lambda m: f"{m.year % 100:02d}",
    "MMMM": lambda m: _MONTHS[m.month - 1],
    "MMM": lambda m: _MONTHS[m.month - 1][:3],
    "MM": lambda m: f"{m.month:02d}",
    "M": lambda m: str(m.month),
    "DD": lambda m: f"{m.day:02d}",
    "D": lambda m: str(m.day),
    "dddd": lambda m: _DAY_NAMES[m.weekday()],
    "ddd": lambda m: _DAY_NAMES[m.weekday()][:3],
    "HH": lambda m: f"{m.hour:02d}",
    "H": lambda m: str(m.hour),
    "hh": lambda m: f"{_hour12(m):02d}",
    "h": lambda m: str(_hour12(m)),
    "mm": lambda m: f"{m.minute:02d}",
    "m": lambda m: str(m.minute),
    "ss": lambda m: f"{m.second:02d}",
    "s": lambda m: str(m.second),
    "A": lambda m: "AM" if m.hour < 12 else "PM",
    "a": lambda m: "am" if m.hour < 12 else "pm",
}
# Bracketed text is literal; longer tokens are tried first
_TIME_TOKEN_RE = re.compile(
    r"\[([^\]]*)\]|" + "|".join(sorted(_TIME_TOKENS, key=len, reverse=True))
)


def _sunday_based(day: date) -> int:
    """Weekday with Sunday=0 ... Saturday=6."""
    return (day.weekday() + 1) % 7


def _shift(today: date, days: int) -> str | None:
    try:
        return (today + timedelta(days=days)).isoformat()
    except (OverflowError, ValueError):
        return None


def parse_natural_language_date(text: str, today: date | None = None) -> str | None:
    """Parse a relative or absolute date phrase into YYYY-MM-DD.

    Recognized, in priority order: "tomorrow", "next week", "next <weekday>",
    "in N days", "on YYYY-MM-DD", "on MM/DD/YYYY".

    Args:
        text: Free text that may contain a date phrase
        today: Reference date (defaults to the current local date)

    Returns:
        Canonical date string, or None if no phrase is recognized or the
        resulting date is out of range
    """
    if not text:
        return None

    lower = text.lower()
    today = today or date.today()

    if "tomorrow" in lower:
        return _shift(today, 1)

    if "next week" in lower:
        day = _sunday_based(today)
        if 1 <= day <= 4:
            return _shift(today, (8 - day) % 7 or 7)
        return _shift(today, 7)

    for index, name in enumerate(WEEKDAYS):
        if f"next {name}" in lower:
            target = (index + 1) % 7
            days_to_add = target - _sunday_based(today)
            if days_to_add <= 0:
                days_to_add += 7
            return _shift(today, days_to_add)

    match = _IN_DAYS_RE.search(lower)
    if match:
        return _shift(today, int(match.group(1)))

    match = _ON_ISO_RE.search(lower)
    if match:
        return match.group(1)

    match = _ON_US_RE.search(lower)
    if match:
        month, day_of_month, year = (int(part) for part in match.groups())
        try:
            return date(year, month, day_of_month).isoformat()
        except ValueError:
            return None

    return None


def format_due_date(offset_days: int, today: date | None = None) -> str | None:
    """Date offset_days from today as YYYY-MM-DD, or None when out of range."""
    return _shift(today or date.today(), offset_days)


def format_time(moment: datetime, time_format: str) -> str:
    """Render a datetime with a moment-style format such as "HH:mm".

    Supported tokens: YYYY YY MMMM MMM MM M DD D dddd ddd HH H hh h mm m ss s
    A a. Text in square brackets is copied literally; any other character
    passes through unchanged.
    """

    def render(match: re.Match) -> str:
        if match.group(1) is not None:
            return match.group(1)
        return _TIME_TOKENS[match.group(0)](moment)

    return _TIME_TOKEN_RE.sub(render, time_format)
