import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta

_HOUR_RE = re.compile(r"(?P<hour>\d{1,2})(?::00)? ?(?P<ampm>am|pm)?")

# Shop opens at noon, so a bare "at 4" means 4 PM.
_BARE_HOUR_PM_CUTOFF = 10


@dataclass(frozen=True)
class TimeExpression:
    date: date
    hour: int

    @property
    def date_text(self) -> str:
        return self.date.isoformat()


def _resolve_day(text: str, today: date) -> date | None:
    if "tomorrow" in text:
        return today + timedelta(days=1)
    if "today" in text:
        return today
    return None


def _normalize_hour(hour: int, ampm: str | None) -> int:
    if ampm == "pm" and hour < 12:
        hour += 12
    if ampm == "am" and hour == 12:
        hour = 0
    if ampm is None and hour < _BARE_HOUR_PM_CUTOFF:
        hour += 12
    return hour


def parse_time_expression(text: str, reference_datetime: datetime | None = None) -> TimeExpression | None:
    """Extract a booking day and hour from a free-text message.

    The day comes from the keywords "today"/"tomorrow" and the hour from the
    first number in the text, e.g. "5", "5:00", "5pm" or "5 pm". Returns None
    when either part is missing.
    """
    if not text:
        return None

    lowered = text.lower()
    now = reference_datetime or datetime.now()
    target_day = _resolve_day(lowered, now.date())
    if target_day is None:
        return None

    hour_match = _HOUR_RE.search(lowered)
    if hour_match is None:
        return None

    hour = _normalize_hour(int(hour_match.group("hour")), hour_match.group("ampm"))
    return TimeExpression(date=target_day, hour=hour)
