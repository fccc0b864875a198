"""Calendar-day helpers.

All day arithmetic works on ``YYYY-MM-DD`` strings, so comparisons never mix
timestamps from different time zones.
"""
from datetime import date, datetime, time, timedelta
from typing import List, Optional

import pytz

DATE_FORMAT = "%Y-%m-%d"


def to_date_str(value) -> str:
    return value.strftime(DATE_FORMAT)


def parse_date_str(value: str) -> date:
    return datetime.strptime(value, DATE_FORMAT).date()


def previous_day(day: str) -> str:
    return to_date_str(parse_date_str(day) - timedelta(days=1))


def last_n_days(today: date, n: int) -> List[str]:
    """Return the last ``n`` calendar days ending with ``today``, oldest first."""
    return [to_date_str(today - timedelta(days=offset)) for offset in range(n - 1, -1, -1)]


class Clock:
    """Wall clock deciding what "today" is.

    With ``tz_name`` set, days roll over at midnight in that zone; otherwise
    the process' local time is used. Timestamps are naive wall-clock values.
    """

    def __init__(self, tz_name: Optional[str] = None):
        self.tz = pytz.timezone(tz_name) if tz_name else None

    def now(self) -> datetime:
        return datetime.now(self.tz).replace(tzinfo=None)

    def epoch_ms(self) -> int:
        """Milliseconds since the epoch, taken from the zone-aware time."""
        return int(datetime.now(self.tz).timestamp() * 1000)

    def today(self) -> date:
        return self.now().date()

    def today_str(self) -> str:
        return to_date_str(self.today())


class FrozenClock(Clock):
    """Clock pinned to one day, moved forward explicitly."""

    def __init__(self, day: date, at: time = time(12, 0)):
        super().__init__()
        self.day = day
        self.at = at

    def now(self) -> datetime:
        return datetime.combine(self.day, self.at)

    def epoch_ms(self) -> int:
        return int(self.now().timestamp() * 1000)

    def advance(self, days: int = 1):
        self.day = self.day + timedelta(days=days)
