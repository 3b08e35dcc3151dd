"""
Time windows for period-over-period metrics.

The current window is [now - N days, now]. The previous window has the same
length and ends where the current one starts, exclusive, so an order on the
boundary is counted exactly once.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple

from src.domain.errors import ValidationError
from src.domain.models import utcnow


@dataclass(frozen=True)
class TimeWindow:
    """Contiguous datetime range"""
    start: datetime
    end: datetime
    end_inclusive: bool = True

    def contains(self, ts: datetime) -> bool:
        if ts < self.start:
            return False
        return ts <= self.end if self.end_inclusive else ts < self.end

    @property
    def days(self) -> float:
        return (self.end - self.start).total_seconds() / 86400

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def validate_days(days: int, max_days: Optional[int] = None) -> int:
    if not isinstance(days, int) or isinstance(days, bool) or days <= 0:
        raise ValidationError(f"days must be a positive integer, got {days!r}", {"days": days})
    if max_days is not None and days > max_days:
        raise ValidationError(f"days must be at most {max_days}, got {days}", {"days": days})
    return days


def calculate_windows(days: int, now: Optional[datetime] = None) -> Tuple[TimeWindow, TimeWindow]:
    """
    Derive the current and previous comparison windows.

    Returns:
        (current, previous)
    """
    validate_days(days)
    now = now or utcnow()
    span = timedelta(days=days)
    current = TimeWindow(start=now - span, end=now)
    previous = TimeWindow(start=now - 2 * span, end=now - span, end_inclusive=False)
    return current, previous


def series_days(days: int, now: Optional[datetime] = None) -> List[date]:
    """The N calendar days ending today, ascending"""
    validate_days(days)
    today = (now or utcnow()).date()
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def series_window(days: int, now: Optional[datetime] = None) -> TimeWindow:
    """Window covering whole calendar days for the daily series"""
    now = now or utcnow()
    first_day = series_days(days, now)[0]
    return TimeWindow(start=datetime.combine(first_day, time.min), end=now)
