"""Business-day helpers for gap detection."""
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def is_weekday(day: date) -> bool:
    return day.weekday() < 5


def business_days(start: date, end: date) -> List[str]:
    """Weekdays in [start, end] as YYYY-MM-DD strings, oldest first."""
    days = []
    current = start
    while current <= end:
        if is_weekday(current):
            days.append(current.isoformat())
        current += timedelta(days=1)
    return days


def expected_dates(days: int, today: Optional[date] = None) -> List[str]:
    """
    Business dates in [today - days, today - 1].

    Today is never included, so a trading day still in progress is not
    reported as a gap.

    Raises:
        ValueError: If days is negative
    """
    if days < 0:
        raise ValueError(f"days must be >= 0, got {days}")
    today = today or utc_today()
    return business_days(today - timedelta(days=days), today - timedelta(days=1))


def end_of_day(day: str) -> datetime:
    """23:59:59.999 UTC on ``day``, the timestamp daily aggregates are stored at."""
    return datetime.combine(date.fromisoformat(day), datetime.min.time(),
                            tzinfo=timezone.utc) + timedelta(days=1, milliseconds=-1)


def parse_date(value: str) -> str:
    """
    Validate a YYYY-MM-DD date string.

    Raises:
        ValueError: If the value is not an ISO date
    """
    return date.fromisoformat(value).isoformat()
